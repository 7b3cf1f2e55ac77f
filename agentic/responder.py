"""Free-form response generation summarising execution results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from agentic.content import Content, GenerateContentConfig, ModelClient, Part
from agentic.prompting import format_results


class ResponderError(RuntimeError):
    """Raised when the model call behind a response fails."""


@dataclass
class GeminiResponder:
    """Produces a user-facing answer from the prompt and execution results.

    Output is free-form text: no response schema or MIME type is requested.
    """

    client: ModelClient
    model: str
    system_prompt: str = ""

    def respond(self, user_prompt: str, results: Optional[Mapping[str, Any]]) -> str:
        """Ask the model for a readable response and return its text."""
        user_text = user_prompt
        formatted = format_results(results)
        if formatted:
            user_text += "\n\nExecution results:\n" + formatted

        contents = [Content.from_text(user_text, "user")]
        config = GenerateContentConfig(
            system_instruction=Content(parts=[Part(text=self.system_prompt)])
        )
        try:
            response = self.client.generate_content(self.model, contents, config)
        except Exception as exc:
            raise ResponderError(f"llm: GeminiResponder.respond: {exc}") from exc

        if response is None or response.content is None:
            return ""
        return response.content.text()