"""Content, request and response types exchanged with a generative model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable


@dataclass
class FunctionCall:
    """A tool invocation requested by the model."""

    name: str
    args: Optional[dict[str, Any]] = None


@dataclass
class FunctionResponse:
    """The result of a tool invocation, sent back to the model."""

    name: str
    response: Optional[dict[str, Any]] = None


@dataclass
class InlineData:
    """Binary payload embedded in a content part."""

    mime_type: str
    data: bytes = b""


@dataclass
class Part:
    """One piece of a content entry: text, a call, a response or data."""

    text: str = ""
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None
    inline_data: Optional[InlineData] = None
    thought_signature: bytes = b""


@dataclass
class Content:
    """A single conversation turn made of parts, with the speaker's role."""

    role: str = ""
    parts: list[Optional[Part]] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str, role: str = "user") -> "Content":
        """Build a content entry holding one text part."""
        return cls(role=role, parts=[Part(text=text)])

    def text(self) -> str:
        """Concatenate the text of every part, skipping missing parts."""
        return "".join(part.text for part in self.parts if part is not None)


@dataclass
class GenerateContentConfig:
    """Generation settings sent alongside a model request."""

    system_instruction: Optional[Content] = None
    response_mime_type: str = ""
    response_schema: Optional[dict[str, Any]] = None


@dataclass
class UsageMetadata:
    """Token accounting reported with a model response."""

    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0


@dataclass
class LLMRequest:
    """A request about to be sent to a model."""

    model: str = ""
    contents: list[Content] = field(default_factory=list)
    config: Optional[GenerateContentConfig] = None


@dataclass
class LLMResponse:
    """A model response, or a response that replaces the model call."""

    content: Optional[Content] = None
    usage_metadata: Optional[UsageMetadata] = None
    custom_metadata: dict[str, Any] = field(default_factory=dict)


BeforeModelCallback = Callable[[LLMRequest], Optional[LLMResponse]]
AfterModelCallback = Callable[[Optional[LLMResponse], Optional[BaseException]], Optional[LLMResponse]]


@dataclass
class Plugin:
    """A named pair of hooks run before and after each model call.

    A before-model hook that returns a response halts the model call.
    """

    name: str
    before_model: Optional[BeforeModelCallback] = None
    after_model: Optional[AfterModelCallback] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("plugin name must not be empty")


@runtime_checkable
class ModelClient(Protocol):
    """The calls a generative model client must offer."""

    def generate_content(
        self,
        model: str,
        contents: list[Content],
        config: Optional[GenerateContentConfig],
    ) -> LLMResponse:
        """Generate a response for the given conversation."""
        ...

    def count_tokens(self, model: str, contents: list[Content]) -> int:
        """Return the total token count of the given conversation."""
        ...