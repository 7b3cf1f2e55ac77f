"""Rewriting a request's contents after compression, and logging the result."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from agentic.compress import ConversationTurn
from agentic.content import Content, LLMRequest, Part
from agentic.memory_state import SubSession

logger = logging.getLogger(__name__)

_SUBSESSION_PREVIEW = 100
_CONTENT_PREVIEW = 300


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def contents_to_turns(contents: Iterable[Optional[Content]]) -> list[ConversationTurn]:
    """Turn content entries into conversation turns, skipping missing ones."""
    return [
        ConversationTurn(role=content.role, content=content.text())
        for content in contents
        if content is not None
    ]


def extract_system_instruction(request: LLMRequest) -> Optional[Content]:
    """Return the request's system instruction, or None when there is none."""
    if request.config is None:
        return None
    return request.config.system_instruction


def build_compressed_contents(
    request: LLMRequest, summary_text: str, compressed_count: int
) -> list[Content]:
    """Build [system prompt, summary exchange, recent turns, new user message].

    The last entry of the request is the new user message; the first
    compressed_count entries before it are replaced by the summary. The
    system instruction is prepended only when it is not already the first entry.
    """
    contents = request.contents
    if not contents:
        raise ValueError("build_compressed_contents: request has no contents")
    if compressed_count < 0:
        raise ValueError(
            f"build_compressed_contents: compressed_count must be >= 0, got {compressed_count}"
        )

    user_msg = contents[-1]
    prior = contents[:-1]
    recent_active = prior[min(compressed_count, len(prior)):]

    result: list[Content] = []
    system = extract_system_instruction(request)
    if system is not None and contents[0] is not system:
        result.append(system)

    if summary_text:
        result.append(Content(role="user", parts=[Part(text="continue")]))
        result.append(Content(role="model", parts=[Part(text=summary_text)]))

    result.extend(recent_active)
    result.append(user_msg)
    return result


def log_subsessions(sessions: Iterable[SubSession]) -> None:
    """Log each subsession with its status and a short summary preview."""
    for session in sessions:
        status = "active" if session.is_active() else "closed"
        logger.info(
            "memory_plugin: subsession generation=%d status=%s start_turn=%d "
            "end_turn=%d tokens_before=%d tokens_after=%d summary_preview=%s",
            session.generation,
            status,
            session.start_turn,
            session.end_turn,
            session.tokens_before,
            session.tokens_after,
            _preview(session.summary, _SUBSESSION_PREVIEW),
        )


def log_compressed_contents(contents: Iterable[Content]) -> None:
    """Log every entry of the rewritten contents with a text preview."""
    for index, content in enumerate(contents):
        role = content.role or "system"
        text = "".join(
            part.text for part in content.parts if part is not None and part.text
        )
        logger.info(
            "memory_plugin: compressed request contents index=%d role=%s chars=%d preview=%s",
            index,
            role,
            len(text),
            _preview(text, _CONTENT_PREVIEW),
        )