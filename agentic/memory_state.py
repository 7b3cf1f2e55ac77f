"""State records kept by the memory plugin: subsessions, metrics and events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

OOM_RECOMMENDATION = "start a new conversation"


@dataclass(frozen=True)
class OOMWarningEvent:
    """Returned in place of a model call when the context cannot be reclaimed."""

    usage_ratio: float
    recommendation: str = OOM_RECOMMENDATION
    reason: str = ""


@dataclass
class SubSession:
    """A generation of the conversation between two compression runs.

    An end_turn of -1 marks the active subsession. The summary is the text
    produced when the subsession was closed.
    """

    generation: int
    start_turn: int = 0
    end_turn: int = -1
    summary: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    tokens_before: int = 0
    tokens_after: int = 0

    def is_active(self) -> bool:
        """Return True while the subsession has not been closed."""
        return self.end_turn < 0


@dataclass
class MemoryMetrics:
    """Counters and gauges describing the plugin's work so far."""

    last_total_tokens: int = 0
    usage_ratio: float = 0.0
    count_tokens_api_call_count: int = 0
    compress_trigger_count: int = 0
    compress_reclaimed_tokens: list[int] = field(default_factory=list)
    oom_event_count: int = 0
    subsessions: list[SubSession] = field(default_factory=list)


@dataclass(frozen=True)
class CompressInfo:
    """Details of one compression run, reported with the next model response."""

    strategy: str
    candidates: int
    original_tokens: int
    compressed_tokens: int
    reclaimed_tokens: int
    summary_index: int

    def as_metadata(self) -> dict[str, Any]:
        """Return the details as a plain mapping for response metadata."""
        return {
            "strategy": self.strategy,
            "candidates": self.candidates,
            "original_tokens": self.original_tokens,
            "compressed_tokens": self.compressed_tokens,
            "reclaimed_tokens": self.reclaimed_tokens,
            "summary_index": self.summary_index,
        }