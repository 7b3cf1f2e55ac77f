"""Pluggable compression strategies that summarise old conversation turns."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, runtime_checkable

from agentic.content import Content, ModelClient, Part
from agentic.profile import ModelProfile

DEFAULT_SUMMARIZE_INSTRUCTION = """You are a senior project manager performing a shift handover. Your task is to review this entire conversation and produce a Context Handover Document.

Purpose: a brand-new AI instance with zero knowledge of this conversation must be able to continue seamlessly using only this document, without the user needing to re-explain anything.

Write the document using exactly these sections. Skip any section that has no content \u2014 do not include empty placeholders.

## Task Charter
- Core objective: what is the user ultimately trying to achieve?
- In scope: what is included in this task
- Out of scope: what has been explicitly excluded
- Success criteria: how do we know the task is done?

## Stakeholder Profile
- Expertise and domain knowledge level
- Communication preferences (language, style, level of detail)
- Important personal context that affects how to assist them

## Current Status
- Overall progress (e.g. phase 2/5, or percentage)
- Last completed milestone
- What is currently blocked or in progress

## Deliverables Log
List all outputs produced, with status and key content summary:
- [done] item: summary...
- [in progress] item: current state...

## Decision Log
Record every significant decision AND the reasoning behind it \u2014 the reasoning is the most important part:
- Chose X over Y because...
- Abandoned Z because...

## Open Issues
Unresolved items that need continued attention:
- Issue: ... | Status: awaiting user input / needs more info / in progress

## Constraints & Lessons Learned
This is the most critical section. Record what went wrong and what must not be repeated:
- Failed approach: tried X, it did not work because...
- Hard constraint: ...
- User explicitly emphasized: ...

## Next Actions
What the next shift should do immediately upon taking over:
1. First action: ...
2. Awaiting user input on: ... (if any)

Rules: be concise. Omit pleasantries, reasoning chains, and redundant information. Every sentence must earn its place."""

_MIN_TURNS_TO_KEEP = 2


@dataclass
class ConversationTurn:
    """One turn of a conversation with its role, text and token count."""

    role: str
    content: str
    token_count: int = 0


@dataclass(frozen=True)
class WorkerUsage:
    """Token counts reported by the compress worker's model call."""

    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0


@dataclass
class CompressResult:
    """The outcome of a single compression run."""

    compressed_text: str
    original_tokens: int = 0
    compressed_tokens: int = 0
    actual_compression_ratio: float = 0.0
    cost: float = 0.0
    worker_usage: WorkerUsage = field(default_factory=WorkerUsage)


@dataclass
class ForkRequest:
    """A snapshot of a subsession (system prompt plus history) to summarise."""

    system_instruction: Optional[Content] = None
    history: list[Content] = field(default_factory=list)


class CompressionError(RuntimeError):
    """Raised when a compression run cannot produce a result."""


class UnknownStrategyError(LookupError):
    """Raised when a strategy name is not registered."""


@runtime_checkable
class CompressStrategy(Protocol):
    """A stateless compression policy."""

    def name(self) -> str:
        """Return the identifier used in configuration and error messages."""
        ...

    def select_candidates(
        self, active_turns: list[ConversationTurn], target_reclaim_tokens: int
    ) -> list[ConversationTurn]:
        """Pick the turns to compress; must cope with empty or short lists."""
        ...

    def compress(self, fork: ForkRequest, profile: ModelProfile) -> CompressResult:
        """Summarise the fork; raise CompressionError on any failure."""
        ...


@runtime_checkable
class CompressWorker(Protocol):
    """Something that turns a conversation into a summary."""

    def summarize(
        self, model: str, contents: list[Content]
    ) -> tuple[str, Optional[WorkerUsage]]:
        """Return the summary text and the usage of the call, if known."""
        ...


@dataclass
class GenerationalConfig:
    """Settings for the generational strategy.

    A turns_to_keep of zero is derived from the model profile; an empty
    summarize_instruction selects the default handover instruction.
    """

    turns_to_keep: int = 0
    summarize_instruction: str = ""


class Generational:
    """Keep the most recent turns and summarise all older ones."""

    def __init__(
        self,
        config: Optional[GenerationalConfig] = None,
        worker: Optional[CompressWorker] = None,
        profile: Optional[ModelProfile] = None,
    ) -> None:
        cfg = dataclasses.replace(config) if config is not None else GenerationalConfig()
        if cfg.turns_to_keep <= 0 and profile is not None and profile.max_output_tokens > 0:
            cfg.turns_to_keep = profile.context_window_tokens // profile.max_output_tokens
        if cfg.turns_to_keep < _MIN_TURNS_TO_KEEP:
            cfg.turns_to_keep = _MIN_TURNS_TO_KEEP
        if not cfg.summarize_instruction:
            cfg.summarize_instruction = DEFAULT_SUMMARIZE_INSTRUCTION
        self.config = cfg
        self.worker = worker

    def name(self) -> str:
        """Return "generational"."""
        return "generational"

    def select_candidates(
        self, active_turns: list[ConversationTurn], target_reclaim_tokens: int = 0
    ) -> list[ConversationTurn]:
        """Return every turn older than the kept window, as a new list."""
        to_compress = len(active_turns) - self.config.turns_to_keep
        if to_compress <= 0:
            return []
        return list(active_turns[:to_compress])

    def build_fork_contents(self, fork: ForkRequest) -> list[Content]:
        """Assemble system instruction, history and the summarize request."""
        contents: list[Content] = []
        if fork.system_instruction is not None:
            contents.append(fork.system_instruction)
        contents.extend(fork.history)
        contents.append(
            Content(role="user", parts=[Part(text=self.config.summarize_instruction)])
        )
        return contents

    def compress(self, fork: Optional[ForkRequest], profile: ModelProfile) -> CompressResult:
        """Ask the worker to summarise the fork and report the token savings."""
        if self.worker is None:
            raise CompressionError(
                "compress: worker is nil \u2014 provide a worker to Generational "
                "before calling compress"
            )
        if fork is None or not fork.history:
            raise CompressionError("compress: fork has no history to compress")

        model_id = profile.effective_compress_model_id()
        contents = self.build_fork_contents(fork)
        try:
            summary, usage = self.worker.summarize(model_id, contents)
        except Exception as exc:
            raise CompressionError(f"compress worker failed: {exc}") from exc

        usage = usage or WorkerUsage()
        original = usage.prompt_token_count
        compressed = usage.candidates_token_count
        ratio = compressed / original if original > 0 else 0.0
        return CompressResult(
            compressed_text=summary,
            original_tokens=original,
            compressed_tokens=compressed,
            actual_compression_ratio=ratio,
            cost=0.0,
            worker_usage=usage,
        )


StrategyFactory = Callable[[], CompressStrategy]


class StrategyRegistry:
    """Maps strategy names to factories; starts with "generational"."""

    def __init__(self) -> None:
        self._factories: dict[str, StrategyFactory] = {}
        self.register("generational", lambda: Generational(GenerationalConfig(), None, None))

    def register(self, name: str, factory: StrategyFactory) -> None:
        """Add or replace the factory registered under name."""
        self._factories[name] = factory

    def resolve(self, name: str) -> CompressStrategy:
        """Build the strategy registered under name."""
        try:
            factory = self._factories[name]
        except KeyError:
            available = ", ".join(self._factories)
            raise UnknownStrategyError(
                f"unknown strategy: {name}; available: {available}"
            ) from None
        return factory()


class ModelWorker:
    """Compress worker making one isolated model call per summary."""

    def __init__(self, client: ModelClient) -> None:
        self.client = client

    def summarize(
        self, model: str, contents: list[Content]
    ) -> tuple[str, Optional[WorkerUsage]]:
        """Send the forked conversation to the model and return its summary."""
        try:
            response = self.client.generate_content(model, contents, None)
        except Exception as exc:
            raise CompressionError(
                f"generate content failed for model {model!r}: {exc}"
            ) from exc

        text = response.content.text() if response.content is not None else ""
        meta = response.usage_metadata
        usage = (
            WorkerUsage(
                prompt_token_count=meta.prompt_token_count,
                candidates_token_count=meta.candidates_token_count,
                total_token_count=meta.total_token_count,
            )
            if meta is not None
            else WorkerUsage()
        )
        return text, usage