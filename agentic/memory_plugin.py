"""A plugin that watches context-window usage and compresses old turns."""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
from typing import Optional, Protocol, runtime_checkable

from agentic.compress import CompressionError, CompressStrategy, ForkRequest
from agentic.content import Content, LLMRequest, LLMResponse, ModelClient, Part, Plugin
from agentic.memory_state import (
    OOM_RECOMMENDATION,
    CompressInfo,
    MemoryMetrics,
    OOMWarningEvent,
    SubSession,
)
from agentic.profile import ModelProfile
from agentic.rewrite import (
    build_compressed_contents,
    contents_to_turns,
    extract_system_instruction,
    log_compressed_contents,
    log_subsessions,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.80
DEFAULT_EMERGENCY_THRESHOLD = 0.90
MIN_SECONDARY_COMPRESSION_REDUCTION = 0.05
_SUMMARY_LOG_PREVIEW = 200


@runtime_checkable
class TokenCounter(Protocol):
    """Offline (local) token counting."""

    def count_tokens(self, contents: list[Content]) -> int:
        """Return the token count of the given contents."""
        ...


@runtime_checkable
class ApiTokenCounter(Protocol):
    """Precise token counting through the model service."""

    def count_tokens_api(self, model_id: str, contents: list[Content]) -> int:
        """Return the service's token count of the given contents."""
        ...


class ClientTokenCounter:
    """Counts tokens by asking a model client."""

    def __init__(self, client: ModelClient) -> None:
        self.client = client

    def count_tokens_api(self, model_id: str, contents: list[Content]) -> int:
        """Return the client's total token count for the contents."""
        try:
            return self.client.count_tokens(model_id, contents)
        except Exception as exc:
            raise RuntimeError(f"countTokens API: {exc}") from exc


def _summary_pair(summary: str) -> list[Content]:
    return [
        Content(role="user", parts=[Part(text="continue")]),
        Content(role="model", parts=[Part(text=summary)]),
    ]


class MemoryPlugin:
    """Tracks token usage and compresses the conversation near capacity.

    Usage is first estimated offline from the last reported total; only when
    that estimate crosses the threshold is the precise count requested.
    """

    def __init__(
        self,
        token_counter: TokenCounter,
        api_counter: ApiTokenCounter,
        strategy: CompressStrategy,
        profile: ModelProfile,
        threshold: float = 0.0,
        emergency_threshold: float = 0.0,
    ) -> None:
        if threshold == 0.0:
            threshold = DEFAULT_THRESHOLD
        if not 0.0 < threshold < 1.0:
            raise ValueError(f"MemoryPlugin: threshold must be in (0, 1), got {threshold}")
        if emergency_threshold == 0.0:
            emergency_threshold = DEFAULT_EMERGENCY_THRESHOLD
        if not 0.0 < emergency_threshold < 1.0:
            raise ValueError(
                "MemoryPlugin: emergency_threshold must be in (0, 1), "
                f"got {emergency_threshold}"
            )
        if strategy is None:
            raise ValueError("MemoryPlugin: strategy must not be None")

        self.token_counter = token_counter
        self.api_counter = api_counter
        self.strategy = strategy
        self.profile = profile
        self.threshold = threshold
        self.emergency_threshold = emergency_threshold

        self._lock = threading.Lock()
        self._last_total_tokens = 0
        self._subsessions: list[SubSession] = [SubSession(generation=0)]
        self._metrics = MemoryMetrics()
        self._last_compress_info: Optional[CompressInfo] = None

    # -- state helpers (call with the lock held) --

    def _last_summary(self) -> str:
        for session in reversed(self._subsessions):
            if session.summary:
                return session.summary
        return ""

    def _active_generation(self) -> int:
        return self._subsessions[-1].generation if self._subsessions else 0

    def _close_and_advance(
        self, summary: str, candidates: int, tokens_before: int, tokens_after: int
    ) -> None:
        active = self._subsessions[-1]
        active.end_turn = active.start_turn + candidates
        active.summary = summary
        active.tokens_before = tokens_before
        active.tokens_after = tokens_after
        self._subsessions.append(
            SubSession(generation=active.generation + 1, start_turn=active.end_turn)
        )

    def _record_compression(self, reclaimed: int) -> None:
        self._metrics.compress_trigger_count += 1
        self._metrics.compress_reclaimed_tokens.append(reclaimed)

    def _count_precise(self, request: LLMRequest, label: str) -> int:
        try:
            total = self.api_counter.count_tokens_api(self.profile.model_id, request.contents)
        except Exception as exc:
            raise RuntimeError(f"memory_plugin: {label}countTokens API: {exc}") from exc
        with self._lock:
            self._metrics.count_tokens_api_call_count += 1
        return int(total) + self.profile.max_output_tokens

    def _tokens_at(self, fraction: float) -> int:
        return int(fraction * self.profile.context_window_tokens)

    # -- public API --

    def build_plugin(self) -> Plugin:
        """Return a plugin wired to this instance's before/after hooks."""
        return Plugin(
            name="memory_plugin",
            before_model=self.before_model,
            after_model=self.after_model,
        )

    def snapshot(self) -> MemoryMetrics:
        """Return a point-in-time copy of the metrics and subsession history."""
        with self._lock:
            context = self.profile.context_window_tokens
            ratio = self._last_total_tokens / context if context > 0 else 0.0
            return dataclasses.replace(
                self._metrics,
                last_total_tokens=self._last_total_tokens,
                usage_ratio=ratio,
                compress_reclaimed_tokens=list(self._metrics.compress_reclaimed_tokens),
                subsessions=[dataclasses.replace(s) for s in self._subsessions],
            )

    def estimated_total(self, last_total: int, msg_tokens: int) -> int:
        """Offline estimate: last total + new message tokens + max output."""
        return last_total + msg_tokens + self.profile.max_output_tokens

    def count_msg_tokens(self, contents: list[Content]) -> int:
        """Count tokens offline, over-estimating with max output on failure."""
        try:
            return int(self.token_counter.count_tokens(contents))
        except Exception as exc:
            logger.warning(
                "memory_plugin: offline token count failed (%s); using fallback %d",
                exc,
                self.profile.max_output_tokens,
            )
            return self.profile.max_output_tokens

    def after_model(
        self, response: Optional[LLMResponse], error: Optional[BaseException] = None
    ) -> Optional[LLMResponse]:
        """Record the reported total and attach pending compression details."""
        if response is None or response.usage_metadata is None:
            logger.warning("memory_plugin: after_model: missing usage metadata; total unchanged")
            return None
        total = int(response.usage_metadata.total_token_count)
        if total <= 0:
            logger.warning(
                "memory_plugin: after_model: total token count is %d; total unchanged", total
            )
            return None

        with self._lock:
            self._last_total_tokens = total
            info = self._last_compress_info
            self._last_compress_info = None

        if info is not None:
            response.custom_metadata["compression"] = info.as_metadata()
        return None

    def before_model(self, request: Optional[LLMRequest]) -> Optional[LLMResponse]:
        """Check usage and compress; a returned response halts the model call."""
        if request is None or not request.contents:
            return None

        with self._lock:
            last_total = self._last_total_tokens
        msg_tokens = self.count_msg_tokens([request.contents[-1]])
        estimated = self.estimated_total(last_total, msg_tokens)
        threshold_tokens = self._tokens_at(self.threshold)
        if estimated < threshold_tokens:
            return None

        precise = self._count_precise(request, "")
        if precise < threshold_tokens:
            logger.info(
                "memory_plugin: countTokens false alarm estimated=%d precise_total=%d "
                "threshold_tokens=%d",
                estimated,
                precise,
                threshold_tokens,
            )
            return None

        self._trigger_compression(request)

        post_precise = self._count_precise(request, "post-compression ")
        if post_precise < self._tokens_at(self.emergency_threshold):
            return None
        return self.handle_oom(request, post_precise)

    def _trigger_compression(self, request: LLMRequest) -> None:
        active_turns = contents_to_turns(request.contents[:-1])
        with self._lock:
            existing_summary = self._last_summary()

        candidates = self.strategy.select_candidates(
            active_turns, self.profile.max_output_tokens
        )
        if not candidates:
            return

        history = _summary_pair(existing_summary) if existing_summary else []
        history.extend(request.contents[: len(candidates)])
        fork = ForkRequest(
            system_instruction=extract_system_instruction(request), history=history
        )
        try:
            result = self.strategy.compress(fork, self.profile)
        except Exception as exc:
            raise CompressionError(f"memory_plugin: compression failed: {exc}") from exc

        request.contents = build_compressed_contents(
            request, result.compressed_text, len(candidates)
        )
        reclaimed = result.original_tokens - result.compressed_tokens
        with self._lock:
            self._close_and_advance(
                result.compressed_text,
                len(candidates),
                result.original_tokens,
                result.compressed_tokens,
            )
            generation = self._active_generation()
            self._record_compression(reclaimed)

        preview = result.compressed_text
        if len(preview) > _SUMMARY_LOG_PREVIEW:
            preview = preview[:_SUMMARY_LOG_PREVIEW] + "..."
        logger.info(
            "memory_plugin: compression triggered strategy=%s generation=%d candidates=%d "
            "original_tokens=%d compressed_tokens=%d reclaimed_tokens=%d "
            "compression_ratio=%.2f%% summary_preview=%s",
            self.strategy.name(),
            generation,
            len(candidates),
            result.original_tokens,
            result.compressed_tokens,
            reclaimed,
            result.actual_compression_ratio * 100,
            preview,
        )
        with self._lock:
            sessions = [dataclasses.replace(s) for s in self._subsessions]
        log_subsessions(sessions)
        log_compressed_contents(request.contents)

        with self._lock:
            self._last_compress_info = CompressInfo(
                strategy=self.strategy.name(),
                candidates=len(candidates),
                original_tokens=result.original_tokens,
                compressed_tokens=result.compressed_tokens,
                reclaimed_tokens=reclaimed,
                summary_index=generation,
            )

    def handle_oom(self, request: LLMRequest, precise_total: int) -> Optional[LLMResponse]:
        """Try compressing the summary again; otherwise return an OOM warning.

        Compression failures never propagate from here; they degrade to a warning.
        """
        emergency_tokens = self._tokens_at(self.emergency_threshold)
        with self._lock:
            existing_summary = self._last_summary()

        if not existing_summary:
            logger.warning(
                "memory_plugin: OOM handler: SUMMARY segment is empty precise_total=%d "
                "emergency_tokens=%d",
                precise_total,
                emergency_tokens,
            )
            return self._oom_warning(
                precise_total, "SUMMARY segment empty, no content to re-compress"
            )

        fork = ForkRequest(
            system_instruction=extract_system_instruction(request),
            history=_summary_pair(existing_summary),
        )
        try:
            result = self.strategy.compress(fork, self.profile)
        except Exception as exc:
            logger.error(
                "memory_plugin: OOM handler: secondary compression failed: %s", exc
            )
            return self._oom_warning(precise_total, f"secondary compression error: {exc}")

        reduction = 0.0
        if result.original_tokens > 0:
            reduction = 1.0 - result.compressed_tokens / result.original_tokens
        if reduction < MIN_SECONDARY_COMPRESSION_REDUCTION:
            logger.warning(
                "memory_plugin: OOM handler: secondary compression ineffective "
                "reduction_ratio=%f",
                reduction,
            )
            return self._oom_warning(
                precise_total,
                "secondary compression ineffective: already maximally compressed",
            )

        request.contents = build_compressed_contents(request, result.compressed_text, 1)
        reclaimed = result.original_tokens - result.compressed_tokens
        with self._lock:
            self._close_and_advance(
                result.compressed_text, 1, result.original_tokens, result.compressed_tokens
            )
            self._record_compression(reclaimed)

        post_precise = self._count_precise(request, "post-secondary-compression ")
        if post_precise < emergency_tokens:
            logger.info(
                "memory_plugin: OOM handler: secondary compression succeeded "
                "post_secondary_precise=%d emergency_tokens=%d reclaimed_tokens=%d",
                post_precise,
                emergency_tokens,
                reclaimed,
            )
            return None
        return self._oom_warning(
            post_precise, "secondary compression insufficient: context window still full"
        )

    def _oom_warning(self, precise_total: int, reason: str) -> LLMResponse:
        context = self.profile.context_window_tokens
        if context:
            ratio = precise_total / context
        else:
            ratio = math.inf if precise_total else math.nan
        event = OOMWarningEvent(
            usage_ratio=ratio, recommendation=OOM_RECOMMENDATION, reason=reason
        )
        with self._lock:
            self._metrics.oom_event_count += 1
        logger.warning(
            "memory_plugin: OOM handler: returning OOMWarning usage_ratio=%f reason=%s",
            ratio,
            reason,
        )
        return LLMResponse(custom_metadata={"oom_warning": event})