"""Model profiles: context window sizes, output limits and costs."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ModelNotFoundError(LookupError):
    """Raised when a model ID is not in the registry."""


@dataclass(frozen=True)
class ModelProfile:
    """An immutable description of a model's limits and cost parameters."""

    model_id: str
    provider: str = ""
    context_window_tokens: int = 0
    max_output_tokens: int = 0
    cost_per_1k_input_tokens: float = 0.0
    cost_per_1k_output_tokens: float = 0.0
    compress_model_id: str = ""
    compress_cost_per_1k_input_tokens: float = 0.0
    compress_cost_per_1k_output_tokens: float = 0.0

    def effective_compress_model_id(self) -> str:
        """Return the compress model ID, falling back to the primary model."""
        if self.compress_model_id:
            return self.compress_model_id
        logger.warning(
            "CompressModelID not set; falling back to primary model %s", self.model_id
        )
        return self.model_id


BUILTIN_PROFILES: tuple[ModelProfile, ...] = (
    ModelProfile("gemini-2.0-flash", "google", 1048576, 8192),
    ModelProfile("gemini-2.0-flash-lite", "google", 1048576, 8192),
    ModelProfile("gemini-2.5-pro", "google", 1048576, 65536),
    ModelProfile("gemini-2.5-flash", "google", 1048576, 65536),
    ModelProfile("gemini-3-flash-preview", "google", 1048576, 65536),
    ModelProfile("gemini-3.1-flash-lite-preview", "google", 1048576, 65536),
)


class Registry:
    """Lookup table of model profiles; custom profiles override built-ins."""

    def __init__(self, *args: ModelProfile) -> None:
        for index, profile in enumerate(args):
            if not profile.model_id:
                raise ValueError(
                    f"Registry: model_id is required for profile at index {index}"
                )
            if profile.context_window_tokens == 0:
                raise ValueError(
                    "Registry: context_window_tokens is required for profile "
                    f"{profile.model_id!r} at index {index}"
                )
        self._profiles: dict[str, ModelProfile] = {
            p.model_id: p for p in (*BUILTIN_PROFILES, *args)
        }

    def get_profile(self, model_id: str) -> ModelProfile:
        """Return the profile for model_id or raise ModelNotFoundError."""
        try:
            return self._profiles[model_id]
        except KeyError:
            raise ModelNotFoundError(f"model not found: {model_id!r}") from None