"""Context-window memory management, compression strategies and structured-output helpers for LLM agents."""

__version__ = "0.1.0"

__all__ = [
    "compress",
    "content",
    "debug",
    "memory_plugin",
    "memory_state",
    "profile",
    "prompting",
    "responder",
    "rewrite",
    "schema",
]