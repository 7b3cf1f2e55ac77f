"""A plugin that dumps every model request before it is sent."""

from __future__ import annotations

import json
import sys
from typing import Any, Optional, TextIO

from agentic.content import LLMRequest, LLMResponse, Plugin

_START = "========== DEBUG: LLM REQUEST START =========="
_END = "========== DEBUG: LLM REQUEST END =========="


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)


def dump_request(request: LLMRequest, stream: Optional[TextIO] = None) -> None:
    """Write a readable dump of the request to stream (stderr by default)."""
    out = sys.stderr if stream is None else stream

    def emit(line: str) -> None:
        print(line, file=out)

    emit(_START)

    config = request.config
    if config is not None and config.system_instruction is not None:
        instruction = config.system_instruction
        emit(
            f"--- SystemInstruction (role={instruction.role}, "
            f"{len(instruction.parts)} parts) ---"
        )
        for i, part in enumerate(instruction.parts):
            if part is None:
                continue
            if part.text:
                emit(f"  [SI part {i}] TEXT ({len(part.text)} chars):")
                emit(part.text)
            if part.function_call is not None:
                emit(f"  [SI part {i}] FUNCTION_CALL: {part.function_call.name}")
            if part.function_response is not None:
                emit(f"  [SI part {i}] FUNCTION_RESPONSE: {part.function_response.name}")
            if part.inline_data is not None:
                emit(
                    f"  [SI part {i}] INLINE_DATA: mime={part.inline_data.mime_type}, "
                    f"{len(part.inline_data.data)} bytes"
                )
    else:
        emit("--- SystemInstruction: nil ---")

    emit(f"--- Contents ({len(request.contents)} entries) ---")
    for i, content in enumerate(request.contents):
        role = content.role or "(empty)"
        emit(f"  [{i}] role={role}, {len(content.parts)} parts")
        for j, part in enumerate(content.parts):
            if part is None:
                continue
            if part.text:
                emit(f"    [{i}.{j}] TEXT ({len(part.text)} chars):")
                emit(part.text)
            if part.function_call is not None:
                call = part.function_call
                args = _compact_json(call.args) if call.args is not None else ""
                emit(f"    [{i}.{j}] FUNCTION_CALL: {call.name} args={args}")
            if part.function_response is not None:
                reply = part.function_response
                body = _compact_json(reply.response) if reply.response is not None else ""
                emit(f"    [{i}.{j}] FUNCTION_RESPONSE: {reply.name} response={body}")
            if part.inline_data is not None:
                emit(
                    f"    [{i}.{j}] INLINE_DATA: mime={part.inline_data.mime_type}, "
                    f"{len(part.inline_data.data)} bytes"
                )
            if part.thought_signature:
                emit(
                    f"    [{i}.{j}] THOUGHT_SIGNATURE: "
                    f"{len(part.thought_signature)} bytes"
                )

    emit(f"--- Model: {request.model} ---")
    emit(_END)


def _before_model(request: LLMRequest) -> Optional[LLMResponse]:
    dump_request(request)
    return None


def new_debug_plugin() -> Plugin:
    """Create the plugin that dumps each request to stderr and lets it through."""
    return Plugin(name="debug_request_dump", before_model=_before_model)