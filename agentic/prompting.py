"""Prompt assembly helpers shared by the model-backed agents."""

from __future__ import annotations

import dataclasses
import json
import math
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

_TOOLS_PLACEHOLDER = "{{AVAILABLE_TOOLS}}"
_ROLES_PLACEHOLDER = "{{AVAILABLE_ROLES}}"

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def build_plan_system_instruction(
    template: str, tools: Iterable[str], roles: Iterable[str]
) -> str:
    """Fill the tools and roles placeholders with comma-separated lists."""
    return template.replace(_TOOLS_PLACEHOLDER, ", ".join(tools)).replace(
        _ROLES_PLACEHOLDER, ", ".join(roles)
    )


def _format_float(value: float) -> str:
    """Shortest round-trip formatting, switching to exponent form like %g."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    sign = "-" if math.copysign(1.0, value) < 0 else ""
    if value == 0:
        return sign + "0"

    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    raw = "".join(str(d) for d in digit_tuple)
    digits = raw.rstrip("0")
    exponent += len(raw) - len(digits)
    digits = digits.lstrip("0") or "0"

    count = len(digits)
    point = count + exponent
    exp10 = point - 1

    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        exp_sign = "+" if exp10 >= 0 else "-"
        return f"{sign}{mantissa}e{exp_sign}{abs(exp10):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= count:
        return sign + digits + "0" * (point - count)
    return f"{sign}{digits[:point]}.{digits[point:]}"


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, (bytes, bytearray)):
        return value.decode("latin-1")
    raise TypeError(f"cannot encode {type(value).__name__}")


def _encode_json(value: Any) -> str:
    text = json.dumps(
        value,
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
        allow_nan=False,
        default=_json_default,
    )
    for char, escaped in _JSON_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    try:
        return _encode_json(value)
    except (TypeError, ValueError):
        return str(value)


def format_results(results: Optional[Mapping[str, Any]]) -> str:
    """Render results as sorted "key=value" lines for inclusion in a prompt.

    Scalars use their plain textual form; anything else is JSON-encoded.
    """
    if not results:
        return ""
    return "\n".join(f"{key}={_format_value(results[key])}" for key in sorted(results))