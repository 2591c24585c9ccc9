"""
Formats execution results for display in the learning interface.
"""

from __future__ import annotations

import pprint
import re
from dataclasses import dataclass

from sandbox.executor import ExecutionResult
from sandbox.protocol import describe_value

NIL_TEXT = "nil"
SUMMARY_FIELD_LIMIT = 100
MAX_VALUE_TEXT = 2_000

LIST_LIMIT = 10
LIST_PREVIEW = 5
MAPPING_LIMIT = 5
MAPPING_PREVIEW = 3
TUPLE_LIMIT = 5
TUPLE_PREVIEW = 3

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class DisplayResult:
    success: bool
    value_text: str
    output_text: str | None
    error_text: str | None
    elapsed_text: str
    raw_value: object | None = None


def format_result(result: ExecutionResult) -> DisplayResult:
    """Format a raw execution result for display."""
    error_text = format_error_message(result.error.display if result.error is not None else None)
    return DisplayResult(
        success=result.error is None,
        value_text=format_value(result.value),
        output_text=format_output(result.output),
        error_text=error_text,
        elapsed_text=format_execution_time(result.elapsed_ms),
        raw_value=result.value,
    )


def format_value(value: object | None) -> str:
    """Render a value, bounding composites by item count."""
    if value is None:
        return NIL_TEXT
    if isinstance(value, (str, bytes, bool, int, float, complex)):
        return describe_value(value)
    if isinstance(value, (list, set, frozenset)):
        return _format_sequence(value)
    if isinstance(value, dict):
        return _format_mapping(value)
    if isinstance(value, tuple):
        return _format_tuple(value)
    return _clip(pprint.pformat(value), MAX_VALUE_TEXT)


def format_output(output: str | None) -> str | None:
    if not output:
        return None
    formatted = output.rstrip()
    return formatted or None


def format_error_message(error: str | None) -> str | None:
    if error is None:
        return None
    return _WHITESPACE.sub(" ", error).strip()


def format_execution_time(time_ms: int | float) -> str:
    if time_ms < 1:
        return "< 1ms"
    if time_ms < 1000:
        return f"{int(time_ms)}ms"
    if time_ms < 60_000:
        return f"{time_ms / 1000:.2f}s"
    return f"{time_ms / 60_000:.2f}min"


def create_summary(display: DisplayResult) -> str:
    """One-line summary for logs and terse banners."""
    if not display.success:
        error = display.error_text or ""
        return f"Error: {error[:SUMMARY_FIELD_LIMIT]} | Failed in {display.elapsed_text}"

    parts: list[str] = []
    if display.value_text and display.value_text != NIL_TEXT:
        parts.append(f"Result: {display.value_text[:SUMMARY_FIELD_LIMIT]}")
    if display.output_text:
        parts.append(f"Output: {display.output_text[:SUMMARY_FIELD_LIMIT]}")
    parts.append(f"Executed in {display.elapsed_text}")
    return " | ".join(parts)


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + " ..."


def _format_sequence(value: list[object] | set[object] | frozenset[object]) -> str:
    if len(value) <= LIST_LIMIT:
        return pprint.pformat(value)
    items = list(value)[:LIST_PREVIEW]
    preview: object = items if isinstance(value, list) else type(value)(items)
    text = pprint.pformat(preview)
    # frozenset({...}) closes with two characters
    cut = 2 if isinstance(value, frozenset) else 1
    return f"{text[:-cut]} ... ({len(value)} items){text[-cut:]}"


def _format_mapping(value: dict[object, object]) -> str:
    if len(value) <= MAPPING_LIMIT:
        return pprint.pformat(value, sort_dicts=False)
    preview = dict(list(value.items())[:MAPPING_PREVIEW])
    text = pprint.pformat(preview, sort_dicts=False)
    return f"{text[:-1]} ... ({len(value)} keys)}}"


def _format_tuple(value: tuple[object, ...]) -> str:
    if len(value) <= TUPLE_LIMIT:
        return pprint.pformat(value)
    text = pprint.pformat(value[:TUPLE_PREVIEW])
    return f"{text[:-1]} ... ({len(value)} elements))"
