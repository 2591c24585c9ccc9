"""
Child process protocol for sandbox execution.

The parent writes one JSON payload to the child's stdin; the child evaluates
the submitted source and writes one JSON response to its stdout.
"""

from __future__ import annotations

import ast
import builtins
import json
import math
import sys
import time
from collections.abc import Callable
from contextlib import redirect_stderr, redirect_stdout
from types import CodeType
from typing import TextIO, cast

from sandbox import policy
from sandbox.taxonomy import (
    PHASE_COMPILE,
    PHASE_PARSE,
    PHASE_RUN,
    ClassifiedError,
    classify_exception,
)

CHILD_TEMPLATE = """
from sandbox.protocol import child_main
child_main()
""".strip()

SOURCE_FILENAME = "<lesson>"
NAMESPACE_NAME = "__lesson__"
DEFAULT_MAX_OUTPUT_CHARS = 65_536
MAX_VALUE_REPR_CHARS = 1_000_000
TRUNCATION_MARKER = "\n... (output truncated)\n"


class OutputSink:
    """In-memory text sink with a hard character cap."""

    def __init__(self, max_chars: int = DEFAULT_MAX_OUTPUT_CHARS, enabled: bool = True) -> None:
        self.max_chars: int = max(0, max_chars)
        self.enabled: bool = enabled
        self.truncated: bool = False
        self._parts: list[str] = []
        self._size: int = 0

    def write(self, text: str) -> int:
        if not self.enabled or self.truncated:
            return len(text)
        remaining = self.max_chars - self._size
        if len(text) > remaining:
            self._parts.append(text[:remaining])
            self._parts.append(TRUNCATION_MARKER)
            self._size = self.max_chars
            self.truncated = True
        else:
            self._parts.append(text)
            self._size += len(text)
        return len(text)

    def flush(self) -> None:
        return None

    def getvalue(self) -> str:
        return "".join(self._parts)


def _load_payload() -> dict[str, object]:
    raw = sys.stdin.read()
    if not raw:
        return {}
    try:
        return cast(dict[str, object], json.loads(raw))
    except json.JSONDecodeError:
        return {}


def make_print(sink: OutputSink) -> Callable[..., None]:
    """Return a ``print`` replacement bound to ``sink``."""

    def sandbox_print(
        *args: object,
        sep: str | None = " ",
        end: str | None = "\n",
        file: object = None,
        flush: bool = False,
    ) -> None:
        builtins.print(*args, sep=sep, end=end, file=sink)

    return sandbox_print


def compile_source(code: str) -> tuple[CodeType | None, CodeType | None]:
    """Split ``code`` into a statement block and an optional trailing expression.

    Raises ``SyntaxError`` tagged with the phase it came from (``_phase`` attribute).
    """
    try:
        tree = ast.parse(code, SOURCE_FILENAME, "exec")
    except (SyntaxError, ValueError) as exc:
        raise _tag(exc, PHASE_PARSE) from None

    body = list(tree.body)
    tail: ast.expr | None = None
    if body and isinstance(body[-1], ast.Expr):
        tail = cast(ast.Expr, body.pop()).value

    try:
        statements = compile(ast.Module(body=body, type_ignores=[]), SOURCE_FILENAME, "exec") if body else None
        expression = compile(ast.Expression(body=tail), SOURCE_FILENAME, "eval") if tail is not None else None
    except (SyntaxError, ValueError) as exc:
        raise _tag(exc, PHASE_COMPILE) from None
    return statements, expression


def _tag(exc: Exception, phase: str) -> SyntaxError:
    if isinstance(exc, SyntaxError):
        error = exc
    else:
        error = SyntaxError(str(exc))
    setattr(error, "_phase", phase)
    return error


def describe_value(value: object) -> str:
    """``repr`` of a result; ints past the interpreter's digit limit get a summary."""
    try:
        return repr(value)
    except ValueError:
        if not isinstance(value, int):
            raise
        return f"<int with {_digit_count(value)} digits>"


def _digit_count(value: int) -> int:
    magnitude = abs(value)
    digits = int(magnitude.bit_length() * math.log10(2)) + 1
    # the estimate overshoots by at most one
    if magnitude < 10 ** (digits - 1):
        digits -= 1
    return digits


def run_source(
    code: str,
    sink: OutputSink,
    allowed_modules: list[str] | None = None,
) -> tuple[object | None, str | None, ClassifiedError | None]:
    """Evaluate ``code`` in a fresh namespace whose output goes to ``sink``.

    Returns ``(value, value_repr, error)``. The repr is taken inside the
    redirected block because a user ``__repr__`` may print.
    """
    try:
        statements, expression = compile_source(code)
    except SyntaxError as exc:
        return None, None, classify_exception(exc, getattr(exc, "_phase", PHASE_PARSE))
    except (MemoryError, RecursionError) as exc:
        return None, None, classify_exception(exc, PHASE_PARSE)

    namespace: dict[str, object] = {
        "__name__": NAMESPACE_NAME,
        "__builtins__": policy.build_restricted_builtins(
            make_print(sink), allowed_modules=allowed_modules
        ),
    }
    try:
        stream = cast(TextIO, sink)
        with redirect_stdout(stream), redirect_stderr(stream):
            if statements is not None:
                exec(statements, namespace)
            value = eval(expression, namespace) if expression is not None else None
            value_repr = describe_value(value) if value is not None else None
    except BaseException as exc:  # noqa: BLE001 - capture all user code errors
        return None, None, classify_exception(exc, PHASE_RUN)
    return value, value_repr, None


def child_main() -> None:
    """Entry point for the sandbox child process."""
    protocol_out = sys.stdout
    start = time.perf_counter()
    payload = _load_payload()
    code = str(payload.get("code", "") or "")
    capture_output = bool(payload.get("capture_output", True))
    max_output_chars = int(cast(int, payload.get("max_output_chars") or DEFAULT_MAX_OUTPUT_CHARS))
    allowed_modules = cast(list[str], payload.get("allowed_modules", list(policy.ALLOWED_MODULES)))

    sink = OutputSink(max_chars=max_output_chars, enabled=capture_output)
    _, value_repr, error = run_source(code, sink, allowed_modules)

    value_truncated = False
    if value_repr is not None and len(value_repr) > MAX_VALUE_REPR_CHARS:
        value_repr = value_repr[:MAX_VALUE_REPR_CHARS]
        value_truncated = True

    response: dict[str, object] = {
        "success": error is None,
        "value_repr": value_repr,
        "value_truncated": value_truncated,
        "output": sink.getvalue(),
        "output_truncated": sink.truncated,
        "error": error.to_dict() if error is not None else None,
        "runtime_ms": (time.perf_counter() - start) * 1000,
    }
    _ = protocol_out.write(json.dumps(response))
    protocol_out.flush()


if __name__ == "__main__":
    child_main()
