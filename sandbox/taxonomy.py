"""Error classification for sandboxed executions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    SYNTAX_ERROR = "syntax_error"
    COMPILE_ERROR = "compile_error"
    ARITHMETIC_ERROR = "arithmetic_error"
    ARGUMENT_ERROR = "argument_error"
    UNDEFINED_OPERATION = "undefined_operation"
    FUNCTION_MISMATCH = "function_mismatch"
    TIMEOUT = "timeout"
    RESOURCE_EXCEEDED = "resource_exceeded"
    DANGEROUS_CODE = "dangerous_code"
    UNKNOWN_RUNTIME_ERROR = "unknown_runtime_error"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def hint(self) -> str | None:
        return _HINTS.get(self)

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_LABELS: dict[ErrorCategory, str] = {
    ErrorCategory.SYNTAX_ERROR: "Syntax Error",
    ErrorCategory.COMPILE_ERROR: "Compilation Error",
    ErrorCategory.ARITHMETIC_ERROR: "Arithmetic Error",
    ErrorCategory.ARGUMENT_ERROR: "Argument Error",
    ErrorCategory.UNDEFINED_OPERATION: "Undefined Operation Error",
    ErrorCategory.FUNCTION_MISMATCH: "Function Mismatch Error",
    ErrorCategory.TIMEOUT: "Timeout",
    ErrorCategory.RESOURCE_EXCEEDED: "Resource Limit Exceeded",
    ErrorCategory.DANGEROUS_CODE: "Dangerous Code",
    ErrorCategory.UNKNOWN_RUNTIME_ERROR: "Runtime Error",
}

_HINTS: dict[ErrorCategory, str] = {
    ErrorCategory.TIMEOUT: "Check for an infinite loop or a loop that never reaches its exit condition.",
    ErrorCategory.RESOURCE_EXCEEDED: (
        "Check for unbounded allocation (ever-growing lists or strings) or recursion without a base case."
    ),
    ErrorCategory.DANGEROUS_CODE: (
        "File, network, process and dynamic-evaluation operations are not available in lessons."
    ),
}

# Only a timeout can plausibly succeed on a re-run (host load); everything else is deterministic.
_RETRYABLE = frozenset({ErrorCategory.TIMEOUT})

PHASE_PARSE = "parse"
PHASE_COMPILE = "compile"
PHASE_RUN = "run"

SANDBOX_IMPORT_MARKER = "blocked by sandbox policy"


class SandboxImportError(ImportError):
    """Import refused by the sandbox import guard.

    Only this type counts as a policy refusal; an ``ImportError`` raised by
    user code is an ordinary runtime error whatever its message says.
    """

_ARITY_PATTERN = re.compile(
    r"(positional argument|keyword argument|takes (no|exactly|at most|at least|\d+) |missing \d+ required|"
    r"unexpected keyword|got multiple values for argument)"
)

_UNDEFINED_TYPES = ("NameError", "UnboundLocalError", "AttributeError", "NotImplementedError")
_ARITHMETIC_TYPES = ("ZeroDivisionError", "OverflowError", "FloatingPointError", "ArithmeticError")
_ARGUMENT_TYPES = ("ValueError", "UnicodeError", "UnicodeDecodeError", "UnicodeEncodeError")
_RESOURCE_TYPES = ("MemoryError", "RecursionError")


@dataclass(frozen=True)
class ClassifiedError:
    category: ErrorCategory
    message: str

    @property
    def display(self) -> str:
        """Message with the category hint appended, for end users."""
        hint = self.category.hint
        if hint and hint not in self.message:
            return f"{self.message} {hint}"
        return self.message

    def to_dict(self) -> dict[str, str]:
        return {"category": self.category.value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ClassifiedError":
        try:
            category = ErrorCategory(str(data.get("category")))
        except ValueError:
            category = ErrorCategory.UNKNOWN_RUNTIME_ERROR
        return cls(category=category, message=str(data.get("message", "")))


def make_error(category: ErrorCategory, detail: str) -> ClassifiedError:
    """Build an error whose message follows the '<Label>: <detail>' convention."""
    return ClassifiedError(category=category, message=f"{category.label}: {detail}")


def timeout_error(timeout_ms: int) -> ClassifiedError:
    return make_error(ErrorCategory.TIMEOUT, f"execution exceeded {timeout_ms}ms")


def resource_error(detail: str = "memory limit reached") -> ClassifiedError:
    return make_error(ErrorCategory.RESOURCE_EXCEEDED, detail)


def _exception_names(exc: BaseException) -> set[str]:
    return {klass.__name__ for klass in type(exc).__mro__}


def _syntax_detail(exc: SyntaxError) -> str:
    detail = exc.msg or str(exc)
    if exc.lineno is not None:
        detail = f"{detail} (line {exc.lineno})"
    return detail


def classify_exception(exc: BaseException, phase: str = PHASE_RUN) -> ClassifiedError:
    """Map an exception raised by user code to a ClassifiedError.

    The phase tells grammar errors (``ast.parse``) apart from errors that only
    surface when the tree is compiled (``return`` outside a function, ...).
    """
    names = _exception_names(exc)
    message = str(exc)

    if isinstance(exc, SyntaxError):
        category = ErrorCategory.COMPILE_ERROR if phase == PHASE_COMPILE else ErrorCategory.SYNTAX_ERROR
        return make_error(category, _syntax_detail(exc))
    if names & set(_RESOURCE_TYPES):
        detail = message or type(exc).__name__
        return make_error(ErrorCategory.RESOURCE_EXCEEDED, f"{type(exc).__name__}: {detail}")
    if isinstance(exc, SandboxImportError):
        return make_error(ErrorCategory.DANGEROUS_CODE, message)
    if names & set(_ARITHMETIC_TYPES):
        return make_error(ErrorCategory.ARITHMETIC_ERROR, message)
    if "TypeError" in names:
        if _ARITY_PATTERN.search(message):
            return make_error(ErrorCategory.FUNCTION_MISMATCH, message)
        return make_error(ErrorCategory.ARGUMENT_ERROR, message)
    if names & set(_ARGUMENT_TYPES):
        return make_error(ErrorCategory.ARGUMENT_ERROR, message)
    if names & set(_UNDEFINED_TYPES):
        return make_error(ErrorCategory.UNDEFINED_OPERATION, message)
    if isinstance(exc, SystemExit):
        return make_error(ErrorCategory.UNKNOWN_RUNTIME_ERROR, f"Process exited: {exc.code!r}")
    detail = f"{type(exc).__name__}: {message}" if message else type(exc).__name__
    return make_error(ErrorCategory.UNKNOWN_RUNTIME_ERROR, detail)


def classify_crash(stderr: str, returncode: int | None) -> ClassifiedError:
    """Classify a child that died without writing a protocol response."""
    lowered = stderr.lower()
    if "memoryerror" in lowered or "cannot allocate memory" in lowered:
        return resource_error("the program ran out of memory")
    if "recursionerror" in lowered:
        return resource_error("maximum recursion depth exceeded")
    if returncode is not None and returncode < 0:
        return make_error(
            ErrorCategory.UNKNOWN_RUNTIME_ERROR,
            f"sandbox process was terminated by signal {-returncode}",
        )
    detail = stderr.strip().splitlines()[-1] if stderr.strip() else "empty response from sandbox"
    return make_error(ErrorCategory.UNKNOWN_RUNTIME_ERROR, detail)
