"""
Entry points of the execution engine: gate, sandbox run, display formatting.
"""

from __future__ import annotations

from dataclasses import dataclass

from sandbox.executor import DEFAULT_TIMEOUT_MS, ExecutionResult, SandboxExecutor, failed_result
from sandbox.formatter import DisplayResult, format_result
from sandbox.gate import SafetyVerdict, check_safety

__all__ = [
    "ExecutionOptions",
    "check_safety",
    "execute",
    "execute_and_format",
]


@dataclass(frozen=True)
class ExecutionOptions:
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    memory_limit_mb: int = SandboxExecutor.DEFAULT_MEMORY_LIMIT_MB
    capture_output: bool = True
    max_output_chars: int = SandboxExecutor.DEFAULT_MAX_OUTPUT_CHARS


DEFAULT_OPTIONS = ExecutionOptions()


def execute(source: str, options: ExecutionOptions | None = None) -> ExecutionResult:
    """Gate then run ``source``; a rejection comes back as a ``dangerous_code`` result."""
    options = options or DEFAULT_OPTIONS
    verdict = check_safety(source)
    if verdict.error is not None:
        return failed_result(verdict.error, 0)
    return _run_checked(source, options)


def execute_and_format(
    source: str,
    options: ExecutionOptions | None = None,
) -> DisplayResult | SafetyVerdict:
    """Execute and format for display, or return the gate's rejection."""
    verdict = check_safety(source)
    if verdict.rejected:
        return verdict
    return format_result(_run_checked(source, options or DEFAULT_OPTIONS))


def _run_checked(source: str, options: ExecutionOptions) -> ExecutionResult:
    executor = SandboxExecutor(
        memory_limit_mb=options.memory_limit_mb,
        max_output_chars=options.max_output_chars,
    )
    return executor.execute(
        source,
        timeout_ms=options.timeout_ms,
        capture_output=options.capture_output,
    )
