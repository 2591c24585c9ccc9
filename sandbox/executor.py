"""
Subprocess-based sandbox executor for untrusted code.
"""

from __future__ import annotations

import ast
import json
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import cast

from sandbox import policy
from sandbox import protocol
from sandbox.taxonomy import (
    ClassifiedError,
    ErrorCategory,
    classify_crash,
    make_error,
    timeout_error,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5_000

_unix_limits_warned = False


@dataclass(frozen=True)
class OpaqueValue:
    """A value that cannot be rebuilt outside the child, carried as its repr."""

    text: str
    truncated: bool = False

    def __repr__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ExecutionResult:
    value: object | None
    output: str
    error: ClassifiedError | None
    elapsed_ms: int

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return self.error is not None and self.error.category is ErrorCategory.TIMEOUT


def failed_result(error: ClassifiedError, elapsed_ms: int, output: str = "") -> ExecutionResult:
    return ExecutionResult(value=None, output=output, error=error, elapsed_ms=max(0, elapsed_ms))


def decode_value(value_repr: str | None, truncated: bool = False) -> object | None:
    """Rebuild a value from the child's repr; non-literals stay opaque."""
    if value_repr is None:
        return None
    if truncated:
        return OpaqueValue(value_repr, truncated=True)
    try:
        return ast.literal_eval(value_repr)
    except (ValueError, SyntaxError, TypeError, MemoryError, RecursionError):
        return OpaqueValue(value_repr)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class SandboxExecutor:
    """
    Execute untrusted code in a dedicated subprocess with best-effort limits.

    On Unix platforms, CPU, memory and file-size limits are
    enforced via resource.setrlimit. On Windows, these limits degrade
    gracefully and only the wall-clock timeout applies.
    """

    DEFAULT_MEMORY_LIMIT_MB: int = 256
    DEFAULT_MAX_OUTPUT_CHARS: int = protocol.DEFAULT_MAX_OUTPUT_CHARS

    def __init__(
        self,
        memory_limit_mb: int | None = None,
        max_output_chars: int | None = None,
    ) -> None:
        self.memory_limit_mb: int = memory_limit_mb or self.DEFAULT_MEMORY_LIMIT_MB
        self.max_output_chars: int = max_output_chars or self.DEFAULT_MAX_OUTPUT_CHARS

    def execute(
        self,
        code: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        memory_limit_mb: int | None = None,
        capture_output: bool = True,
    ) -> ExecutionResult:
        """Run ``code`` once; every failure comes back inside the result."""
        memory_limit_mb = memory_limit_mb or self.memory_limit_mb
        payload = {
            "code": code,
            "capture_output": capture_output,
            "max_output_chars": self.max_output_chars,
            "allowed_modules": policy.ALLOWED_MODULES,
        }

        env = os.environ.copy()
        project_root = str(Path(__file__).resolve().parents[1])
        existing_pythonpath = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = (
            f"{project_root}{os.pathsep}{existing_pythonpath}"
            if existing_pythonpath
            else project_root
        )

        start = time.perf_counter()
        try:
            process = subprocess.Popen(
                [sys.executable, "-c", protocol.CHILD_TEMPLATE],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
                preexec_fn=self._preexec(timeout_ms, memory_limit_mb),
            )
        except OSError as exc:
            logger.error(f"Could not start sandbox process: {exc}")
            return failed_result(
                make_error(ErrorCategory.UNKNOWN_RUNTIME_ERROR, f"sandbox unavailable: {exc}"),
                _elapsed_ms(start),
            )

        try:
            stdout, stderr = process.communicate(json.dumps(payload), timeout=timeout_ms / 1000)
        except subprocess.TimeoutExpired:
            self._kill_async(process)
            logger.warning(f"Code execution timed out after {timeout_ms}ms")
            return failed_result(timeout_error(timeout_ms), timeout_ms)

        elapsed_ms = _elapsed_ms(start)
        result = self._parse_response(stdout, stderr, process.returncode, timeout_ms, elapsed_ms)
        logger.debug(
            f"Sandbox run finished in {elapsed_ms}ms "
            f"(success={result.success}, category={result.error.category.value if result.error else None})"
        )
        return result

    def _parse_response(
        self,
        stdout: str,
        stderr: str,
        returncode: int | None,
        timeout_ms: int,
        elapsed_ms: int,
    ) -> ExecutionResult:
        if not stdout:
            sigxcpu = getattr(signal, "SIGXCPU", None)
            if sigxcpu is not None and returncode == -sigxcpu:
                return failed_result(timeout_error(timeout_ms), elapsed_ms)
            return failed_result(classify_crash(stderr or "", returncode), elapsed_ms)

        try:
            loaded = cast(object, json.loads(stdout))
        except json.JSONDecodeError as exc:
            error = make_error(ErrorCategory.UNKNOWN_RUNTIME_ERROR, f"invalid response from sandbox: {exc}")
            return failed_result(error, elapsed_ms)

        if not isinstance(loaded, dict):
            error = make_error(ErrorCategory.UNKNOWN_RUNTIME_ERROR, "invalid response type from sandbox")
            return failed_result(error, elapsed_ms)
        data = cast(dict[str, object], loaded)

        output = str(data.get("output") or "")
        error_value = data.get("error")
        if isinstance(error_value, dict):
            error = ClassifiedError.from_dict(cast(dict[str, object], error_value))
            return failed_result(error, elapsed_ms, output=output)

        value_repr = data.get("value_repr")
        value = decode_value(
            str(value_repr) if value_repr is not None else None,
            truncated=bool(data.get("value_truncated")),
        )
        return ExecutionResult(value=value, output=output, error=None, elapsed_ms=elapsed_ms)

    def _kill_async(self, process: subprocess.Popen[str]) -> None:
        """Kill a timed-out child and reap it without blocking the caller."""
        try:
            process.kill()
        except OSError:
            pass
        reaper = threading.Thread(target=self._reap, args=(process,), daemon=True)
        reaper.start()

    @staticmethod
    def _reap(process: subprocess.Popen[str]) -> None:
        try:
            _ = process.communicate()
        except (OSError, ValueError) as exc:
            logger.debug(f"Sandbox reaper could not collect process {process.pid}: {exc}")

    def _preexec(self, timeout_ms: int, memory_limit_mb: int):
        global _unix_limits_warned
        if os.name != "nt":
            return self._limit_resources(timeout_ms, memory_limit_mb)
        if not _unix_limits_warned:
            logger.debug("Resource limits unavailable on this platform; only the wall-clock timeout applies")
            _unix_limits_warned = True
        return None

    def _limit_resources(self, timeout_ms: int, memory_limit_mb: int):
        """Return a preexec_fn to enforce resource limits on Unix."""
        def _apply_limits():
            try:
                import resource
            except ImportError:
                return
            cpu_seconds = max(1, int(timeout_ms / 1000) + 1)
            memory_bytes = int(memory_limit_mb * 1024 * 1024)
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
            if hasattr(resource, "RLIMIT_AS"):
                resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
            elif hasattr(resource, "RLIMIT_DATA"):
                resource.setrlimit(resource.RLIMIT_DATA, (memory_bytes, memory_bytes))
            if hasattr(resource, "RLIMIT_FSIZE"):
                resource.setrlimit(resource.RLIMIT_FSIZE, (1024 * 1024, 1024 * 1024))

        return _apply_limits
