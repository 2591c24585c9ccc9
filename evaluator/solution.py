"""Solution evaluation against a lesson's grading spec."""

from __future__ import annotations

from collections.abc import Mapping

from sandbox.executor import ExecutionResult

from .base import (
    EXPECTED_OUTPUT_KEY,
    EXPECTED_RESULT_KEY,
    ExpectedOutput,
    GradingSpec,
    NoExpectation,
    TestCases,
    Verdict,
)
from .feedback import FeedbackTemplates


def normalize_text(text: str) -> str:
    """Unify line endings, drop trailing spaces per line, trim the whole."""
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip()


def comparison_text(result: ExecutionResult) -> str:
    """Text a submission is judged on: its output, else its value's literal form."""
    output = normalize_text(result.output)
    if output:
        return output
    if result.value is not None:
        return normalize_text(repr(result.value))
    return ""


def values_match(actual: object, expected: object) -> bool:
    """Equality that keeps bools apart from ints and lists equal to tuples."""
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        return len(actual) == len(expected) and all(
            values_match(a, e) for a, e in zip(actual, expected)
        )
    if isinstance(actual, Mapping) and isinstance(expected, Mapping):
        return actual.keys() == expected.keys() and all(
            values_match(actual[key], expected[key]) for key in actual
        )
    try:
        return bool(actual == expected)
    except Exception:  # noqa: BLE001 - exotic __eq__ never passes a lesson
        return False


class SolutionEvaluator:
    """Decide pass/fail for one execution result.

    Decision order, first match wins: execution error, expected output,
    structured test cases, no expectation.
    """

    def __init__(self, feedback: FeedbackTemplates | None = None) -> None:
        self.feedback: FeedbackTemplates = feedback or FeedbackTemplates()

    def evaluate(
        self,
        spec: GradingSpec,
        result: ExecutionResult,
        difficulty: str | None = None,
    ) -> Verdict:
        if result.error is not None:
            return Verdict(
                passed=False,
                actual_output=normalize_text(result.output) or None,
                expected_output=_expected_text(spec),
                error=result.error,
                feedback=self.feedback.error(result.error, difficulty),
            )
        if isinstance(spec, ExpectedOutput):
            return self._compare_output(spec, result, difficulty)
        if isinstance(spec, TestCases):
            return self._run_test_cases(spec, result, difficulty)
        if isinstance(spec, NoExpectation):
            return Verdict(passed=True, feedback=self.feedback.success(difficulty))
        raise TypeError(f"Unsupported grading spec: {type(spec).__name__}")

    def _compare_output(
        self,
        spec: ExpectedOutput,
        result: ExecutionResult,
        difficulty: str | None,
    ) -> Verdict:
        expected = normalize_text(spec.text)
        actual = comparison_text(result)
        return self._verdict(actual == expected, expected, actual, difficulty)

    def _run_test_cases(
        self,
        spec: TestCases,
        result: ExecutionResult,
        difficulty: str | None,
    ) -> Verdict:
        expectations = spec.expectations
        expected_result = expectations.get(EXPECTED_RESULT_KEY)
        expected_output = expectations.get(EXPECTED_OUTPUT_KEY)

        if expected_result is not None:
            actual = repr(result.value) if result.value is not None else None
            passed = values_match(result.value, expected_result)
            return self._verdict(passed, repr(expected_result), actual, difficulty)
        if expected_output is not None:
            expected = normalize_text(str(expected_output))
            actual = normalize_text(result.output)
            return self._verdict(actual == expected, expected, actual, difficulty)
        return Verdict(passed=True, feedback=self.feedback.success(difficulty))

    def _verdict(
        self,
        passed: bool,
        expected: str | None,
        actual: str | None,
        difficulty: str | None,
    ) -> Verdict:
        feedback = (
            self.feedback.success(difficulty)
            if passed
            else self.feedback.mismatch(expected, actual, difficulty)
        )
        return Verdict(
            passed=passed,
            actual_output=actual,
            expected_output=expected,
            feedback=feedback,
        )


def _expected_text(spec: GradingSpec) -> str | None:
    if isinstance(spec, ExpectedOutput):
        return normalize_text(spec.text)
    if isinstance(spec, TestCases):
        if spec.expectations.get(EXPECTED_RESULT_KEY) is not None:
            return repr(spec.expectations[EXPECTED_RESULT_KEY])
        if spec.expectations.get(EXPECTED_OUTPUT_KEY) is not None:
            return normalize_text(str(spec.expectations[EXPECTED_OUTPUT_KEY]))
    return None
