"""Grading specifications and verdict types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TypeAlias

from sandbox.taxonomy import ClassifiedError

EXPECTED_RESULT_KEY = "expected_result"
EXPECTED_OUTPUT_KEY = "expected_output"


@dataclass(frozen=True)
class ExpectedOutput:
    """Submission passes when its output (or value) matches ``text``."""

    text: str


@dataclass(frozen=True)
class TestCases:
    """Structured expectations, e.g. ``{"expected_result": 42}``."""

    __test__ = False

    expectations: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class NoExpectation:
    """Any run without an error passes."""


GradingSpec: TypeAlias = ExpectedOutput | TestCases | NoExpectation


def grading_spec_from_fields(
    expected_output: str | None,
    test_cases: Mapping[str, object] | None,
) -> GradingSpec:
    """Build the spec from a lesson's authored columns; expected output wins."""
    if expected_output is not None:
        return ExpectedOutput(expected_output)
    if test_cases is not None:
        return TestCases(dict(test_cases))
    return NoExpectation()


@dataclass(frozen=True)
class Verdict:
    passed: bool
    actual_output: str | None = None
    expected_output: str | None = None
    error: ClassifiedError | None = None
    feedback: str = ""
