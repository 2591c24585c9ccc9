"""
Evaluator Module

Grading of sandbox results against a lesson's expectations.

This module provides:
- Grading specs derived from authored lesson fields
- Pass/fail decisions over execution results (SolutionEvaluator)
- Output normalization and value comparison
- Templated learner feedback, difficulty-aware
"""

__version__ = "0.1.0"

from .base import (
    ExpectedOutput,
    GradingSpec,
    NoExpectation,
    TestCases,
    Verdict,
    grading_spec_from_fields,
)
from .feedback import FeedbackTemplates
from .solution import SolutionEvaluator, normalize_text

__all__ = [
    "ExpectedOutput",
    "FeedbackTemplates",
    "GradingSpec",
    "NoExpectation",
    "SolutionEvaluator",
    "TestCases",
    "Verdict",
    "grading_spec_from_fields",
    "normalize_text",
]
