"""Templated feedback messages for graded submissions."""

from __future__ import annotations

import random

from sandbox.taxonomy import ClassifiedError

SUCCESS_MESSAGES = [
    "Excellent work! You've mastered this concept.",
    "Perfect! Your solution is correct.",
    "Great job! You're making excellent progress.",
    "Well done! Your understanding is solid.",
    "Fantastic! You've got it right.",
]

ADVANCED_SUFFIX = " This was a challenging lesson!"
FAILURE_PREFIX = "Not quite right. "

DIFFICULTY_HINTS = {
    "beginner": " Remember to follow the examples closely.",
    "intermediate": " Think about the problem step by step.",
    "advanced": " Consider edge cases and alternative approaches.",
}


class FeedbackTemplates:
    """Builds success and failure phrases; never decides pass/fail."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng: random.Random = rng or random.Random()

    def success(self, difficulty: str | None = None) -> str:
        message = self.rng.choice(SUCCESS_MESSAGES)
        if difficulty == "advanced":
            return message + ADVANCED_SUFFIX
        return message

    def error(self, error: ClassifiedError, difficulty: str | None = None) -> str:
        label = error.category.label
        detail = f"Your code failed with {label}. Fix the error in your code and try again."
        if error.category.retryable:
            detail = f"Your code failed with {label}. If the code is correct, submit it again."
        if error.category.hint:
            detail = f"{detail} {error.category.hint}"
        return FAILURE_PREFIX + detail + DIFFICULTY_HINTS.get(difficulty or "", "")

    def mismatch(
        self,
        expected: str | None,
        actual: str | None,
        difficulty: str | None = None,
    ) -> str:
        if actual is not None:
            detail = f"Expected: {expected}\nGot: {actual}"
        else:
            detail = "Review the lesson instructions and try a different approach."
        return FAILURE_PREFIX + detail + DIFFICULTY_HINTS.get(difficulty or "", "")
