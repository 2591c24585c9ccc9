"""
Static safety gate applied to submitted source before any execution.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sandbox.policy import DENY_RULES, SafetyRule
from sandbox.taxonomy import ClassifiedError, ErrorCategory, make_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyVerdict:
    """Outcome of the gate: ``allowed`` or a rejection naming the matched rule."""

    allowed: bool
    rule: SafetyRule | None = None

    @property
    def rejected(self) -> bool:
        return not self.allowed

    @property
    def error(self) -> ClassifiedError | None:
        if self.allowed or self.rule is None:
            return None
        return make_error(
            ErrorCategory.DANGEROUS_CODE,
            f"{self.rule.capability} operations are not allowed ({self.rule.name})",
        )


ALLOWED = SafetyVerdict(allowed=True)


def find_violation(source: str, rules: Sequence[SafetyRule] = DENY_RULES) -> SafetyRule | None:
    """Return the first rule matching anywhere in ``source``."""
    for rule in rules:
        if rule.matches(source):
            return rule
    return None


def check_safety(source: str, rules: Sequence[SafetyRule] = DENY_RULES) -> SafetyVerdict:
    """Scan ``source`` against the deny-list. Never raises."""
    rule = find_violation(source or "", rules)
    if rule is None:
        return ALLOWED
    logger.warning(f"Dangerous code detected (rule={rule.name}, capability={rule.capability}): {source!r}")
    return SafetyVerdict(allowed=False, rule=rule)
