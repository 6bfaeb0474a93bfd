"""Pure-function rule results.

Rules are stateless functions: (entity, context) -> RuleResult.
No database, no side effects, no clock reads. A failed result carries the
``ErrorCode`` a caller needs to pick a user-facing message, so rule
violations never travel as exceptions.
"""

from dataclasses import dataclass, field
from typing import Any

from core.errors import ErrorCode


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    error_code: ErrorCode | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, rule_name: str, message: str = "ok", **details: Any) -> "RuleResult":
        return cls(passed=True, rule_name=rule_name, message=message, details=details)

    @classmethod
    def fail(
        cls,
        rule_name: str,
        error_code: ErrorCode,
        message: str,
        **details: Any,
    ) -> "RuleResult":
        return cls(
            passed=False,
            rule_name=rule_name,
            message=message,
            error_code=error_code,
            details=details,
        )

    def __bool__(self) -> bool:
        return self.passed


@dataclass
class RuleSetResult:
    """Aggregate outcome of multiple rules."""

    all_passed: bool
    results: list[RuleResult]
    failed: list[RuleResult] = field(default_factory=list)

    def __post_init__(self):
        self.failed = [r for r in self.results if not r.passed]
        self.all_passed = len(self.failed) == 0

    @property
    def first_failure(self) -> RuleResult | None:
        return self.failed[0] if self.failed else None


# ---------------------------------------------------------------------------
# Rule composition
# ---------------------------------------------------------------------------

def evaluate_rules(*rules: RuleResult) -> RuleSetResult:
    """Compose multiple rule results into a single aggregate.

    Example::

        outcome = evaluate_rules(
            can_create(starts_at, rules, now),
            check_slot_free(starts_at, duration, existing, rules),
        )
        if not outcome.all_passed:
            return outcome.first_failure
    """
    return RuleSetResult(
        all_passed=all(r.passed for r in rules),
        results=list(rules),
    )
