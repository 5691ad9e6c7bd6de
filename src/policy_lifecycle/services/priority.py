"""Dispatch priority scoring.

The score ranks ACTIVE policies for dispatch. It never drives a state
transition.
"""

from typing import Final

from beartype import beartype

from ..core.errors import ValidationError
from ..models.policy import CoverageState

CONSUMED_SCORE: Final = 10
EXPIRED_SCORE: Final = 0
CURRENT_PENALTY: Final = 10

# (max days, score without services, score with one service)
_STEPS: Final = (
    (1, 100, 90),
    (3, 80, 70),
    (7, 60, 50),
)
_BEYOND_STEPS: Final = (40, 30)


@beartype
def score_priority(
    coverage_state: CoverageState,
    days_remaining_coverage: int,
    days_remaining_grace: int,
    service_count: int,
) -> int:
    """Compute a 0-100 dispatch priority. First matching rule wins."""
    if service_count < 0:
        raise ValidationError(
            "Service count cannot be negative", service_count=service_count
        )

    if service_count >= 2:
        return CONSUMED_SCORE
    if coverage_state == CoverageState.EXPIRED:
        return EXPIRED_SCORE

    days = (
        days_remaining_grace
        if coverage_state == CoverageState.GRACE_PERIOD
        else days_remaining_coverage
    )

    column = 1 if service_count == 0 else 2
    base = _BEYOND_STEPS[column - 1]
    for step in _STEPS:
        if days <= step[0]:
            base = step[column]
            break

    if coverage_state == CoverageState.CURRENT:
        return max(0, base - CURRENT_PENALTY)
    return base
