# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Coverage state calculation.

Coverage is a pure function of the emission date, the number of REALIZED
payments and the evaluation instant. Each realized payment buys one month
of coverage counted from the emission date; once paid-up coverage ends the
policy enters a one-month grace window. A policy without realized payments
has a single month with no separate grace window.

Month arithmetic clamps to the last day of the target month, so a policy
issued on January 31st is covered until February 28th (or 29th).
"""

import math
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from attrs import frozen
from beartype import beartype
from dateutil.relativedelta import relativedelta

from ..core.errors import ValidationError
from ..models.policy import CoverageState, Policy

_ONE_DAY = timedelta(days=1)


@frozen
class CoverageSnapshot:
    """Derived coverage fields for one policy at one instant."""

    coverage_state: CoverageState
    coverage_end_date: datetime
    grace_end_date: datetime
    days_remaining_coverage: int
    days_remaining_grace: int

    @beartype
    def as_patch(self) -> dict[str, Any]:
        """Store patch carrying every derived field, for one atomic update."""
        return {
            "coverage_state": self.coverage_state.value,
            "coverage_end_date": self.coverage_end_date.isoformat(),
            "grace_end_date": self.grace_end_date.isoformat(),
            "days_remaining_coverage": self.days_remaining_coverage,
            "days_remaining_grace": self.days_remaining_grace,
        }


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{name} must be timezone-aware", field=name)


@beartype
def days_until(target: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``target``, rounded up. Negative when past."""
    return math.ceil((target - now) / _ONE_DAY)


@beartype
def coverage_window(emission_date: datetime, realized_count: int) -> tuple[datetime, datetime]:
    """Return (coverage_end_date, grace_end_date) for a realized payment count."""
    if realized_count < 0:
        raise ValidationError(
            "Realized payment count cannot be negative", realized_count=realized_count
        )
    if realized_count == 0:
        end = emission_date + relativedelta(months=1)
        return end, end
    return (
        emission_date + relativedelta(months=realized_count),
        emission_date + relativedelta(months=realized_count + 1),
    )


@beartype
def compute_coverage(
    emission_date: datetime | None,
    realized_payment_dates: Sequence[datetime],
    now: datetime,
) -> CoverageSnapshot:
    """Derive the coverage state of a policy.

    Args:
        emission_date: Policy issue date; required.
        realized_payment_dates: Dates of REALIZED payments only.
        now: Evaluation instant.

    Returns:
        CoverageSnapshot with state, boundary dates and days remaining.

    Raises:
        ValidationError: If the emission date is missing or a datetime is naive.
    """
    if emission_date is None:
        raise ValidationError("Policy has no emission date", field="emission_date")
    _require_aware(emission_date, "emission_date")
    _require_aware(now, "now")

    realized_count = len(realized_payment_dates)
    coverage_end, grace_end = coverage_window(emission_date, realized_count)
    days_coverage = days_until(coverage_end, now)

    if realized_count == 0:
        state = (
            CoverageState.EXPIRED if coverage_end < now else CoverageState.GRACE_PERIOD
        )
        return CoverageSnapshot(
            coverage_state=state,
            coverage_end_date=coverage_end,
            grace_end_date=grace_end,
            days_remaining_coverage=days_coverage,
            days_remaining_grace=days_coverage,
        )

    if coverage_end >= now:
        state = CoverageState.CURRENT
    elif grace_end >= now:
        state = CoverageState.GRACE_PERIOD
    else:
        state = CoverageState.EXPIRED

    return CoverageSnapshot(
        coverage_state=state,
        coverage_end_date=coverage_end,
        grace_end_date=grace_end,
        days_remaining_coverage=days_coverage,
        days_remaining_grace=days_until(grace_end, now),
    )


@beartype
def compute_policy_coverage(policy: Policy, now: datetime) -> CoverageSnapshot:
    """Derive coverage for a stored policy, counting REALIZED payments only."""
    return compute_coverage(policy.emission_date, policy.realized_payment_dates, now)
