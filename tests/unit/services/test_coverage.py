"""Tests for coverage state calculation."""

from datetime import datetime, timezone

import pytest

from policy_lifecycle.core.errors import ValidationError
from policy_lifecycle.models import CoverageState, PaymentStatus, Policy
from policy_lifecycle.services.coverage import (
    compute_coverage,
    compute_policy_coverage,
    coverage_window,
    days_until,
)
from tests.fixtures.factories import make_payment, policy_document


def utc(year: int, month: int, day: int, hour: int = 0) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class TestCoverageWithoutPayments:
    """Policies with no realized payment get one month and no grace window."""

    def test_grace_period_before_first_month_ends(self) -> None:
        """Issued Jan 1st, evaluated Jan 20th."""
        snapshot = compute_coverage(utc(2024, 1, 1), [], utc(2024, 1, 20))

        assert snapshot.coverage_state == CoverageState.GRACE_PERIOD
        assert snapshot.coverage_end_date == utc(2024, 2, 1)
        assert snapshot.grace_end_date == snapshot.coverage_end_date
        assert snapshot.days_remaining_coverage == 12
        assert snapshot.days_remaining_grace == 12

    def test_expired_after_first_month(self) -> None:
        snapshot = compute_coverage(utc(2024, 1, 1), [], utc(2024, 2, 2))

        assert snapshot.coverage_state == CoverageState.EXPIRED
        assert snapshot.days_remaining_coverage == -1
        assert snapshot.days_remaining_grace == -1

    def test_end_instant_is_not_expired(self) -> None:
        snapshot = compute_coverage(utc(2024, 1, 1), [], utc(2024, 2, 1))

        assert snapshot.coverage_state == CoverageState.GRACE_PERIOD
        assert snapshot.days_remaining_coverage == 0


class TestCoverageWithPayments:
    """Each realized payment buys one month counted from emission."""

    def test_grace_period_after_paid_months(self) -> None:
        """Three payments from Jan 1st, evaluated Apr 15th."""
        payments = [utc(2024, 1, 1), utc(2024, 2, 1), utc(2024, 3, 1)]
        snapshot = compute_coverage(utc(2024, 1, 1), payments, utc(2024, 4, 15))

        assert snapshot.coverage_end_date == utc(2024, 4, 1)
        assert snapshot.grace_end_date == utc(2024, 5, 1)
        assert snapshot.coverage_state == CoverageState.GRACE_PERIOD
        assert snapshot.days_remaining_coverage == -14
        assert snapshot.days_remaining_grace == 16

    def test_current_while_paid_up(self) -> None:
        payments = [utc(2024, 1, 1), utc(2024, 2, 1)]
        snapshot = compute_coverage(utc(2024, 1, 1), payments, utc(2024, 2, 15))

        assert snapshot.coverage_state == CoverageState.CURRENT
        assert snapshot.coverage_end_date == utc(2024, 3, 1)
        assert snapshot.days_remaining_coverage == 15
        assert snapshot.days_remaining_grace == 46

    def test_expired_after_grace_window(self) -> None:
        snapshot = compute_coverage(utc(2024, 1, 1), [utc(2024, 1, 1)], utc(2024, 3, 2))

        assert snapshot.coverage_state == CoverageState.EXPIRED

    def test_month_end_clamps(self) -> None:
        coverage_end, grace_end = coverage_window(utc(2024, 1, 31), 1)

        assert coverage_end == utc(2024, 2, 29)
        assert grace_end == utc(2024, 3, 31)

    def test_partial_days_round_up(self) -> None:
        assert days_until(utc(2024, 2, 1), utc(2024, 1, 20, 12)) == 12


class TestCoverageProperties:
    """Determinism and input validation."""

    def test_same_inputs_give_same_snapshot(self) -> None:
        payments = [utc(2024, 1, 1)]
        first = compute_coverage(utc(2024, 1, 1), payments, utc(2024, 1, 20))
        second = compute_coverage(utc(2024, 1, 1), payments, utc(2024, 1, 20))

        assert first == second
        assert first.as_patch() == second.as_patch()

    def test_patch_carries_every_derived_field(self) -> None:
        patch = compute_coverage(utc(2024, 1, 1), [], utc(2024, 1, 20)).as_patch()

        assert patch == {
            "coverage_state": "GRACE_PERIOD",
            "coverage_end_date": "2024-02-01T00:00:00+00:00",
            "grace_end_date": "2024-02-01T00:00:00+00:00",
            "days_remaining_coverage": 12,
            "days_remaining_grace": 12,
        }

    def test_missing_emission_date_raises(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compute_coverage(None, [], utc(2024, 1, 20))
        assert exc_info.value.details["field"] == "emission_date"

    def test_naive_datetimes_raise(self) -> None:
        with pytest.raises(ValidationError):
            compute_coverage(datetime(2024, 1, 1), [], utc(2024, 1, 20))
        with pytest.raises(ValidationError):
            compute_coverage(utc(2024, 1, 1), [], datetime(2024, 1, 20))

    def test_negative_count_raises(self) -> None:
        with pytest.raises(ValidationError):
            coverage_window(utc(2024, 1, 1), -1)

    def test_policy_coverage_counts_realized_payments_only(self) -> None:
        policy = Policy.from_document(
            policy_document(
                payments=(
                    make_payment(utc(2024, 1, 1)),
                    make_payment(utc(2024, 2, 1)),
                    make_payment(utc(2024, 3, 1), status=PaymentStatus.PLANNED),
                    make_payment(utc(2024, 3, 1), status=PaymentStatus.PENDING),
                )
            )
        )

        snapshot = compute_policy_coverage(policy, utc(2024, 2, 15))

        assert snapshot == compute_coverage(
            utc(2024, 1, 1), [utc(2024, 1, 1), utc(2024, 2, 1)], utc(2024, 2, 15)
        )
