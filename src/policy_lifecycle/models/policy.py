# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Policy domain models.

The payment and service arrays are the source of truth for usage. The
``service_count`` and ``service_sequence`` fields are caches that are only
ever written together with the array they summarize. Every stored date is
timezone-aware; naive dates are rejected on validation.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from beartype import beartype
from pydantic import AwareDatetime, Field, model_validator

from .base import BaseModelConfig, DocumentModel

POLICIES = "policies"


class PolicyKind(str, Enum):
    """Classification of how a policy was issued."""

    REGULAR = "REGULAR"
    PROVISIONAL = "PROVISIONAL"
    # Older label for PROVISIONAL; readable, never written.
    LEGACY_PROVISIONAL = "LEGACY_PROVISIONAL"

    @property
    def is_provisional(self) -> bool:
        """Whether the policy belongs to the provisional class under any label."""
        return self in (PolicyKind.PROVISIONAL, PolicyKind.LEGACY_PROVISIONAL)


class RecordStatus(str, Enum):
    """Lifecycle status of a policy record."""

    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class CoverageState(str, Enum):
    """Derived status of the paid-up protection window."""

    CURRENT = "CURRENT"
    GRACE_PERIOD = "GRACE_PERIOD"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, Enum):
    """Settlement status of a payment."""

    REALIZED = "REALIZED"
    PLANNED = "PLANNED"
    PENDING = "PENDING"


class DeletionReason(str, Enum):
    """Machine-readable reasons for retiring a policy."""

    PROVISIONAL_USED = "PROVISIONAL_USED"
    SERVICE_QUOTA_EXHAUSTED = "SERVICE_QUOTA_EXHAUSTED"
    OPERATOR_REQUEST = "OPERATOR_REQUEST"


class OwnerProfile(BaseModelConfig):
    """Holder and contact data attached to a policy or vehicle."""

    full_name: str = Field(..., min_length=1, max_length=200)
    tax_id: str = Field(..., min_length=1, max_length=20)
    phone: str = Field(..., min_length=1, max_length=20)
    email: str = Field(..., min_length=3, max_length=200)
    street: str | None = Field(None, max_length=200)
    neighborhood: str | None = Field(None, max_length=100)
    municipality: str | None = Field(None, max_length=100)
    region: str | None = Field(None, max_length=100)
    postal_code: str | None = Field(None, max_length=10)


class VehicleDetails(BaseModelConfig):
    """Descriptive vehicle data copied onto a policy."""

    make: str | None = None
    model: str | None = None
    year: int | None = Field(None, ge=1900, le=2100)
    color: str | None = None
    plates: str | None = None


class Payment(BaseModelConfig):
    """A single entry of the financial history."""

    amount: Decimal = Field(..., ge=Decimal("0"), decimal_places=2, max_digits=12)
    paid_date: AwareDatetime = Field(..., description="When the payment was made or is due")
    status: PaymentStatus = Field(default=PaymentStatus.PLANNED)
    reference: str | None = Field(None, max_length=100)


class ServiceRecord(BaseModelConfig):
    """A single dispatch recorded against a policy."""

    sequence_number: int = Field(..., ge=1)
    service_date: AwareDatetime
    case_number: str = Field(..., min_length=1, max_length=100)
    route: str | None = Field(None, max_length=500)
    cost: Decimal | None = Field(None, ge=Decimal("0"), decimal_places=2, max_digits=12)


@beartype
class Policy(DocumentModel):
    """Complete policy record as stored in the ``policies`` collection."""

    policy_number: str = Field(..., min_length=1, max_length=50)
    policy_kind: PolicyKind = Field(default=PolicyKind.REGULAR)
    record_status: RecordStatus = Field(default=RecordStatus.ACTIVE)
    deletion_timestamp: AwareDatetime | None = None
    deletion_reason: str | None = None
    deleted_by: str | None = None
    services_at_deletion: int | None = None

    emission_date: AwareDatetime | None = Field(
        None, description="Issue date; anchors every coverage computation"
    )
    insurer: str | None = None
    holder: OwnerProfile | None = None
    vehicle_details: VehicleDetails | None = None

    coverage_state: CoverageState | None = None
    coverage_end_date: AwareDatetime | None = None
    grace_end_date: AwareDatetime | None = None
    days_remaining_coverage: int = 0
    days_remaining_grace: int = 0
    priority_score: int = Field(default=0, ge=0, le=100)

    payments: tuple[Payment, ...] = ()
    services: tuple[ServiceRecord, ...] = ()
    service_count: int = Field(default=0, ge=0)
    service_sequence: int = Field(default=0, ge=0)

    vehicle_ref: UUID | None = None
    converted_at: AwareDatetime | None = None

    @model_validator(mode="after")
    def validate_deletion_fields(self) -> "Policy":
        """Deletion metadata is present exactly when the record is DELETED."""
        deleted = self.record_status == RecordStatus.DELETED
        if deleted and (self.deletion_timestamp is None or not self.deletion_reason):
            raise ValueError("Deleted policies must carry a timestamp and reason")
        if not deleted and (self.deletion_timestamp is not None or self.deletion_reason):
            raise ValueError("Only deleted policies can carry deletion metadata")
        return self

    @property
    def is_active(self) -> bool:
        """Whether the record is still ACTIVE."""
        return self.record_status == RecordStatus.ACTIVE

    @property
    def realized_payment_dates(self) -> list[datetime]:
        """Dates of payments whose funds were actually received."""
        return [p.paid_date for p in self.payments if p.status == PaymentStatus.REALIZED]

    @property
    def last_service_date(self) -> datetime | None:
        """Date of the most recent service, by service date."""
        if not self.services:
            return None
        return max(service.service_date for service in self.services)
