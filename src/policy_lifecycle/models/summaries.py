# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Structured result summaries produced by batch operations.

Summaries are frozen models so a notification collaborator can consume
``model_dump(mode="json")`` directly. Counts are accumulated in a mutable
``BatchTally`` while a pass runs and frozen once it finishes.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from attrs import define, field
from beartype import beartype
from pydantic import Field

from ..core.errors import PolicyLifecycleError
from .base import BaseModelConfig


class RecordFailure(BaseModelConfig):
    """One failed record, with enough detail to retry it individually."""

    record_id: str
    identifier: str = Field(..., description="Policy number or vehicle serial")
    error_type: str
    message: str
    error_code: str | None = None
    details: dict[str, str] = Field(default_factory=dict)

    @classmethod
    @beartype
    def from_exception(
        cls, record_id: str, identifier: str, exc: BaseException
    ) -> "RecordFailure":
        """Build a failure entry from a caught exception."""
        payload: dict[str, Any] = {}
        if isinstance(exc, PolicyLifecycleError):
            payload = exc.to_dict()
        return cls(
            record_id=record_id,
            identifier=identifier,
            error_type=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
            error_code=payload.get("code"),
            details=payload.get("details", {}),
        )


class BatchSummary(BaseModelConfig):
    """Counts shared by every batch pass."""

    operation: str
    started_at: datetime
    finished_at: datetime
    processed: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    failures: tuple[RecordFailure, ...] = ()

    @property
    def ok(self) -> bool:
        """Whether the pass finished without failed records."""
        return self.failed == 0


class RefreshSummary(BatchSummary):
    """Outcome of the coverage state refresh pass."""

    state_counts: dict[str, int] = Field(default_factory=dict)


class RetiredPolicy(BaseModelConfig):
    """A policy confirmed DELETED after commit."""

    policy_id: str
    policy_number: str
    service_count: int
    last_service_date: datetime | None
    reason: str
    deleted_at: datetime


class RetirementSummary(BatchSummary):
    """Outcome of a retirement pass."""

    reason: str
    retired: tuple[RetiredPolicy, ...] = ()
    verification_failures: int = Field(default=0, ge=0)


class ConversionAction(str, Enum):
    """What a conversion transaction did."""

    POLICY_CREATED = "POLICY_CREATED"
    TERMINOLOGY_UPDATED = "TERMINOLOGY_UPDATED"


class ConversionOutcome(BaseModelConfig):
    """Result of converting one vehicle."""

    vehicle_id: str
    serial_number: str
    action: ConversionAction
    policy_id: str
    steps: tuple[str, ...] = ()


class ConversionBatchSummary(BatchSummary):
    """Outcome of a sequential batch of conversions."""

    outcomes: tuple[ConversionOutcome, ...] = ()


class ConversionPreview(BaseModelConfig):
    """Read-only simulation of a conversion batch."""

    to_convert: tuple[str, ...] = ()
    terminology_updates: tuple[str, ...] = ()
    not_eligible: tuple[str, ...] = ()
    conflicts: tuple[RecordFailure, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        """Whether a real run would hit known conflicts."""
        return bool(self.conflicts)


class ExpiredPolicyInfo(BaseModelConfig):
    """An ACTIVE but EXPIRED policy listed for manual review."""

    policy_id: str
    policy_number: str
    holder_name: str | None
    insurer: str | None
    emission_date: datetime | None
    service_count: int
    days_since_emission: int | None


class CleanupPreview(BaseModelConfig):
    """What the retirement passes would do, without doing it."""

    quota_exhausted: tuple[str, ...] = ()
    provisional_used: tuple[str, ...] = ()
    provisional_within_retention: tuple[str, ...] = ()
    expired_for_review: int = 0


class CleanupReport(BaseModelConfig):
    """Combined result of one scheduled cleanup run."""

    refresh: RefreshSummary
    quota_retirement: RetirementSummary
    provisional_retirement: RetirementSummary
    expired_for_review: tuple[ExpiredPolicyInfo, ...] = ()


class FindingKind(str, Enum):
    """Categories of consistency findings."""

    COUNT_DRIFT = "COUNT_DRIFT"
    SEQUENCE_BEHIND = "SEQUENCE_BEHIND"
    ONE_SIDED_REFERENCE = "ONE_SIDED_REFERENCE"
    TERMINOLOGY_DRIFT = "TERMINOLOGY_DRIFT"


class AuditFinding(BaseModelConfig):
    """A single typed finding of the consistency scan."""

    kind: FindingKind
    collection: str
    record_id: str
    details: dict[str, Any] = Field(default_factory=dict)


class AuditReport(BaseModelConfig):
    """Result of a read-only consistency scan."""

    generated_at: datetime
    policies_scanned: int = 0
    vehicles_scanned: int = 0
    findings: tuple[AuditFinding, ...] = ()

    @property
    def is_consistent(self) -> bool:
        """Whether the scan found nothing."""
        return not self.findings

    def of_kind(self, kind: FindingKind) -> list[AuditFinding]:
        """Findings of one kind, in scan order."""
        return [finding for finding in self.findings if finding.kind == kind]


class CounterCorrection(BaseModelConfig):
    """A cached counter reset to match its history array."""

    policy_id: str
    policy_number: str
    field_name: str
    before: int
    after: int


class RepairSummary(BatchSummary):
    """Outcome of an explicit repair invocation."""

    corrections: tuple[CounterCorrection, ...] = ()


@define
class BatchTally:
    """Mutable accumulator used while a pass is running."""

    operation: str
    started_at: datetime
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    failures: list[RecordFailure] = field(factory=list)

    def success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def skip(self) -> None:
        self.processed += 1
        self.skipped += 1

    def failure(self, failure: RecordFailure) -> None:
        self.processed += 1
        self.failed += 1
        self.failures.append(failure)

    @beartype
    def fields(self, finished_at: datetime) -> dict[str, Any]:
        """Keyword arguments shared by every BatchSummary subclass."""
        return {
            "operation": self.operation,
            "started_at": self.started_at,
            "finished_at": finished_at,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "failures": tuple(self.failures),
        }
