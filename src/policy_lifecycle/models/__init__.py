"""Domain models package for the policy lifecycle engine.

Stored records (Policy, Vehicle) are frozen Pydantic documents; result
summaries are frozen value models consumed by notification collaborators.
"""

from .base import BaseModelConfig, DocumentModel
from .links import VehicleLink
from .policy import (
    POLICIES,
    CoverageState,
    DeletionReason,
    OwnerProfile,
    Payment,
    PaymentStatus,
    Policy,
    PolicyKind,
    RecordStatus,
    ServiceRecord,
    VehicleDetails,
)
from .summaries import (
    AuditFinding,
    AuditReport,
    BatchSummary,
    CleanupPreview,
    CleanupReport,
    ConversionAction,
    ConversionBatchSummary,
    ConversionOutcome,
    ConversionPreview,
    CounterCorrection,
    ExpiredPolicyInfo,
    FindingKind,
    RecordFailure,
    RefreshSummary,
    RepairSummary,
    RetiredPolicy,
    RetirementSummary,
)
from .vehicle import VEHICLES, Vehicle, VehicleStatus

__all__ = [
    # Base models
    "BaseModelConfig",
    "DocumentModel",
    # Records
    "POLICIES",
    "VEHICLES",
    "Policy",
    "PolicyKind",
    "RecordStatus",
    "CoverageState",
    "DeletionReason",
    "Payment",
    "PaymentStatus",
    "ServiceRecord",
    "OwnerProfile",
    "VehicleDetails",
    "Vehicle",
    "VehicleStatus",
    "VehicleLink",
    # Summaries
    "RecordFailure",
    "BatchSummary",
    "RefreshSummary",
    "RetiredPolicy",
    "RetirementSummary",
    "ConversionAction",
    "ConversionOutcome",
    "ConversionBatchSummary",
    "ConversionPreview",
    "ExpiredPolicyInfo",
    "CleanupPreview",
    "CleanupReport",
    "FindingKind",
    "AuditFinding",
    "AuditReport",
    "CounterCorrection",
    "RepairSummary",
]
