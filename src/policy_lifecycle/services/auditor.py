# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Consistency diagnostics and explicit counter repair.

``scan`` is read-only and reports typed findings:

- COUNT_DRIFT: an ACTIVE policy whose ``service_count`` differs from the
  length of its service history.
- SEQUENCE_BEHIND: an ACTIVE policy whose ``service_sequence`` is lower than
  the length of its service history.
- ONE_SIDED_REFERENCE: a vehicle or policy referencing a record that does
  not reference it back, or a converted vehicle without a usable reference.
- TERMINOLOGY_DRIFT: a record carrying a legacy label, or a linked pair
  whose vehicle status and policy kind belong to different generations.

``repair`` only rewrites cached counters from the authoritative arrays. It
never edits histories and never touches references; those findings are
left for an operator.
"""

from collections import defaultdict
from typing import Any

from beartype import beartype

from ..core.clock import Clock, SystemClock
from ..core.config import Settings, get_settings
from ..core.errors import NotFoundError
from ..core.logging_utils import get_logger
from ..models.policy import POLICIES, Policy, PolicyKind, RecordStatus
from ..models.summaries import (
    AuditFinding,
    AuditReport,
    BatchTally,
    CounterCorrection,
    FindingKind,
    RecordFailure,
    RepairSummary,
)
from ..models.vehicle import VEHICLES, Vehicle, VehicleStatus
from ..storage.base import DocumentStore, StoreSession
from .transaction_helpers import (
    RECORD_ERRORS,
    TransactionConfig,
    capture_errors,
    run_in_transaction,
)

logger = get_logger(__name__)

# Policy kind each converted vehicle label is expected to pair with.
_EXPECTED_KIND = {
    VehicleStatus.CONVERTED: PolicyKind.PROVISIONAL,
    VehicleStatus.LEGACY_CONVERTED: PolicyKind.LEGACY_PROVISIONAL,
}

COUNTER_KINDS = (FindingKind.COUNT_DRIFT, FindingKind.SEQUENCE_BEHIND)


def _finding(
    kind: FindingKind, collection: str, record_id: Any, **details: Any
) -> AuditFinding:
    return AuditFinding(
        kind=kind, collection=collection, record_id=str(record_id), details=details
    )


class ConsistencyAuditor:
    """Scans the store for drift and repairs cached counters on request."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()

    async def _load(self, collection: str, model: Any) -> list[Any]:
        records = []
        async for document in self._store.iter_documents(
            collection, {}, batch_size=self._settings.refresh_batch_size
        ):
            try:
                records.append(model.from_document(document))
            except RECORD_ERRORS as e:
                logger.warning(
                    "Skipping unreadable %s record %s: %s",
                    collection,
                    document.get("id"),
                    e,
                )
        return records

    @beartype
    async def scan(self) -> AuditReport:
        """Produce a read-only consistency report."""
        policies: list[Policy] = await self._load(POLICIES, Policy)
        vehicles: list[Vehicle] = await self._load(VEHICLES, Vehicle)
        policies_by_id = {policy.id: policy for policy in policies}
        vehicles_by_id = {vehicle.id: vehicle for vehicle in vehicles}

        findings: list[AuditFinding] = []
        for policy in policies:
            findings.extend(self._counter_findings(policy))
        for vehicle in vehicles:
            findings.extend(self._vehicle_findings(vehicle, policies_by_id))
        for policy in policies:
            findings.extend(self._policy_reference_findings(policy, vehicles_by_id))

        report = AuditReport(
            generated_at=self._clock.now(),
            policies_scanned=len(policies),
            vehicles_scanned=len(vehicles),
            findings=tuple(findings),
        )
        if report.is_consistent:
            logger.info("Consistency scan clean")
        else:
            counts: dict[str, int] = defaultdict(int)
            for finding in findings:
                counts[finding.kind.value] += 1
            logger.warning("Consistency scan found issues: %s", dict(counts))
        return report

    def _counter_findings(self, policy: Policy) -> list[AuditFinding]:
        if policy.record_status != RecordStatus.ACTIVE:
            return []
        actual = len(policy.services)
        findings = []
        if policy.service_count != actual:
            findings.append(
                _finding(
                    FindingKind.COUNT_DRIFT,
                    POLICIES,
                    policy.id,
                    policy_number=policy.policy_number,
                    cached=policy.service_count,
                    actual=actual,
                )
            )
        if policy.service_sequence < actual:
            findings.append(
                _finding(
                    FindingKind.SEQUENCE_BEHIND,
                    POLICIES,
                    policy.id,
                    policy_number=policy.policy_number,
                    cached=policy.service_sequence,
                    actual=actual,
                )
            )
        if policy.policy_kind == PolicyKind.LEGACY_PROVISIONAL:
            findings.append(
                _finding(
                    FindingKind.TERMINOLOGY_DRIFT,
                    POLICIES,
                    policy.id,
                    problem="LEGACY_LABEL",
                    label=policy.policy_kind.value,
                )
            )
        return findings

    def _vehicle_findings(
        self, vehicle: Vehicle, policies_by_id: dict[Any, Policy]
    ) -> list[AuditFinding]:
        findings = []
        if vehicle.vehicle_status == VehicleStatus.LEGACY_CONVERTED:
            findings.append(
                _finding(
                    FindingKind.TERMINOLOGY_DRIFT,
                    VEHICLES,
                    vehicle.id,
                    problem="LEGACY_LABEL",
                    label=vehicle.vehicle_status.value,
                )
            )

        if vehicle.policy_ref is None:
            if vehicle.vehicle_status.is_converted:
                findings.append(
                    _finding(
                        FindingKind.ONE_SIDED_REFERENCE,
                        VEHICLES,
                        vehicle.id,
                        problem="MISSING_POLICY_REF",
                        serial_number=vehicle.serial_number,
                    )
                )
            return findings

        policy = policies_by_id.get(vehicle.policy_ref)
        if policy is None:
            findings.append(
                _finding(
                    FindingKind.ONE_SIDED_REFERENCE,
                    VEHICLES,
                    vehicle.id,
                    problem="POLICY_NOT_FOUND",
                    serial_number=vehicle.serial_number,
                    policy_ref=str(vehicle.policy_ref),
                )
            )
            return findings

        if policy.vehicle_ref != vehicle.id:
            findings.append(
                _finding(
                    FindingKind.ONE_SIDED_REFERENCE,
                    VEHICLES,
                    vehicle.id,
                    problem="POLICY_NOT_LINKED",
                    serial_number=vehicle.serial_number,
                    policy_ref=str(vehicle.policy_ref),
                    policy_vehicle_ref=str(policy.vehicle_ref),
                )
            )
            return findings

        if not vehicle.vehicle_status.is_converted:
            findings.append(
                _finding(
                    FindingKind.ONE_SIDED_REFERENCE,
                    VEHICLES,
                    vehicle.id,
                    problem="VEHICLE_NOT_CONVERTED",
                    serial_number=vehicle.serial_number,
                    vehicle_status=vehicle.vehicle_status.value,
                )
            )
        elif _EXPECTED_KIND[vehicle.vehicle_status] != policy.policy_kind:
            findings.append(
                _finding(
                    FindingKind.TERMINOLOGY_DRIFT,
                    VEHICLES,
                    vehicle.id,
                    problem="LABEL_MISMATCH",
                    vehicle_status=vehicle.vehicle_status.value,
                    policy_kind=policy.policy_kind.value,
                    policy_id=str(policy.id),
                )
            )
        return findings

    def _policy_reference_findings(
        self, policy: Policy, vehicles_by_id: dict[Any, Vehicle]
    ) -> list[AuditFinding]:
        if policy.vehicle_ref is None:
            return []
        vehicle = vehicles_by_id.get(policy.vehicle_ref)
        if vehicle is None:
            problem = "VEHICLE_NOT_FOUND"
        elif vehicle.policy_ref != policy.id:
            problem = "VEHICLE_NOT_LINKED"
        else:
            return []
        return [
            _finding(
                FindingKind.ONE_SIDED_REFERENCE,
                POLICIES,
                policy.id,
                problem=problem,
                policy_number=policy.policy_number,
                vehicle_ref=str(policy.vehicle_ref),
            )
        ]

    @beartype
    async def repair(self, report: AuditReport | None = None) -> RepairSummary:
        """Reset drifted counters to the true history length.

        Only COUNT_DRIFT and SEQUENCE_BEHIND findings are acted on. Each
        policy is re-read inside its own transaction, so a stale report
        never overwrites fresher data.
        """
        if report is None:
            report = await self.scan()

        tally = BatchTally(operation="repair_counters", started_at=self._clock.now())
        corrections: list[CounterCorrection] = []
        policy_ids = list(
            dict.fromkeys(
                finding.record_id
                for finding in report.findings
                if finding.kind in COUNTER_KINDS
            )
        )

        for policy_id in policy_ids:
            result = await capture_errors(
                lambda policy_id=policy_id: self._repair_policy(policy_id)
            )
            if result.is_err():
                error = result.unwrap_err()
                logger.error("Counter repair failed for policy %s: %s", policy_id, error)
                tally.failure(RecordFailure.from_exception(policy_id, policy_id, error))
                continue
            applied = result.unwrap()
            if applied:
                corrections.extend(applied)
                tally.success()
            else:
                tally.skip()

        summary = RepairSummary(
            **tally.fields(self._clock.now()), corrections=tuple(corrections)
        )
        logger.info(
            "Counter repair: %d corrected, %d skipped, %d failed",
            summary.succeeded,
            summary.skipped,
            summary.failed,
        )
        return summary

    async def _repair_policy(self, policy_id: str) -> list[CounterCorrection]:
        async def _operation(session: StoreSession) -> list[CounterCorrection]:
            document = await self._store.get(POLICIES, policy_id, session=session)
            if document is None:
                raise NotFoundError(POLICIES, policy_id)
            policy = Policy.from_document(document)
            if not policy.is_active:
                return []

            actual = len(policy.services)
            patch: dict[str, int] = {}
            corrections = []
            if policy.service_count != actual:
                patch["service_count"] = actual
                corrections.append(
                    CounterCorrection(
                        policy_id=policy_id,
                        policy_number=policy.policy_number,
                        field_name="service_count",
                        before=policy.service_count,
                        after=actual,
                    )
                )
            if policy.service_sequence < actual:
                patch["service_sequence"] = actual
                corrections.append(
                    CounterCorrection(
                        policy_id=policy_id,
                        policy_number=policy.policy_number,
                        field_name="service_sequence",
                        before=policy.service_sequence,
                        after=actual,
                    )
                )
            if patch:
                await self._store.update_one(POLICIES, policy_id, patch, session=session)
            return corrections

        return await run_in_transaction(
            self._store,
            _operation,
            TransactionConfig.from_settings(self._settings, f"counter repair of {policy_id}"),
        )
