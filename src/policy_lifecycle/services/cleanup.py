# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Scheduled refresh and retirement of policies.

A cleanup run executes, in order:

1. State refresh: every ACTIVE policy gets its coverage fields, priority
   score and service counter recomputed.
2. Quota retirement: ACTIVE policies whose service quota is exhausted are
   retired.
3. Provisional retirement: ACTIVE provisional policies that have been used
   and whose last service is older than the retention window are retired.
4. Expired review: ACTIVE policies in EXPIRED state are listed, not changed.

Every pass is idempotent. Each policy is processed in its own transaction
and re-read inside it, so a policy that changed since selection is skipped
rather than overwritten. Failures are recorded per policy and the pass goes
on. Runs must not overlap; the hosting scheduler guarantees this.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from beartype import beartype

from ..core.clock import Clock, SystemClock
from ..core.config import Settings, get_settings
from ..core.errors import NotFoundError
from ..core.logging_utils import get_logger
from ..models.policy import (
    POLICIES,
    CoverageState,
    DeletionReason,
    Policy,
    PolicyKind,
    RecordStatus,
)
from ..models.summaries import (
    BatchTally,
    CleanupPreview,
    CleanupReport,
    ExpiredPolicyInfo,
    RecordFailure,
    RefreshSummary,
    RetiredPolicy,
    RetirementSummary,
)
from ..storage.base import ASCENDING, Document, DocumentStore, StoreSession
from .coverage import compute_policy_coverage
from .priority import score_priority
from .transaction_helpers import (
    RECORD_ERRORS,
    TransactionConfig,
    capture_errors,
    run_in_transaction,
)

logger = get_logger(__name__)

DEFAULT_ACTOR = "policy_lifecycle.cleanup"
PROVISIONAL_KINDS = [PolicyKind.PROVISIONAL.value, PolicyKind.LEGACY_PROVISIONAL.value]

Eligibility = Callable[[Policy, datetime], bool]


class CleanupScheduler:
    """Runs the recurring refresh and retirement passes."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
        actor: str = DEFAULT_ACTOR,
    ) -> None:
        """Initialize scheduler.

        Args:
            store: Document store holding the policies.
            clock: Time source; the system clock by default.
            settings: Engine settings; the cached settings by default.
            actor: Recorded as ``deleted_by`` on retired policies.
        """
        self._store = store
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._actor = actor

    # Eligibility rules

    def _has_been_used(self, policy: Policy) -> bool:
        # Policies never used stay available for dispatch, whatever their age.
        return policy.service_count >= 1 and len(policy.services) >= 1

    def is_quota_exhausted(self, policy: Policy, now: datetime) -> bool:
        """Whether the policy has used up its service quota."""
        return (
            policy.is_active
            and self._has_been_used(policy)
            and len(policy.services) >= self._settings.service_quota
        )

    def is_used_provisional(self, policy: Policy, now: datetime) -> bool:
        """Whether a provisional policy was used longer ago than the retention window."""
        last_service = policy.last_service_date
        return (
            policy.is_active
            and policy.policy_kind.is_provisional
            and self._has_been_used(policy)
            and last_service is not None
            and now - last_service > self._settings.retention_window
        )

    # Passes

    @beartype
    async def run(self) -> CleanupReport:
        """Execute every pass in order and return the combined report."""
        logger.info("Cleanup run started")
        refresh = await self.refresh_states()
        quota = await self.retire_exhausted_policies()
        provisional = await self.retire_used_provisional()
        expired = await self.expired_policies_for_review()

        report = CleanupReport(
            refresh=refresh,
            quota_retirement=quota,
            provisional_retirement=provisional,
            expired_for_review=tuple(expired),
        )
        logger.info(
            "Cleanup run finished: %d refreshed, %d retired, %d expired for review",
            refresh.succeeded,
            len(quota.retired) + len(provisional.retired),
            len(expired),
        )
        return report

    @beartype
    async def refresh_states(self) -> RefreshSummary:
        """Recompute derived fields of every ACTIVE policy."""
        now = self._clock.now()
        tally = BatchTally(operation="refresh_states", started_at=now)
        state_counts: dict[str, int] = {state.value: 0 for state in CoverageState}

        async for document in self._store.iter_documents(
            POLICIES,
            {"record_status": RecordStatus.ACTIVE.value},
            batch_size=self._settings.refresh_batch_size,
        ):
            record_id = str(document.get("id"))
            result = await capture_errors(
                lambda record_id=record_id: self._refresh_one(record_id, now)
            )
            if result.is_err():
                error = result.unwrap_err()
                identifier = str(document.get("policy_number", record_id))
                logger.error(
                    "State refresh failed for policy %s: %s",
                    identifier,
                    error,
                    extra={"policy_id": record_id},
                )
                tally.failure(RecordFailure.from_exception(record_id, identifier, error))
                continue

            state = result.unwrap()
            if state is None:
                tally.skip()
            else:
                state_counts[state.value] += 1
                tally.success()

        summary = RefreshSummary(**tally.fields(self._clock.now()), state_counts=state_counts)
        logger.info(
            "State refresh: %d updated, %d skipped, %d failed",
            summary.succeeded,
            summary.skipped,
            summary.failed,
        )
        return summary

    async def _refresh_one(self, record_id: str, now: datetime) -> CoverageState | None:
        async def _operation(session: StoreSession) -> CoverageState | None:
            document = await self._store.get(POLICIES, record_id, session=session)
            if document is None:
                raise NotFoundError(POLICIES, record_id)
            policy = Policy.from_document(document)
            if not policy.is_active:
                return None

            snapshot = compute_policy_coverage(policy, now)
            service_count = len(policy.services)
            patch: dict[str, Any] = {
                **snapshot.as_patch(),
                "priority_score": score_priority(
                    snapshot.coverage_state,
                    snapshot.days_remaining_coverage,
                    snapshot.days_remaining_grace,
                    service_count,
                ),
                "service_count": service_count,
            }
            await self._store.update_one(POLICIES, record_id, patch, session=session)
            return snapshot.coverage_state

        return await run_in_transaction(
            self._store,
            _operation,
            TransactionConfig.from_settings(self._settings, f"refresh of policy {record_id}"),
        )

    @beartype
    async def retire_exhausted_policies(self) -> RetirementSummary:
        """Retire ACTIVE policies of any kind that reached the service quota."""
        return await self._retirement_pass(
            operation="retire_exhausted_policies",
            candidate_filter={
                "record_status": RecordStatus.ACTIVE.value,
                "service_count": {"$gte": self._settings.service_quota},
            },
            eligible=self.is_quota_exhausted,
            reason=DeletionReason.SERVICE_QUOTA_EXHAUSTED,
        )

    @beartype
    async def retire_used_provisional(self) -> RetirementSummary:
        """Retire used provisional policies past the retention window."""
        return await self._retirement_pass(
            operation="retire_used_provisional",
            candidate_filter={
                "record_status": RecordStatus.ACTIVE.value,
                "policy_kind": {"$in": PROVISIONAL_KINDS},
                "service_count": {"$gte": 1},
            },
            eligible=self.is_used_provisional,
            reason=DeletionReason.PROVISIONAL_USED,
        )

    async def _retirement_pass(
        self,
        *,
        operation: str,
        candidate_filter: dict[str, Any],
        eligible: Eligibility,
        reason: DeletionReason,
    ) -> RetirementSummary:
        now = self._clock.now()
        tally = BatchTally(operation=operation, started_at=now)
        retired: list[RetiredPolicy] = []
        verification_failures = 0

        candidates = await self._store.find_many(
            POLICIES, candidate_filter, sort=[("id", ASCENDING)]
        )
        for document in candidates:
            record_id = str(document.get("id"))
            identifier = str(document.get("policy_number", record_id))

            result = await capture_errors(
                lambda record_id=record_id: self._retire_one(record_id, eligible, reason, now)
            )
            if result.is_err():
                error = result.unwrap_err()
                logger.error(
                    "Retirement of policy %s failed: %s",
                    identifier,
                    error,
                    extra={"policy_id": record_id, "reason": reason.value},
                )
                tally.failure(RecordFailure.from_exception(record_id, identifier, error))
                continue

            entry = result.unwrap()
            if entry is None:
                tally.skip()
                continue

            verified = await capture_errors(lambda record_id=record_id: self._is_deleted(record_id))
            if verified.is_err() or not verified.unwrap():
                verification_failures += 1
                logger.error(
                    "Retirement of policy %s not confirmed after commit",
                    identifier,
                    extra={"policy_id": record_id},
                )
                tally.failure(
                    RecordFailure(
                        record_id=record_id,
                        identifier=identifier,
                        error_type="VerificationFailed",
                        message="Policy was not DELETED when re-read after commit",
                    )
                )
                continue

            retired.append(entry)
            tally.success()
            logger.info(
                "Policy %s retired (%s)",
                identifier,
                reason.value,
                extra={"policy_id": record_id, "service_count": entry.service_count},
            )

        return RetirementSummary(
            **tally.fields(self._clock.now()),
            reason=reason.value,
            retired=tuple(retired),
            verification_failures=verification_failures,
        )

    async def _retire_one(
        self,
        record_id: str,
        eligible: Eligibility,
        reason: DeletionReason,
        now: datetime,
    ) -> RetiredPolicy | None:
        async def _operation(session: StoreSession) -> RetiredPolicy | None:
            document = await self._store.get(POLICIES, record_id, session=session)
            if document is None:
                raise NotFoundError(POLICIES, record_id)
            policy = Policy.from_document(document)
            # Re-checked against the transactional snapshot; DELETED policies
            # and policies that stopped qualifying are left untouched.
            if not eligible(policy, now):
                return None

            await self._store.update_one(
                POLICIES,
                record_id,
                {
                    "record_status": RecordStatus.DELETED.value,
                    "deletion_timestamp": now.isoformat(),
                    "deletion_reason": reason.value,
                    "deleted_by": self._actor,
                    "services_at_deletion": len(policy.services),
                },
                session=session,
            )
            return RetiredPolicy(
                policy_id=record_id,
                policy_number=policy.policy_number,
                service_count=len(policy.services),
                last_service_date=policy.last_service_date,
                reason=reason.value,
                deleted_at=now,
            )

        return await run_in_transaction(
            self._store,
            _operation,
            TransactionConfig.from_settings(self._settings, f"retirement of policy {record_id}"),
        )

    async def _is_deleted(self, record_id: str) -> bool:
        document = await self._store.get(POLICIES, record_id)
        return (
            document is not None
            and document.get("record_status") == RecordStatus.DELETED.value
        )

    # Read-only listings

    @beartype
    async def expired_policies_for_review(self) -> list[ExpiredPolicyInfo]:
        """ACTIVE policies in EXPIRED state, oldest emission first."""
        now = self._clock.now()
        documents = await self._store.find_many(
            POLICIES,
            {
                "record_status": RecordStatus.ACTIVE.value,
                "coverage_state": CoverageState.EXPIRED.value,
            },
            sort=[("emission_date", ASCENDING)],
        )

        expired: list[ExpiredPolicyInfo] = []
        for policy in self._parse_all(documents):
            emission = policy.emission_date
            expired.append(
                ExpiredPolicyInfo(
                    policy_id=str(policy.id),
                    policy_number=policy.policy_number,
                    holder_name=policy.holder.full_name if policy.holder else None,
                    insurer=policy.insurer,
                    emission_date=emission,
                    service_count=len(policy.services),
                    days_since_emission=(now - emission).days if emission else None,
                )
            )
        return expired

    @beartype
    async def preview(self) -> CleanupPreview:
        """Report what the retirement passes would do now, without writing."""
        now = self._clock.now()
        documents = await self._store.find_many(
            POLICIES,
            {"record_status": RecordStatus.ACTIVE.value},
            sort=[("id", ASCENDING)],
        )

        quota: list[str] = []
        provisional: list[str] = []
        within_retention: list[str] = []
        expired = 0
        for policy in self._parse_all(documents):
            if policy.coverage_state == CoverageState.EXPIRED:
                expired += 1
            if self.is_quota_exhausted(policy, now):
                quota.append(policy.policy_number)
            elif self.is_used_provisional(policy, now):
                provisional.append(policy.policy_number)
            elif policy.policy_kind.is_provisional and self._has_been_used(policy):
                within_retention.append(policy.policy_number)

        return CleanupPreview(
            quota_exhausted=tuple(quota),
            provisional_used=tuple(provisional),
            provisional_within_retention=tuple(within_retention),
            expired_for_review=expired,
        )

    def _parse_all(self, documents: list[Document]) -> list[Policy]:
        policies: list[Policy] = []
        for document in documents:
            try:
                policies.append(Policy.from_document(document))
            except RECORD_ERRORS as e:
                logger.warning(
                    "Skipping unreadable policy %s: %s",
                    document.get("id"),
                    e,
                    extra={"policy_id": str(document.get("id"))},
                )
        return policies
