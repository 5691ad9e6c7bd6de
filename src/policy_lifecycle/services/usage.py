"""Append-only usage recording for policies.

Payments and services are appended to their history arrays, and the cached
counters are rewritten in the same update as the array they summarize.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from beartype import beartype

from ..core.clock import Clock, SystemClock
from ..core.config import Settings, get_settings
from ..core.errors import ConflictError, NotFoundError
from ..core.logging_utils import get_logger
from ..models.policy import POLICIES, Payment, Policy, ServiceRecord
from ..storage.base import DocumentStore, StoreSession
from .transaction_helpers import TransactionConfig, run_in_transaction

logger = get_logger(__name__)


class PolicyUsageRecorder:
    """Records payments and services against ACTIVE policies."""

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

    async def _load_active(self, policy_id: str, session: StoreSession) -> Policy:
        document = await self._store.get(POLICIES, policy_id, session=session)
        if document is None:
            raise NotFoundError(POLICIES, policy_id)
        policy = Policy.from_document(document)
        if not policy.is_active:
            raise ConflictError(
                f"Policy {policy.policy_number} is deleted and cannot record usage",
                policy_id=policy_id,
                policy_number=policy.policy_number,
            )
        return policy

    @beartype
    async def record_payment(self, policy_id: UUID | str, payment: Payment) -> Policy:
        """Append a payment to the financial history."""
        policy_id = str(policy_id)

        async def _operation(session: StoreSession) -> Policy:
            policy = await self._load_active(policy_id, session)
            payments = [*policy.payments, payment]
            updated = await self._store.update_one(
                POLICIES,
                policy_id,
                {"payments": [p.model_dump(mode="json") for p in payments]},
                session=session,
            )
            return Policy.from_document(updated)

        policy = await run_in_transaction(
            self._store,
            _operation,
            TransactionConfig.from_settings(self._settings, f"payment for {policy_id}"),
        )
        logger.info(
            "Payment recorded on policy %s (%s)",
            policy.policy_number,
            payment.status.value,
            extra={"policy_id": policy_id},
        )
        return policy

    @beartype
    async def record_service(
        self,
        policy_id: UUID | str,
        *,
        case_number: str,
        service_date: datetime | None = None,
        route: str | None = None,
        cost: Decimal | None = None,
    ) -> ServiceRecord:
        """Append a service and rewrite both counters in the same update."""
        policy_id = str(policy_id)
        when = service_date or self._clock.now()

        async def _operation(session: StoreSession) -> ServiceRecord:
            policy = await self._load_active(policy_id, session)
            sequence = max(policy.service_sequence, len(policy.services)) + 1
            service = ServiceRecord(
                sequence_number=sequence,
                service_date=when,
                case_number=case_number,
                route=route,
                cost=cost,
            )
            services = [*policy.services, service]
            await self._store.update_one(
                POLICIES,
                policy_id,
                {
                    "services": [s.model_dump(mode="json") for s in services],
                    "service_count": len(services),
                    "service_sequence": sequence,
                },
                session=session,
            )
            return service

        service = await run_in_transaction(
            self._store,
            _operation,
            TransactionConfig.from_settings(self._settings, f"service for {policy_id}"),
        )
        logger.info(
            "Service %d recorded on policy %s",
            service.sequence_number,
            policy_id,
            extra={"policy_id": policy_id, "case_number": case_number},
        )
        return service
