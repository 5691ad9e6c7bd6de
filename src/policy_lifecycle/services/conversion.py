# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Vehicle to provisional policy conversion.

A conversion touches two collections and must never be observable half
done. Each vehicle is converted in its own transaction: the vehicle is
re-read, its preconditions re-checked against the transactional snapshot,
and both sides of the link written before commit. Batches iterate vehicles
sequentially so one failure never rolls back vehicles already committed.

Two cases are handled:

- UNASSIGNED vehicles get a new PROVISIONAL policy numbered after the
  vehicle serial, with empty histories and initial coverage.
- LEGACY_CONVERTED vehicles already own a policy; only the status and kind
  labels are rewritten to the current terminology.
"""

from collections.abc import Sequence
from typing import Any
from uuid import UUID, uuid4

from beartype import beartype

from ..core.clock import Clock, SystemClock
from ..core.config import Settings, get_settings
from ..core.errors import ConflictError, NotFoundError, PolicyLifecycleError
from ..core.logging_utils import get_logger
from ..models.links import VehicleLink
from ..models.policy import POLICIES, Policy, PolicyKind
from ..models.summaries import (
    BatchTally,
    ConversionAction,
    ConversionBatchSummary,
    ConversionOutcome,
    ConversionPreview,
    RecordFailure,
)
from ..models.vehicle import VEHICLES, Vehicle, VehicleStatus
from ..storage.base import ASCENDING, DocumentStore, StoreSession
from .coverage import compute_coverage
from .owner_data import generate_owner_profile
from .priority import score_priority
from .transaction_helpers import TransactionConfig, capture_errors, run_in_transaction

logger = get_logger(__name__)

PROVISIONAL_INSURER = "PROVISIONAL_AUTOMATIC"
CONVERTIBLE_STATUSES = (VehicleStatus.UNASSIGNED, VehicleStatus.LEGACY_CONVERTED)


class ConversionCoordinator:
    """Promotes vehicles into provisional policies."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize coordinator with its store and time source."""
        self._store = store
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()

    def _config(self, vehicle_id: str) -> TransactionConfig:
        return TransactionConfig.from_settings(
            self._settings, label=f"conversion of vehicle {vehicle_id}"
        )

    @beartype
    async def convert_vehicle(self, vehicle_id: UUID | str) -> ConversionOutcome:
        """Convert one vehicle in a single all-or-nothing transaction.

        Raises:
            NotFoundError: The vehicle does not exist.
            ConflictError: The vehicle is not convertible, its policy number
                is taken, or a concurrent transaction won the race.
            TransactionTimeoutError: The time budget was exceeded.
        """
        vehicle_id = str(vehicle_id)

        async def _operation(session: StoreSession) -> ConversionOutcome:
            document = await self._store.find_one(
                VEHICLES, {"id": vehicle_id}, session=session
            )
            if document is None:
                raise NotFoundError(VEHICLES, vehicle_id)
            vehicle = Vehicle.from_document(document)

            if vehicle.vehicle_status == VehicleStatus.UNASSIGNED:
                return await self._create_provisional_policy(vehicle, session)
            if vehicle.vehicle_status == VehicleStatus.LEGACY_CONVERTED:
                return await self._update_terminology(vehicle, session)
            raise ConflictError(
                f"Vehicle {vehicle.serial_number} is {vehicle.vehicle_status.value}; "
                "only UNASSIGNED or LEGACY_CONVERTED vehicles can be converted",
                vehicle_id=vehicle_id,
                serial_number=vehicle.serial_number,
                vehicle_status=vehicle.vehicle_status.value,
            )

        outcome = await run_in_transaction(
            self._store, _operation, self._config(vehicle_id)
        )
        logger.info(
            "Vehicle %s converted: %s",
            outcome.serial_number,
            outcome.action.value,
            extra={"vehicle_id": outcome.vehicle_id, "policy_id": outcome.policy_id},
        )
        return outcome

    async def _create_provisional_policy(
        self, vehicle: Vehicle, session: StoreSession
    ) -> ConversionOutcome:
        steps = ["vehicle_checked"]
        existing = await self._store.find_one(
            POLICIES, {"policy_number": vehicle.serial_number}, session=session
        )
        if existing is not None:
            raise ConflictError(
                f"Policy number {vehicle.serial_number} already exists",
                vehicle_id=str(vehicle.id),
                serial_number=vehicle.serial_number,
                policy_id=str(existing["id"]),
            )
        steps.append("policy_number_available")

        now = self._clock.now()
        link = VehicleLink.for_pair(vehicle, uuid4())
        owner = vehicle.owner or generate_owner_profile(vehicle.serial_number)

        vehicle_patch = link.vehicle_patch()
        if vehicle.owner is None:
            vehicle_patch["owner"] = owner.model_dump(mode="json")
            steps.append("owner_generated")
        # The vehicle side is written first; a failure before the policy
        # insert must leave neither side visible.
        await self._store.update_one(VEHICLES, vehicle.id, vehicle_patch, session=session)
        steps.append("vehicle_marked_converted")

        coverage = compute_coverage(now, [], now)
        policy = Policy.model_validate(
            {
                "id": link.policy_id,
                "policy_kind": PolicyKind.PROVISIONAL,
                "emission_date": now,
                "insurer": PROVISIONAL_INSURER,
                "holder": owner,
                "vehicle_details": vehicle.details(),
                "priority_score": score_priority(
                    coverage.coverage_state,
                    coverage.days_remaining_coverage,
                    coverage.days_remaining_grace,
                    0,
                ),
                "converted_at": now,
                **link.policy_fields(),
                **coverage.as_patch(),
            }
        )
        await self._store.create_one(POLICIES, policy.to_document(), session=session)
        steps.append("policy_created")

        await self._verify_link(link, session)
        steps.append("link_verified")

        return ConversionOutcome(
            vehicle_id=str(vehicle.id),
            serial_number=vehicle.serial_number,
            action=ConversionAction.POLICY_CREATED,
            policy_id=str(link.policy_id),
            steps=tuple(steps),
        )

    async def _update_terminology(
        self, vehicle: Vehicle, session: StoreSession
    ) -> ConversionOutcome:
        policy = await self._linked_policy(vehicle, session)
        problems = VehicleLink.check(vehicle, policy)
        if problems:
            raise ConflictError(
                f"Vehicle {vehicle.serial_number} and its policy are not linked "
                "on both sides",
                vehicle_id=str(vehicle.id),
                serial_number=vehicle.serial_number,
                problems=",".join(problems),
            )

        steps = ["vehicle_checked", "link_checked"]
        await self._store.update_one(
            VEHICLES,
            vehicle.id,
            {
                "vehicle_status": VehicleStatus.CONVERTED.value,
                "serial_number": vehicle.serial_number,
            },
            session=session,
        )
        steps.append("vehicle_label_updated")
        if policy.policy_kind == PolicyKind.LEGACY_PROVISIONAL:
            await self._store.update_one(
                POLICIES,
                policy.id,
                {"policy_kind": PolicyKind.PROVISIONAL.value},
                session=session,
            )
            steps.append("policy_label_updated")

        return ConversionOutcome(
            vehicle_id=str(vehicle.id),
            serial_number=vehicle.serial_number,
            action=ConversionAction.TERMINOLOGY_UPDATED,
            policy_id=str(policy.id),
            steps=tuple(steps),
        )

    async def _linked_policy(
        self, vehicle: Vehicle, session: StoreSession | None = None
    ) -> Policy:
        if vehicle.policy_ref is None:
            raise ConflictError(
                f"Vehicle {vehicle.serial_number} is marked converted but has no "
                "policy reference",
                vehicle_id=str(vehicle.id),
                serial_number=vehicle.serial_number,
            )
        document = await self._store.get(POLICIES, vehicle.policy_ref, session=session)
        if document is None:
            raise ConflictError(
                f"Policy {vehicle.policy_ref} referenced by vehicle "
                f"{vehicle.serial_number} does not exist",
                vehicle_id=str(vehicle.id),
                serial_number=vehicle.serial_number,
                policy_id=str(vehicle.policy_ref),
            )
        return Policy.from_document(document)

    async def _verify_link(self, link: VehicleLink, session: StoreSession) -> None:
        """Re-read both sides inside the transaction and check they agree."""
        vehicle_doc = await self._store.get(VEHICLES, link.vehicle_id, session=session)
        policy_doc = await self._store.get(POLICIES, link.policy_id, session=session)
        if vehicle_doc is None or policy_doc is None:
            raise ConflictError(
                "Conversion wrote an incomplete link",
                vehicle_id=str(link.vehicle_id),
                serial_number=link.serial_number,
            )
        problems = VehicleLink.check(
            Vehicle.from_document(vehicle_doc), Policy.from_document(policy_doc)
        )
        if problems:
            raise ConflictError(
                "Conversion wrote an inconsistent link",
                vehicle_id=str(link.vehicle_id),
                serial_number=link.serial_number,
                problems=",".join(problems),
            )

    @beartype
    async def convert_batch(
        self, vehicle_ids: Sequence[UUID | str]
    ) -> ConversionBatchSummary:
        """Convert vehicles one transaction at a time, isolating failures."""
        tally = BatchTally(operation="convert_batch", started_at=self._clock.now())
        outcomes: list[ConversionOutcome] = []

        for vehicle_id in vehicle_ids:
            result = await capture_errors(
                lambda vehicle_id=vehicle_id: self.convert_vehicle(vehicle_id)
            )
            if result.is_ok():
                outcomes.append(result.unwrap())
                tally.success()
                continue

            error = result.unwrap_err()
            identifier = str(vehicle_id)
            if isinstance(error, PolicyLifecycleError):
                identifier = str(error.details.get("serial_number", identifier))
            logger.error(
                "Conversion of vehicle %s failed: %s",
                identifier,
                error,
                extra={"vehicle_id": str(vehicle_id)},
            )
            tally.failure(RecordFailure.from_exception(str(vehicle_id), identifier, error))

        summary = ConversionBatchSummary(
            **tally.fields(self._clock.now()), outcomes=tuple(outcomes)
        )
        logger.info(
            "Conversion batch finished: %d succeeded, %d failed",
            summary.succeeded,
            summary.failed,
        )
        return summary

    @beartype
    async def find_candidates(
        self,
        model_years: Sequence[int] | None = None,
        limit: int | None = None,
    ) -> list[Vehicle]:
        """Vehicles eligible for conversion, oldest first."""
        filter: dict[str, Any] = {
            "vehicle_status": {"$in": [status.value for status in CONVERTIBLE_STATUSES]}
        }
        if model_years:
            filter["year"] = {"$in": list(model_years)}
        documents = await self._store.find_many(
            VEHICLES,
            filter,
            sort=[("created_at", ASCENDING), ("serial_number", ASCENDING)],
            limit=limit,
        )
        return [Vehicle.from_document(document) for document in documents]

    @beartype
    async def preview(
        self, vehicle_ids: Sequence[UUID | str] | None = None
    ) -> ConversionPreview:
        """Simulate a batch without writing anything.

        Without ``vehicle_ids`` every current candidate is examined.
        """
        if vehicle_ids is None:
            vehicles = await self.find_candidates()
            missing: list[str] = []
        else:
            vehicles = []
            missing = []
            for vehicle_id in vehicle_ids:
                document = await self._store.get(VEHICLES, vehicle_id)
                if document is None:
                    missing.append(str(vehicle_id))
                else:
                    vehicles.append(Vehicle.from_document(document))

        to_convert: list[str] = []
        terminology: list[str] = []
        not_eligible: list[str] = []
        conflicts = [
            RecordFailure.from_exception(
                vehicle_id, vehicle_id, NotFoundError(VEHICLES, vehicle_id)
            )
            for vehicle_id in missing
        ]

        for vehicle in vehicles:
            try:
                if vehicle.vehicle_status == VehicleStatus.UNASSIGNED:
                    existing = await self._store.find_one(
                        POLICIES, {"policy_number": vehicle.serial_number}
                    )
                    if existing is not None:
                        raise ConflictError(
                            f"Policy number {vehicle.serial_number} already exists"
                        )
                    to_convert.append(vehicle.serial_number)
                elif vehicle.vehicle_status == VehicleStatus.LEGACY_CONVERTED:
                    policy = await self._linked_policy(vehicle)
                    problems = VehicleLink.check(vehicle, policy)
                    if problems:
                        raise ConflictError(
                            f"Link problems: {', '.join(problems)}"
                        )
                    terminology.append(vehicle.serial_number)
                else:
                    not_eligible.append(vehicle.serial_number)
            except ConflictError as e:
                conflicts.append(
                    RecordFailure.from_exception(str(vehicle.id), vehicle.serial_number, e)
                )

        return ConversionPreview(
            to_convert=tuple(to_convert),
            terminology_updates=tuple(terminology),
            not_eligible=tuple(not_eligible),
            conflicts=tuple(conflicts),
        )
