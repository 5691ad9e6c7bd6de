"""Tests for vehicle to provisional policy conversion."""

import asyncio
from typing import Any
from uuid import uuid4

import pytest

from policy_lifecycle.core import FixedClock, Settings
from policy_lifecycle.core.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    TransactionTimeoutError,
)
from policy_lifecycle.models import (
    POLICIES,
    VEHICLES,
    ConversionAction,
    CoverageState,
    PolicyKind,
    VehicleStatus,
)
from policy_lifecycle.services.conversion import PROVISIONAL_INSURER, ConversionCoordinator
from policy_lifecycle.storage import InMemoryDocumentStore
from tests.fixtures.factories import (
    make_owner,
    seed_linked_pair,
    seed_policy,
    seed_vehicle,
    vehicle_document,
)


@pytest.fixture
def coordinator(
    store: InMemoryDocumentStore, clock: FixedClock, settings: Settings
) -> ConversionCoordinator:
    return ConversionCoordinator(store, clock=clock, settings=settings)


class TestConvertUnassignedVehicle:
    """An UNASSIGNED vehicle gets a brand new provisional policy."""

    @pytest.mark.asyncio
    async def test_creates_linked_provisional_policy(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        assert outcome.action == ConversionAction.POLICY_CREATED
        policy = await store.get(POLICIES, outcome.policy_id)
        assert policy is not None
        assert policy["policy_number"] == "ABC123"
        assert policy["policy_kind"] == PolicyKind.PROVISIONAL.value
        assert policy["service_count"] == 0
        assert policy["service_sequence"] == 0
        assert policy["payments"] == []
        assert policy["services"] == []
        assert policy["vehicle_ref"] == vehicle["id"]
        assert policy["insurer"] == PROVISIONAL_INSURER

        updated = await store.get(VEHICLES, vehicle["id"])
        assert updated is not None
        assert updated["vehicle_status"] == VehicleStatus.CONVERTED.value
        assert updated["policy_ref"] == policy["id"]

    @pytest.mark.asyncio
    async def test_stored_serial_is_normalized_with_the_policy_number(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        raw = {**vehicle_document("ABC123"), "serial_number": "abc123"}
        vehicle = await store.create_one(VEHICLES, raw)

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        policy = await store.get(POLICIES, outcome.policy_id)
        updated = await store.get(VEHICLES, vehicle["id"])
        assert policy is not None and updated is not None
        assert updated["serial_number"] == "ABC123"
        assert policy["policy_number"] == updated["serial_number"]

    @pytest.mark.asyncio
    async def test_new_policy_starts_with_computed_coverage(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        policy = await store.get(POLICIES, outcome.policy_id)
        assert policy is not None
        assert policy["emission_date"].startswith("2024-06-01T12:00:00")
        assert policy["coverage_state"] == CoverageState.GRACE_PERIOD.value
        assert policy["days_remaining_coverage"] == 30
        assert policy["priority_score"] == 40

    @pytest.mark.asyncio
    async def test_generated_owner_is_copied_to_both_sides(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        assert "owner_generated" in outcome.steps
        policy = await store.get(POLICIES, outcome.policy_id)
        updated = await store.get(VEHICLES, vehicle["id"])
        assert policy is not None and updated is not None
        assert updated["owner"] is not None
        assert policy["holder"] == updated["owner"]

    @pytest.mark.asyncio
    async def test_existing_owner_is_kept(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123", owner=make_owner())

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        assert "owner_generated" not in outcome.steps
        policy = await store.get(POLICIES, outcome.policy_id)
        assert policy is not None
        assert policy["holder"]["full_name"] == "Ana García López"

    @pytest.mark.asyncio
    async def test_vehicle_details_copied(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123", make="Toyota", model="Hilux", year=2022)

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        policy = await store.get(POLICIES, outcome.policy_id)
        assert policy is not None
        assert policy["vehicle_details"]["make"] == "Toyota"
        assert policy["vehicle_details"]["year"] == 2022


class TestConvertLegacyVehicle:
    """LEGACY_CONVERTED vehicles only have their labels migrated."""

    @pytest.mark.asyncio
    async def test_updates_both_labels(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle, policy = await seed_linked_pair(store, "LEG123")

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        assert outcome.action == ConversionAction.TERMINOLOGY_UPDATED
        assert outcome.policy_id == policy["id"]
        assert "policy_label_updated" in outcome.steps
        stored_vehicle = await store.get(VEHICLES, vehicle["id"])
        stored_policy = await store.get(POLICIES, policy["id"])
        assert stored_vehicle is not None and stored_policy is not None
        assert stored_vehicle["vehicle_status"] == VehicleStatus.CONVERTED.value
        assert stored_policy["policy_kind"] == PolicyKind.PROVISIONAL.value
        assert store.count(POLICIES) == 1

    @pytest.mark.asyncio
    async def test_current_policy_label_left_alone(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle, _ = await seed_linked_pair(store, "LEG123", policy_kind=PolicyKind.PROVISIONAL)

        outcome = await coordinator.convert_vehicle(vehicle["id"])

        assert "policy_label_updated" not in outcome.steps
        assert "vehicle_label_updated" in outcome.steps

    @pytest.mark.asyncio
    async def test_missing_reference_is_a_conflict(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(
            store, "LEG123", vehicle_status=VehicleStatus.LEGACY_CONVERTED
        )

        with pytest.raises(ConflictError):
            await coordinator.convert_vehicle(vehicle["id"])

        stored = await store.get(VEHICLES, vehicle["id"])
        assert stored is not None
        assert stored["vehicle_status"] == VehicleStatus.LEGACY_CONVERTED.value

    @pytest.mark.asyncio
    async def test_one_sided_link_is_a_conflict(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        policy = await seed_policy(store, "LEG123", policy_kind=PolicyKind.LEGACY_PROVISIONAL)
        vehicle = await seed_vehicle(
            store,
            "LEG123",
            vehicle_status=VehicleStatus.LEGACY_CONVERTED,
            policy_ref=policy["id"],
        )

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.convert_vehicle(vehicle["id"])

        assert "POLICY_NOT_LINKED" in exc_info.value.details["problems"]


class TestConversionPreconditions:
    """Rejected conversions leave the store untouched."""

    @pytest.mark.asyncio
    async def test_missing_vehicle(self, coordinator: ConversionCoordinator) -> None:
        with pytest.raises(NotFoundError):
            await coordinator.convert_vehicle(uuid4())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [VehicleStatus.ASSIGNED, VehicleStatus.CONVERTED, VehicleStatus.REMOVED]
    )
    async def test_status_not_convertible(
        self,
        store: InMemoryDocumentStore,
        coordinator: ConversionCoordinator,
        status: VehicleStatus,
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123", vehicle_status=status)

        with pytest.raises(ConflictError):
            await coordinator.convert_vehicle(vehicle["id"])

        assert store.count(POLICIES) == 0

    @pytest.mark.asyncio
    async def test_policy_number_taken(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        await seed_policy(store, "ABC123")
        vehicle = await seed_vehicle(store, "ABC123")

        with pytest.raises(ConflictError):
            await coordinator.convert_vehicle(vehicle["id"])

        stored = await store.get(VEHICLES, vehicle["id"])
        assert stored is not None
        assert stored["vehicle_status"] == VehicleStatus.UNASSIGNED.value
        assert store.count(POLICIES) == 1


class TestConversionAtomicity:
    """A conversion is visible completely or not at all."""

    @pytest.mark.asyncio
    async def test_failure_after_vehicle_update_rolls_back(
        self,
        store: InMemoryDocumentStore,
        coordinator: ConversionCoordinator,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")

        async def _failing_create(*args: Any, **kwargs: Any) -> dict[str, Any]:
            raise PersistenceError("insert failed")

        monkeypatch.setattr(store, "create_one", _failing_create)

        with pytest.raises(PersistenceError):
            await coordinator.convert_vehicle(vehicle["id"])

        stored = await store.get(VEHICLES, vehicle["id"])
        assert stored is not None
        assert stored["vehicle_status"] == VehicleStatus.UNASSIGNED.value
        assert stored.get("policy_ref") is None
        assert stored.get("owner") is None
        assert store.count(POLICIES) == 0

    @pytest.mark.asyncio
    async def test_timeout_aborts_conversion(
        self,
        store: InMemoryDocumentStore,
        clock: FixedClock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")
        original_create = store.create_one

        async def _slow_create(*args: Any, **kwargs: Any) -> dict[str, Any]:
            await asyncio.sleep(1)
            return await original_create(*args, **kwargs)

        monkeypatch.setattr(store, "create_one", _slow_create)
        coordinator = ConversionCoordinator(
            store,
            clock=clock,
            settings=Settings(database_url="memory://", transaction_timeout_seconds=0.05),
        )

        with pytest.raises(TransactionTimeoutError):
            await coordinator.convert_vehicle(vehicle["id"])

        stored = await store.get(VEHICLES, vehicle["id"])
        assert stored is not None
        assert stored["vehicle_status"] == VehicleStatus.UNASSIGNED.value
        assert store.count(POLICIES) == 0

    @pytest.mark.asyncio
    async def test_concurrent_conversions_create_one_policy(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")

        results = await asyncio.gather(
            coordinator.convert_vehicle(vehicle["id"]),
            coordinator.convert_vehicle(vehicle["id"]),
            return_exceptions=True,
        )

        assert sum(isinstance(result, ConflictError) for result in results) == 1
        assert store.count(POLICIES) == 1
        policy = store.snapshot(POLICIES)[0]
        stored = await store.get(VEHICLES, vehicle["id"])
        assert stored is not None
        assert stored["policy_ref"] == policy["id"]


class TestConversionBatch:
    """Batches run one transaction per vehicle."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        first = await seed_vehicle(store, "ABC123")
        await seed_policy(store, "DUP001")
        duplicate = await seed_vehicle(store, "DUP001")
        last = await seed_vehicle(store, "XYZ789")
        missing = str(uuid4())

        summary = await coordinator.convert_batch(
            [first["id"], missing, duplicate["id"], last["id"]]
        )

        assert summary.processed == 4
        assert summary.succeeded == 2
        assert summary.failed == 2
        assert not summary.ok
        assert [outcome.serial_number for outcome in summary.outcomes] == ["ABC123", "XYZ789"]
        failures = {failure.identifier: failure.error_type for failure in summary.failures}
        assert failures == {missing: "NotFoundError", "DUP001": "ConflictError"}
        codes = {failure.identifier: failure.error_code for failure in summary.failures}
        assert codes == {missing: "NOT_FOUND", "DUP001": "CONFLICT"}
        conflict = next(f for f in summary.failures if f.identifier == "DUP001")
        assert conflict.details["serial_number"] == "DUP001"
        assert store.count(POLICIES) == 3

    @pytest.mark.asyncio
    async def test_find_candidates_filters_by_year(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        await seed_vehicle(store, "AAA001", year=2023)
        await seed_vehicle(store, "BBB002", year=2022)
        await seed_vehicle(store, "CCC003", year=2023, vehicle_status=VehicleStatus.ASSIGNED)
        await seed_vehicle(
            store, "DDD004", year=2023, vehicle_status=VehicleStatus.LEGACY_CONVERTED
        )

        candidates = await coordinator.find_candidates(model_years=[2023])

        assert [vehicle.serial_number for vehicle in candidates] == ["AAA001", "DDD004"]
        assert len(await coordinator.find_candidates()) == 3
        assert len(await coordinator.find_candidates(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_preview_writes_nothing(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        ready = await seed_vehicle(store, "ABC123")
        await seed_policy(store, "DUP001")
        duplicate = await seed_vehicle(store, "DUP001")
        assigned = await seed_vehicle(store, "ASG001", vehicle_status=VehicleStatus.ASSIGNED)
        legacy, _ = await seed_linked_pair(store, "LEG123")
        missing = str(uuid4())
        before = (store.snapshot(VEHICLES), store.snapshot(POLICIES))

        preview = await coordinator.preview(
            [ready["id"], duplicate["id"], assigned["id"], legacy["id"], missing]
        )

        assert preview.to_convert == ("ABC123",)
        assert preview.terminology_updates == ("LEG123",)
        assert preview.not_eligible == ("ASG001",)
        assert preview.has_conflicts
        assert {failure.identifier for failure in preview.conflicts} == {missing, "DUP001"}
        assert (store.snapshot(VEHICLES), store.snapshot(POLICIES)) == before

    @pytest.mark.asyncio
    async def test_preview_defaults_to_candidates(
        self, store: InMemoryDocumentStore, coordinator: ConversionCoordinator
    ) -> None:
        await seed_vehicle(store, "ABC123")
        await seed_vehicle(store, "ASG001", vehicle_status=VehicleStatus.ASSIGNED)

        preview = await coordinator.preview()

        assert preview.to_convert == ("ABC123",)
        assert preview.not_eligible == ()
        assert not preview.has_conflicts
