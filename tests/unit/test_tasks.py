"""Tests for the Celery wiring of the lifecycle passes."""

from datetime import datetime, timedelta, timezone

import pytest

from policy_lifecycle.core import Settings
from policy_lifecycle.core.errors import ValidationError
from policy_lifecycle.models import POLICIES, VEHICLES, PolicyKind, VehicleStatus
from policy_lifecycle.storage import InMemoryDocumentStore
from policy_lifecycle.tasks import (
    CLEANUP_TASK,
    CONVERT_TASK,
    app,
    convert_vehicles,
    run_cleanup,
    run_conversions,
    run_daily_cleanup,
)
from tests.fixtures.factories import make_services, seed_policy, seed_vehicle


class TestCeleryConfiguration:
    """Scheduling and worker settings."""

    def test_daily_cleanup_scheduled(self) -> None:
        entry = app.conf.beat_schedule["daily-policy-cleanup"]

        assert entry["task"] == CLEANUP_TASK
        assert entry["schedule"].minute == {0}

    def test_single_worker_settings(self) -> None:
        assert app.conf.worker_concurrency == 1
        assert app.conf.worker_prefetch_multiplier == 1
        assert app.conf.task_serializer == "json"
        assert app.conf.task_routes[CONVERT_TASK] == {"queue": "lifecycle"}

    def test_tasks_registered(self) -> None:
        assert run_daily_cleanup.name == CLEANUP_TASK
        assert convert_vehicles.name == CONVERT_TASK
        assert CLEANUP_TASK in app.tasks
        assert CONVERT_TASK in app.tasks


class TestTaskEntryPoints:
    """Async entry points run against an injected store."""

    @pytest.mark.asyncio
    async def test_run_cleanup_returns_json_report(
        self, store: InMemoryDocumentStore, settings: Settings
    ) -> None:
        # The task runs on the system clock.
        a_year_ago = datetime.now(timezone.utc) - timedelta(days=365)
        await seed_policy(
            store,
            "PROV-1",
            policy_kind=PolicyKind.PROVISIONAL,
            services=make_services(a_year_ago),
        )

        report = await run_cleanup(settings=settings, store=store)

        assert report["refresh"]["processed"] == 1
        assert report["provisional_retirement"]["retired"][0]["policy_number"] == "PROV-1"
        assert report["provisional_retirement"]["reason"] == "PROVISIONAL_USED"

    @pytest.mark.asyncio
    async def test_run_conversions_defaults_to_candidates(
        self, store: InMemoryDocumentStore, settings: Settings
    ) -> None:
        await seed_vehicle(store, "ABC123", year=2023)
        await seed_vehicle(store, "OLD001", year=2015)

        summary = await run_conversions(model_years=[2023], settings=settings, store=store)

        assert summary["succeeded"] == 1
        assert summary["outcomes"][0]["serial_number"] == "ABC123"
        assert store.count(POLICIES) == 1

    @pytest.mark.asyncio
    async def test_run_conversions_with_explicit_ids(
        self, store: InMemoryDocumentStore, settings: Settings
    ) -> None:
        vehicle = await seed_vehicle(store, "ABC123")

        summary = await run_conversions([vehicle["id"]], settings=settings, store=store)

        assert summary["processed"] == 1
        stored = await store.get(VEHICLES, vehicle["id"])
        assert stored is not None
        assert stored["vehicle_status"] == VehicleStatus.CONVERTED.value

    @pytest.mark.asyncio
    async def test_injected_store_left_open(
        self, store: InMemoryDocumentStore, settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        closed: list[bool] = []

        async def _close() -> None:
            closed.append(True)

        monkeypatch.setattr(store, "close", _close)

        await run_cleanup(settings=settings, store=store)

        assert closed == []

    @pytest.mark.asyncio
    async def test_memory_store_refused_without_injection(self, settings: Settings) -> None:
        assert settings.uses_memory_store

        with pytest.raises(ValidationError):
            await run_cleanup(settings=settings)
        with pytest.raises(ValidationError):
            await run_conversions(settings=settings)
