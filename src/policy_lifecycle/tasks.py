# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Celery app triggering the lifecycle passes.

The daily cleanup runs from the beat schedule; conversions are queued on
demand by operator tooling. A single worker process with concurrency 1
keeps cleanup runs from overlapping.

Run with:
    celery -A policy_lifecycle.tasks worker --beat --concurrency=1
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from celery import Celery
from celery.schedules import crontab

from .core.config import Settings, get_settings
from .core.errors import ValidationError
from .core.logging_utils import get_logger
from .services.cleanup import CleanupScheduler
from .services.conversion import ConversionCoordinator
from .storage import DocumentStore, create_store

CLEANUP_TASK = "policy_lifecycle.run_daily_cleanup"
CONVERT_TASK = "policy_lifecycle.convert_vehicles"

logger = get_logger(__name__)

_settings = get_settings()
get_logger("policy_lifecycle", level=logging.getLevelName(_settings.log_level))

app = Celery(
    "policy_lifecycle",
    broker=_settings.celery_broker_url,
    backend=_settings.celery_result_backend or _settings.celery_broker_url,
)

app.conf.update(
    # Task routing
    task_routes={
        CLEANUP_TASK: {"queue": "lifecycle"},
        CONVERT_TASK: {"queue": "lifecycle"},
    },
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Ensure passes don't run concurrently
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    # Task timeout
    task_time_limit=3600,
    task_soft_time_limit=3300,
    beat_schedule={
        "daily-policy-cleanup": {
            "task": CLEANUP_TASK,
            "schedule": crontab(hour=_settings.cleanup_hour_utc, minute=0),
        },
    },
)


async def _open_store(settings: Settings) -> DocumentStore:
    # An in-process store would start empty in every task.
    if settings.uses_memory_store:
        logger.error("Refusing to run a task against the in-memory store")
        raise ValidationError(
            "Tasks need a persistent store; set POLICY_LIFECYCLE_DATABASE_URL",
            database_url=settings.database_url,
        )
    return await create_store(settings)


async def run_cleanup(
    *, settings: Settings | None = None, store: DocumentStore | None = None
) -> dict[str, Any]:
    """Execute one cleanup run and return its JSON report."""
    settings = settings or get_settings()
    owned = store is None
    active_store = store or await _open_store(settings)
    try:
        report = await CleanupScheduler(active_store, settings=settings).run()
    finally:
        if owned:
            await active_store.close()
    return report.model_dump(mode="json")


async def run_conversions(
    vehicle_ids: Sequence[str] | None = None,
    model_years: Sequence[int] | None = None,
    *,
    settings: Settings | None = None,
    store: DocumentStore | None = None,
) -> dict[str, Any]:
    """Convert the given vehicles, or every current candidate."""
    settings = settings or get_settings()
    owned = store is None
    active_store = store or await _open_store(settings)
    try:
        coordinator = ConversionCoordinator(active_store, settings=settings)
        if vehicle_ids is None:
            candidates = await coordinator.find_candidates(model_years=model_years)
            vehicle_ids = [str(vehicle.id) for vehicle in candidates]
        summary = await coordinator.convert_batch(list(vehicle_ids))
    finally:
        if owned:
            await active_store.close()
    return summary.model_dump(mode="json")


@app.task(bind=True, name=CLEANUP_TASK)
def run_daily_cleanup(self: Any) -> dict[str, Any]:
    """Run the scheduled cleanup passes."""
    logger.info("Cleanup task %s started", self.request.id)
    report = asyncio.run(run_cleanup())
    logger.info("Cleanup task %s finished", self.request.id)
    return report


@app.task(bind=True, name=CONVERT_TASK)
def convert_vehicles(
    self: Any,
    vehicle_ids: list[str] | None = None,
    model_years: list[int] | None = None,
) -> dict[str, Any]:
    """Convert vehicles on demand."""
    logger.info("Conversion task %s started", self.request.id)
    return asyncio.run(run_conversions(vehicle_ids, model_years))
