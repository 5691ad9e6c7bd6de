"""Test configuration and shared fixtures.

Every test runs against a fresh in-process document store and a clock frozen
at a known instant, so passes are reproducible.
"""

from collections.abc import Generator
from datetime import datetime, timezone

import pytest

from policy_lifecycle.core import FixedClock, Settings, clear_settings_cache
from policy_lifecycle.storage import InMemoryDocumentStore

FROZEN_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    """Settings for the in-process store with a generous transaction budget."""
    return Settings(
        database_url="memory://",
        transaction_timeout_seconds=5.0,
        retention_window_minutes=60,
        service_quota=2,
        refresh_batch_size=3,
    )


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at FROZEN_NOW."""
    return FixedClock(FROZEN_NOW)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Empty in-process document store."""
    return InMemoryDocumentStore()


@pytest.fixture(autouse=True)
def reset_settings() -> Generator[None, None, None]:
    """Reset the settings cache around each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
