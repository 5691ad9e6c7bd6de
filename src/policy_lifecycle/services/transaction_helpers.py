# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Transaction helper patterns for safe store operations.

This module provides the reusable patterns every lifecycle service uses:
bounded-time transactions with consistent logging, and error capture that
turns a per-record failure into an ``Err`` so batch loops keep going.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from attrs import field, frozen
from beartype import beartype
from pydantic import ValidationError as PydanticValidationError

from ..core.config import Settings
from ..core.errors import PolicyLifecycleError
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok, Result
from ..storage.base import DocumentStore, StoreSession

T = TypeVar("T")

logger = get_logger(__name__)

# Failures a batch pass records per item instead of propagating.
RECORD_ERRORS: tuple[type[Exception], ...] = (
    PolicyLifecycleError,
    PydanticValidationError,
)


@frozen
class TransactionConfig:
    """Configuration for transaction behavior."""

    timeout: float | None = field(default=10.0)
    label: str = field(default="transaction")

    @classmethod
    @beartype
    def from_settings(cls, settings: Settings, label: str) -> "TransactionConfig":
        """Build a config using the configured time budget."""
        return cls(timeout=settings.transaction_timeout_seconds, label=label)


async def run_in_transaction(
    store: DocumentStore,
    operation: Callable[[StoreSession], Awaitable[T]],
    config: TransactionConfig | None = None,
) -> T:
    """Execute ``operation`` within one bounded transaction.

    Any exception aborts the transaction and propagates unchanged; nothing
    the operation wrote is visible afterwards.

    Example:
        ```python
        async def _operation(session):
            vehicle = await store.find_one(VEHICLES, {"id": vid}, session=session)
            return await store.create_one(POLICIES, doc, session=session)

        policy = await run_in_transaction(store, _operation, config)
        ```
    """
    if config is None:
        config = TransactionConfig()

    try:
        result = await store.with_transaction(operation, timeout=config.timeout)
    except PolicyLifecycleError as e:
        logger.warning(
            "%s aborted: %s",
            config.label,
            e.message,
            extra={"error_code": e.code, "transaction": config.label},
        )
        raise
    logger.debug("%s committed", config.label)
    return result


async def capture_errors(operation: Callable[[], Awaitable[T]]) -> Result[T, Exception]:
    """Run ``operation`` and wrap its outcome in ``Ok`` or ``Err``.

    Only record-level failures are captured; anything else is a programming
    error and propagates.
    """
    try:
        return Ok(await operation())
    except RECORD_ERRORS as e:
        return Err(e)
