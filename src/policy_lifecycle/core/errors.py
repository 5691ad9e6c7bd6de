# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Typed error hierarchy for the policy lifecycle engine.

Every error carries a machine-readable ``code`` and structured ``details`` so
batch summaries and notification collaborators never have to parse messages.

    PolicyLifecycleError
    +-- ValidationError          malformed input to a pure function
    +-- ConflictError            precondition violated at commit time
    +-- NotFoundError            referenced record missing
    +-- TransactionTimeoutError  bounded time budget exceeded
    +-- PersistenceError         underlying store unavailable
"""

from typing import Any

from beartype import beartype


class PolicyLifecycleError(Exception):
    """Base error for the lifecycle engine."""

    code: str = "LIFECYCLE_ERROR"

    def __init__(self, message: str, **details: Any) -> None:
        """Initialize error with a message and structured details."""
        self.message = message
        self.details = details
        super().__init__(message)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to a serializable error payload."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = {k: str(v) for k, v in self.details.items()}
        return payload


class ValidationError(PolicyLifecycleError):
    """Invalid input handed to a computation."""

    code = "VALIDATION_ERROR"


class ConflictError(PolicyLifecycleError):
    """A precondition no longer holds against the committed state."""

    code = "CONFLICT"


class NotFoundError(PolicyLifecycleError):
    """A referenced record does not exist."""

    code = "NOT_FOUND"

    def __init__(self, collection: str, record_id: str, **details: Any) -> None:
        """Initialize with the collection and id that failed to resolve."""
        self.collection = collection
        self.record_id = record_id
        super().__init__(
            f"{collection} record {record_id} not found",
            collection=collection,
            record_id=record_id,
            **details,
        )


class TransactionTimeoutError(PolicyLifecycleError):
    """The transaction exceeded its time budget and was aborted."""

    code = "TRANSACTION_TIMEOUT"

    def __init__(self, timeout_seconds: float, **details: Any) -> None:
        """Initialize with the budget that was exceeded."""
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transaction exceeded {timeout_seconds:g}s budget and was aborted",
            timeout_seconds=timeout_seconds,
            **details,
        )


class PersistenceError(PolicyLifecycleError):
    """The document store could not serve the request."""

    code = "PERSISTENCE_ERROR"
