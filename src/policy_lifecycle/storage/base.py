# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Document store contract consumed by every lifecycle component.

All algorithms are written against five operations: ``find_one``,
``find_many``, ``update_one``, ``create_one`` and ``with_transaction``.
Operations accept an optional session; inside a session reads observe the
session's own writes and nothing becomes visible to other callers before
commit.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar
from uuid import UUID

from ..core.errors import ValidationError
from ..models.policy import POLICIES
from ..models.vehicle import VEHICLES

T = TypeVar("T")

Document = dict[str, Any]
Filter = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

COLLECTIONS: tuple[str, ...] = (POLICIES, VEHICLES)

# Fields that must be unique across every record of a collection.
UNIQUE_FIELDS: dict[str, tuple[str, ...]] = {
    POLICIES: ("policy_number",),
    VEHICLES: ("serial_number",),
}


class StoreSession(ABC):
    """Handle for a running transaction."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether the session can still be used."""
        ...


TransactionFn = Callable[[StoreSession], Awaitable[T]]


class DocumentStore(ABC):
    """Abstract document store with multi-document transactions."""

    @abstractmethod
    async def find_one(
        self,
        collection: str,
        filter: Filter,
        *,
        session: StoreSession | None = None,
    ) -> Document | None:
        """Return the first document matching ``filter`` or None."""
        ...

    @abstractmethod
    async def find_many(
        self,
        collection: str,
        filter: Filter,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
        session: StoreSession | None = None,
    ) -> list[Document]:
        """Return documents matching ``filter``."""
        ...

    @abstractmethod
    async def update_one(
        self,
        collection: str,
        record_id: UUID | str,
        patch: Mapping[str, Any],
        *,
        session: StoreSession | None = None,
    ) -> Document:
        """Merge ``patch`` into one document atomically and return the result.

        Raises NotFoundError when the record does not exist.
        """
        ...

    @abstractmethod
    async def create_one(
        self,
        collection: str,
        document: Mapping[str, Any],
        *,
        session: StoreSession | None = None,
    ) -> Document:
        """Insert a document and return it with identity and timestamps.

        Raises ConflictError when a unique field clashes.
        """
        ...

    @abstractmethod
    async def with_transaction(
        self,
        fn: TransactionFn[T],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``fn`` inside one all-or-nothing transaction.

        Raises TransactionTimeoutError when ``timeout`` elapses; the
        transaction is aborted and nothing it wrote becomes visible.
        """
        ...

    async def get(
        self,
        collection: str,
        record_id: UUID | str,
        *,
        session: StoreSession | None = None,
    ) -> Document | None:
        """Fetch a document by id."""
        return await self.find_one(collection, {"id": str(record_id)}, session=session)

    async def iter_documents(
        self,
        collection: str,
        filter: Filter,
        *,
        batch_size: int = 500,
    ) -> AsyncIterator[Document]:
        """Yield matching documents in id order, fetched in independent pages.

        Pages are keyed on the last id seen, so records updated between pages
        are neither skipped nor repeated as long as they keep matching.
        """
        if batch_size < 1:
            raise ValidationError("batch_size must be positive", batch_size=batch_size)
        last_id: str | None = None
        while True:
            page_filter = dict(filter)
            if last_id is not None:
                page_filter["id"] = {"$gt": last_id}
            page = await self.find_many(
                collection, page_filter, sort=[("id", ASCENDING)], limit=batch_size
            )
            for document in page:
                yield document
            if len(page) < batch_size:
                return
            last_id = str(page[-1]["id"])

    async def close(self) -> None:
        """Release resources held by the store."""
        return None
