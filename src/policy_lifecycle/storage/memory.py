# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""In-process document store with optimistic multi-document transactions.

Writes made inside a session are buffered in an overlay that the session's
own reads observe. At commit the store checks that no record the session
wrote was changed by someone else since the session first touched it, and
that unique fields stay unique, then applies every buffered write at once.
Each operation yields to the event loop so concurrent transactions
interleave the way they would against a real database.
"""

import asyncio
import copy
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from beartype import beartype

from ..core.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    TransactionTimeoutError,
    ValidationError,
)
from ..core.logging_utils import get_logger
from .base import (
    UNIQUE_FIELDS,
    Document,
    DocumentStore,
    Filter,
    SortSpec,
    StoreSession,
    T,
    TransactionFn,
)
from .filters import matches, sort_documents, validate_filter

logger = get_logger(__name__)

_Key = tuple[str, str]


class InMemorySession(StoreSession):
    """Write overlay and read set of one in-process transaction."""

    def __init__(self, store: "InMemoryDocumentStore") -> None:
        self.store = store
        self.session_id = uuid4().hex
        self.observed: dict[_Key, int] = {}
        self.writes: dict[_Key, Document] = {}
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        self._active = False
        self.writes.clear()


class InMemoryDocumentStore(DocumentStore):
    """Document store held in process memory."""

    def __init__(
        self, unique_fields: Mapping[str, tuple[str, ...]] | None = None
    ) -> None:
        """Initialize an empty store."""
        self._collections: dict[str, dict[str, Document]] = {}
        self._versions: dict[_Key, int] = {}
        self._unique_fields = dict(UNIQUE_FIELDS if unique_fields is None else unique_fields)
        self._commit_lock = asyncio.Lock()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _session(self, session: StoreSession | None) -> InMemorySession | None:
        if session is None:
            return None
        if not isinstance(session, InMemorySession) or session.store is not self:
            raise PersistenceError("Session does not belong to this store")
        if not session.active:
            raise PersistenceError("Session is no longer active")
        return session

    def _visible(self, collection: str, session: InMemorySession | None) -> dict[str, Document]:
        """Committed documents with the session's overlay applied."""
        documents = dict(self._collections.get(collection, {}))
        if session is not None:
            for (name, record_id), document in session.writes.items():
                if name == collection:
                    documents[record_id] = document
        return documents

    def _observe(self, session: InMemorySession | None, key: _Key) -> None:
        if session is not None:
            session.observed.setdefault(key, self._versions.get(key, 0))

    def _check_unique(self, collection: str, candidates: dict[str, Document], written: list[str]) -> None:
        """Raise ConflictError if a written document duplicates a unique field."""
        for name in self._unique_fields.get(collection, ()):
            for record_id in written:
                value = candidates[record_id].get(name)
                if value is None:
                    continue
                for other_id, other in candidates.items():
                    if other_id != record_id and other.get(name) == value:
                        raise ConflictError(
                            f"Duplicate {name} in {collection}: {value}",
                            collection=collection,
                            field=name,
                            value=value,
                        )

    # Reads

    @beartype
    async def find_one(
        self,
        collection: str,
        filter: Filter,
        *,
        session: StoreSession | None = None,
    ) -> Document | None:
        """Return the first matching document in insertion order."""
        validate_filter(filter)
        active = self._session(session)
        await asyncio.sleep(0)
        for record_id, document in self._visible(collection, active).items():
            if matches(document, filter):
                self._observe(active, (collection, record_id))
                return copy.deepcopy(document)
        return None

    @beartype
    async def find_many(
        self,
        collection: str,
        filter: Filter,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
        session: StoreSession | None = None,
    ) -> list[Document]:
        """Return matching documents, sorted and limited."""
        validate_filter(filter)
        if limit is not None and limit < 0:
            raise ValidationError("limit must be non-negative", limit=limit)
        active = self._session(session)
        await asyncio.sleep(0)
        found = [
            document
            for document in self._visible(collection, active).values()
            if matches(document, filter)
        ]
        found = sort_documents(found, sort)
        if limit is not None:
            found = found[:limit]
        for document in found:
            self._observe(active, (collection, document["id"]))
        return copy.deepcopy(found)

    # Writes

    @beartype
    async def update_one(
        self,
        collection: str,
        record_id: UUID | str,
        patch: Mapping[str, Any],
        *,
        session: StoreSession | None = None,
    ) -> Document:
        """Merge ``patch`` into a document."""
        active = self._session(session)
        record_id = str(record_id)
        if "id" in patch and str(patch["id"]) != record_id:
            raise ValidationError("Record id cannot be changed", record_id=record_id)
        await asyncio.sleep(0)

        key = (collection, record_id)
        changes = copy.deepcopy(dict(patch))

        if active is None:
            async with self._commit_lock:
                current = self._collections.get(collection, {}).get(record_id)
                if current is None:
                    raise NotFoundError(collection, record_id)
                updated = {**current, **changes, "updated_at": self._now()}
                self._apply({key: updated}, observed=None)
            return copy.deepcopy(updated)

        current = self._visible(collection, active).get(record_id)
        if current is None:
            raise NotFoundError(collection, record_id)
        self._observe(active, key)
        updated = {**current, **changes, "updated_at": self._now()}
        active.writes[key] = updated
        return copy.deepcopy(updated)

    @beartype
    async def create_one(
        self,
        collection: str,
        document: Mapping[str, Any],
        *,
        session: StoreSession | None = None,
    ) -> Document:
        """Insert a document, assigning an id when it has none."""
        active = self._session(session)
        created = copy.deepcopy(dict(document))
        record_id = str(created.get("id") or uuid4())
        now = self._now()
        created["id"] = record_id
        created["created_at"] = created.get("created_at") or now
        created["updated_at"] = now
        await asyncio.sleep(0)

        key = (collection, record_id)
        visible = self._visible(collection, active)
        if record_id in visible:
            raise ConflictError(
                f"Record {record_id} already exists in {collection}",
                collection=collection,
                record_id=record_id,
            )
        self._check_unique(collection, {**visible, record_id: created}, [record_id])

        if active is not None:
            self._observe(active, key)
            active.writes[key] = created
        else:
            async with self._commit_lock:
                self._apply({key: created}, observed={key: 0})
        return copy.deepcopy(created)

    def _apply(self, writes: dict[_Key, Document], observed: dict[_Key, int] | None) -> None:
        """Validate and apply a set of writes. Must run under the commit lock."""
        if observed is not None:
            for key in writes:
                if self._versions.get(key, 0) != observed.get(key, 0):
                    collection, record_id = key
                    raise ConflictError(
                        f"{collection} record {record_id} was modified concurrently",
                        collection=collection,
                        record_id=record_id,
                    )

        by_collection: dict[str, list[str]] = {}
        for collection, record_id in writes:
            by_collection.setdefault(collection, []).append(record_id)
        for collection, written in by_collection.items():
            candidates = dict(self._collections.get(collection, {}))
            for record_id in written:
                candidates[record_id] = writes[(collection, record_id)]
            self._check_unique(collection, candidates, written)

        for key, document in writes.items():
            collection, record_id = key
            self._collections.setdefault(collection, {})[record_id] = document
            self._versions[key] = self._versions.get(key, 0) + 1

    # Transactions

    async def _run(self, fn: TransactionFn[T], session: InMemorySession) -> T:
        result = await fn(session)
        async with self._commit_lock:
            # No awaits past this point: the commit applies entirely or not at all.
            self._apply(session.writes, observed=session.observed)
        return result

    async def with_transaction(
        self,
        fn: TransactionFn[T],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``fn`` in a session and commit its writes atomically."""
        session = InMemorySession(self)
        try:
            if timeout is None:
                return await self._run(fn, session)
            return await asyncio.wait_for(self._run(fn, session), timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Transaction %s aborted after %.2fs", session.session_id, timeout
            )
            raise TransactionTimeoutError(float(timeout or 0.0)) from exc
        finally:
            session.close()

    # Test helpers

    def count(self, collection: str) -> int:
        """Number of committed documents in a collection."""
        return len(self._collections.get(collection, {}))

    def snapshot(self, collection: str) -> list[Document]:
        """Deep copy of the committed documents of a collection."""
        return copy.deepcopy(list(self._collections.get(collection, {}).values()))
