"""Persistent document stores."""

from beartype import beartype

from ..core.config import Settings, get_settings
from .base import (
    ASCENDING,
    COLLECTIONS,
    DESCENDING,
    UNIQUE_FIELDS,
    Document,
    DocumentStore,
    Filter,
    SortSpec,
    StoreSession,
)
from .memory import InMemoryDocumentStore, InMemorySession
from .postgres import Database, PostgresDocumentStore, PostgresSession


@beartype
async def create_store(settings: Settings | None = None) -> DocumentStore:
    """Build the document store configured by ``database_url``."""
    settings = settings or get_settings()
    if settings.uses_memory_store:
        return InMemoryDocumentStore()

    database = Database(settings)
    await database.connect()
    store = PostgresDocumentStore(database)
    await store.ensure_schema()
    return store


__all__ = [
    "ASCENDING",
    "DESCENDING",
    "COLLECTIONS",
    "UNIQUE_FIELDS",
    "Document",
    "Filter",
    "SortSpec",
    "StoreSession",
    "DocumentStore",
    "InMemoryDocumentStore",
    "InMemorySession",
    "Database",
    "PostgresDocumentStore",
    "PostgresSession",
    "create_store",
]
