"""Persistence backends."""

from dexengine.storage.base import Store
from dexengine.storage.memory import MemoryStore
from dexengine.storage.sql import SqlStore, create_store_engine


def open_store(database_url: str | None) -> Store:
    """Open the store for a database URL. None selects the in-memory store."""
    if not database_url:
        return MemoryStore()
    return SqlStore(database_url)


__all__ = ["Store", "MemoryStore", "SqlStore", "create_store_engine", "open_store"]
