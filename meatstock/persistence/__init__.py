"""
Storage backends for the stock components.

- MemoryStore: in-process dictionaries (tests, embedding)
- SqliteStore: SQLite database file (default)
"""
from pathlib import Path
from typing import Optional

from ..config import InventorySettings, load_settings
from .base import StockStore, UnitOfWork
from .memory import MemoryStore
from .sqlite_store import SqliteStore


def open_store(settings: Optional[InventorySettings] = None) -> StockStore:
    """Open the store selected by settings.storage_backend."""
    if settings is None:
        settings = load_settings()

    if settings.storage_backend == "memory":
        return MemoryStore()

    db_path = Path(settings.database_path) if settings.database_path else None
    return SqliteStore(db_path)


__all__ = ["MemoryStore", "SqliteStore", "StockStore", "UnitOfWork", "open_store"]
