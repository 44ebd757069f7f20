"""Persistence adapters."""

from .base import Row, Store
from .memory import MemoryStore
from .sqlite import SQLiteStore


def create_store(backend: str, database_path: str) -> Store:
    if backend == "memory":
        return MemoryStore()
    if backend == "sqlite":
        return SQLiteStore(database_path)
    raise ValueError(f"Unsupported storage backend: {backend}")


__all__ = ["Row", "Store", "MemoryStore", "SQLiteStore", "create_store"]
