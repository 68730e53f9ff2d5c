"""Durable storage."""

from modelgate.storage.store import SQLiteStore

__all__ = ["SQLiteStore"]
