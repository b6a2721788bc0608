"""Persistence for per-user engine state."""

from rmm.db.kv import RMMStateStore
from rmm.db.store import BaseStore, InMemoryStore, StoreItem

__all__ = [
    "BaseStore",
    "InMemoryStore",
    "RMMStateStore",
    "StoreItem",
]
