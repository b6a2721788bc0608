"""Namespaced key-value store interface and an in-memory implementation.

The engine persists per-user state through any object satisfying
BaseStore: a namespaced async get/put/delete where every item carries
the time it was last written. InMemoryStore is used for tests and
single-process deployments.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

Namespace = tuple[str, ...]


@dataclass
class StoreItem:
    """A stored value and the store's own last-write time."""

    value: dict[str, Any]
    updated_at: datetime
    created_at: datetime | None = None

    @property
    def updated_at_ms(self) -> int:
        return int(self.updated_at.timestamp() * 1000)


class BaseStore(Protocol):
    """Protocol for namespaced persistent stores."""

    async def get(self, namespace: Namespace, key: str) -> StoreItem | None:
        """Fetch an item, or None if absent."""
        ...

    async def put(self, namespace: Namespace, key: str, value: dict[str, Any]) -> None:
        """Write an item, updating its updated_at."""
        ...

    async def delete(self, namespace: Namespace, key: str) -> None:
        """Remove an item. Deleting a missing key is not an error."""
        ...


class InMemoryStore:
    """Dict-backed BaseStore.

    Values are deep-copied on the way in and out so callers cannot mutate
    stored state by accident.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize an empty store.

        Args:
            clock: Optional source of write timestamps (defaults to UTC now)
        """
        self._data: dict[Namespace, dict[str, StoreItem]] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get(self, namespace: Namespace, key: str) -> StoreItem | None:
        item = self._data.get(tuple(namespace), {}).get(key)
        if item is None:
            return None
        return StoreItem(
            value=copy.deepcopy(item.value),
            updated_at=item.updated_at,
            created_at=item.created_at,
        )

    async def put(self, namespace: Namespace, key: str, value: dict[str, Any]) -> None:
        now = self._clock()
        bucket = self._data.setdefault(tuple(namespace), {})
        existing = bucket.get(key)
        bucket[key] = StoreItem(
            value=copy.deepcopy(value),
            updated_at=now,
            created_at=existing.created_at if existing else now,
        )

    async def delete(self, namespace: Namespace, key: str) -> None:
        self._data.get(tuple(namespace), {}).pop(key, None)

    def keys(self, namespace: Namespace) -> list[str]:
        """Keys currently stored under a namespace."""
        return list(self._data.get(tuple(namespace), {}).keys())
