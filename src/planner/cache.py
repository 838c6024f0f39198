from __future__ import annotations

from collections import OrderedDict
from dataclasses import asdict, dataclass
from threading import RLock
from typing import Dict, Generic, Iterable, List, Optional, TypeVar

from .models import TaskListEntity

T = TypeVar("T")


def create_cache_key(prefix: str, *parts: str) -> str:
    return ":".join([prefix, *parts])


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    invalidations: int = 0
    size: int = 0


class InMemoryCache(Generic[T]):
    """
    Process-local key/value cache with explicit invalidation.

    Entries never expire on their own; they stay until ``invalidate`` or
    ``clear`` is called, or until ``max_size`` forces out the oldest entry.
    """

    def __init__(self, max_size: int = 1000) -> None:
        self._lock = RLock()
        self._items: "OrderedDict[str, T]" = OrderedDict()
        self._max_size = max_size
        self._stats = CacheStats()

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            if key not in self._items:
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            return self._items[key]

    def set(self, key: str, value: T) -> None:
        with self._lock:
            if key not in self._items and len(self._items) >= self._max_size:
                self._items.popitem(last=False)
            self._items[key] = value
            self._stats.sets += 1
            self._stats.size = len(self._items)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = self._items.pop(key, None) is not None
            if removed:
                self._stats.invalidations += 1
            self._stats.size = len(self._items)
            return removed

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._items

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._stats.size = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return asdict(self._stats)


# PUBLIC_INTERFACE
class TaskListCache:
    """
    Per-user cache of the complete task list collection.

    Reads go through ``get_for_user``; every task list write must call
    ``invalidate_user`` so the next read reloads from the store.  The cache
    is built once at start-up and handed to the services that need it.
    """

    PREFIX = "task-lists"

    def __init__(self, max_users: int = 1000) -> None:
        self._cache: InMemoryCache[List[TaskListEntity]] = InMemoryCache(max_size=max_users)

    def key(self, user_id: str) -> str:
        return create_cache_key(self.PREFIX, user_id)

    def get_for_user(self, user_id: str) -> Optional[List[TaskListEntity]]:
        return self._cache.get(self.key(user_id))

    def set_for_user(self, user_id: str, task_lists: Iterable[TaskListEntity]) -> None:
        self._cache.set(self.key(user_id), [dict(t) for t in task_lists])  # type: ignore[misc]

    def invalidate_user(self, user_id: str) -> bool:
        return self._cache.invalidate(self.key(user_id))

    def is_cached(self, user_id: str) -> bool:
        return self._cache.has(self.key(user_id))

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> Dict[str, int]:
        return self._cache.stats()
