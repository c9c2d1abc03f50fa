"""Short-lived per-user cache over unfiltered task listings.

Entries are evicted as soon as any of the user's tasks changes, and otherwise
served only while younger than the freshness window. There is no lock: two
concurrent misses for the same user may both load from the store, and each
write replaces the slot wholesale with an immutable snapshot.

Every invalidation moves the user to a new generation. A listing loaded under
an older generation is never stored, and an entry stamped with an older
generation is never served, so a load that races a mutation cannot leave
pre-mutation rows behind.
"""

from __future__ import annotations

import itertools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from taskapp.schemas import TaskFilters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheKey:
    user_id: str
    status: Optional[str] = None
    category: Optional[str] = None
    search: Optional[str] = None

    @classmethod
    def for_listing(cls, user_id: str, filters: TaskFilters) -> "CacheKey":
        return cls(user_id, filters.status, filters.category, filters.search)


@dataclass(frozen=True)
class CacheEntry:
    tasks: Tuple[Any, ...]
    stored_at: float
    generation: int


class TaskCache(ABC):
    """Storage for task listings, swappable for a shared/distributed cache."""

    @abstractmethod
    def generation(self, user_id: str) -> int:
        """Current generation of `user_id`; changes on every invalidation."""

    @abstractmethod
    def get(self, key: CacheKey) -> Optional[List[Any]]:
        """Return the fresh listing stored under `key`, or None on a miss."""

    @abstractmethod
    def put(self, key: CacheKey, tasks: Sequence[Any], generation: Optional[int] = None) -> bool:
        """
        Store `tasks` under `key`.

        When `generation` is given and the user has been invalidated since,
        nothing is stored and False is returned.
        """

    @abstractmethod
    def invalidate(self, user_id: str) -> int:
        """Drop every entry of `user_id`; returns how many were removed."""

    @abstractmethod
    def expire(self) -> int:
        """Drop entries older than the freshness window."""


class TaskQueryCache(TaskCache):
    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._generations: Dict[str, int] = {}
        # next() on a count is atomic under the GIL
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at < self.ttl

    def generation(self, user_id: str) -> int:
        return self._generations.get(user_id, 0)

    def get(self, key: CacheKey) -> Optional[List[Any]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.generation != self.generation(key.user_id) or not self._is_fresh(entry, self._clock()):
            self._entries.pop(key, None)
            return None
        return list(entry.tasks)

    def put(self, key: CacheKey, tasks: Sequence[Any], generation: Optional[int] = None) -> bool:
        current = self.generation(key.user_id)
        if generation is None:
            generation = current
        elif generation != current:
            return False
        self._entries[key] = CacheEntry(tasks=tuple(tasks), stored_at=self._clock(), generation=generation)
        return True

    def invalidate(self, user_id: str) -> int:
        self._generations[user_id] = next(self._counter)
        keys = [k for k in list(self._entries) if k.user_id == user_id]
        for k in keys:
            self._entries.pop(k, None)
        return len(keys)

    def expire(self) -> int:
        now = self._clock()
        stale = [k for k, e in list(self._entries.items()) if not self._is_fresh(e, now)]
        for k in stale:
            self._entries.pop(k, None)
        return len(stale)


def read_through(
    cache: TaskCache,
    user_id: str,
    filters: TaskFilters,
    load: Callable[[], Sequence[Any]],
) -> Tuple[List[Any], bool]:
    """
    Return `(tasks, served_from_cache)` for a listing request.

    Only unfiltered listings consult or populate the cache; any filter
    (even an empty string) goes straight to `load`.
    """
    if not filters.is_empty():
        return list(load()), False

    key = CacheKey.for_listing(user_id, filters)
    hit = cache.get(key)
    if hit is not None:
        logger.debug("Task cache hit for user %s", user_id)
        return hit, True

    logger.debug("Task cache miss for user %s", user_id)
    generation = cache.generation(user_id)
    result = list(load())
    if not cache.put(key, result, generation):
        logger.debug("Tasks of user %s changed during load; listing not cached", user_id)
    return result, False
