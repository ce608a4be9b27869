"""
In-process, time-limited cache for computed expense listings.

Entries are keyed by endpoint scope, owner and every field of the normalized
QueryDescriptor, and indexed by owner so that all of an owner's entries can be
dropped at once after a mutation.

The cache lives in one process. When the API runs as several workers or
instances each holds its own cache and invalidation only reaches the instance
that handled the mutation; a stale page can then be served by another worker
until its TTL elapses.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from models.query import QueryDescriptor

logger = logging.getLogger(__name__)

_KEY_SEPARATOR = "|"


def cache_key(descriptor: QueryDescriptor, scope: str = "list") -> str:
    """
    Deterministic key for a descriptor.

    Fields are written in a fixed order with None encoded as an empty string,
    so equal descriptors always share a key and any differing field yields a
    different key.
    """
    parts = [
        scope,
        descriptor.owner_id,
        str(descriptor.page),
        str(descriptor.limit),
        descriptor.category if descriptor.category is not None else "",
        descriptor.start_date.isoformat() if descriptor.start_date else "",
        descriptor.end_date.isoformat() if descriptor.end_date else "",
        descriptor.sort_by.value,
        descriptor.order.value,
    ]
    # Length-prefix each part so a separator inside a category can't collide
    return _KEY_SEPARATOR.join(f"{len(p)}:{p}" for p in parts)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    owner_id: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResultCache:
    """
    Thread-safe TTL cache with per-owner invalidation.

    Entries are never modified after insertion; `put` replaces them whole.
    """

    def __init__(self, default_ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._owner_keys: Dict[str, Set[str]] = {}
        # Bumped on every invalidation; a put carrying an older value is dropped
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        """Returns the live entry for `key`, evicting it instead if it has expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                self._remove(key)
                return None
            return entry

    def generation(self, owner_id: str) -> int:
        """Current invalidation generation of `owner_id`. Read it before computing a value to `put`."""
        with self._lock:
            return self._generations.get(owner_id, 0)

    def put(
        self,
        key: str,
        owner_id: str,
        value: Any,
        ttl: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> Optional[CacheEntry]:
        """
        Stores `value` under `key`.

        When `generation` is given and the owner has been invalidated since it
        was read, the value predates a mutation and is not stored (returns None).
        """
        entry = CacheEntry(
            key=key,
            owner_id=owner_id,
            value=value,
            created_at=self._clock(),
            ttl=ttl if ttl is not None else self.default_ttl,
        )
        with self._lock:
            if generation is not None and generation != self._generations.get(owner_id, 0):
                return None
            if key in self._entries:
                self._remove(key)
            self._entries[key] = entry
            self._owner_keys.setdefault(owner_id, set()).add(key)
        return entry

    def invalidate_by_owner(self, owner_id: str) -> int:
        """Drops every entry belonging to `owner_id`. Returns how many were removed."""
        with self._lock:
            self._generations[owner_id] = self._generations.get(owner_id, 0) + 1
            keys = self._owner_keys.pop(owner_id, set())
            for key in keys:
                self._entries.pop(key, None)
        return len(keys)

    def sweep(self) -> int:
        """Removes all expired entries. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._remove(key)
        return len(expired)

    def clear(self) -> None:
        # Generations survive a clear so in-flight puts stay comparable
        with self._lock:
            self._entries.clear()
            self._owner_keys.clear()

    def _remove(self, key: str) -> None:
        # Caller holds the lock
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        keys = self._owner_keys.get(entry.owner_id)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._owner_keys[entry.owner_id]


async def run_sweeper(cache: ResultCache, interval: float) -> None:
    """Sweeps `cache` every `interval` seconds until cancelled."""
    logger.info(f"Cache sweeper started (interval {interval}s).")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = cache.sweep()
            except Exception as e:
                logger.exception(f"Cache sweep failed: {e}")
                continue
            if removed:
                logger.debug(f"Cache sweep removed {removed} expired entries.")
    except asyncio.CancelledError:
        logger.info("Cache sweeper stopped.")
        raise
