from __future__ import annotations
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from storefront.authz.grants import Grant


@dataclass(frozen=True)
class CacheEntry:
    grants: List[Grant]
    resolved_at: float


class PermissionCache:
    """Per-actor memo of resolved grants with a fixed TTL.

    Stale reads only risk a TTL-bounded window of over/under permission, so a single lock
    around get/set/invalidate is enough. ``max_entries`` adds LRU eviction; None keeps the
    cache unbounded. Every invalidation bumps a generation counter: a resolution that
    started before the invalidation passes its generation to ``set`` and is dropped.
    """

    def __init__(self, ttl_seconds: float = 60.0, max_entries: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds < 0:
            raise ValueError('ttl_seconds must be >= 0')
        if max_entries is not None and max_entries < 1:
            raise ValueError('max_entries must be >= 1')
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: 'OrderedDict[str, CacheEntry]' = OrderedDict()
        self._generation = 0
        self._lock = threading.Lock()

    @staticmethod
    def _key(actor_id: Any) -> str:
        return str(actor_id)

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, actor_id: Any) -> Optional[List[Grant]]:
        key = self._key(actor_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.resolved_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return list(entry.grants)

    def set(self, actor_id: Any, grants: List[Grant], generation: Optional[int] = None) -> bool:
        """Store grants; returns False when an invalidation happened since ``generation``."""
        key = self._key(actor_id)
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[key] = CacheEntry(grants=list(grants), resolved_at=self._clock())
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
            return True

    def invalidate(self, actor_id: Any = None) -> None:
        """Drop one actor's entry, or everything when actor_id is None."""
        with self._lock:
            self._generation += 1
            if actor_id is None:
                self._entries.clear()
            else:
                self._entries.pop(self._key(actor_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ['PermissionCache', 'CacheEntry']
