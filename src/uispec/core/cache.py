"""LRU cache with optional TTL, shared by the render and plan caches.

Keys are any hashable value compared by equality, so structured keys
(tuples, frozen dataclasses) are used directly without string encoding.
"""

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable, Iterator
from dataclasses import asdict, dataclass
from typing import Any, Generic, NamedTuple, TypeVar

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


@dataclass
class Stats:
    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "hit_rate": self.hit_rate}


class _Entry(NamedTuple):
    value: Any
    stored_at: float


class LRUCache(Generic[K, T]):
    """
    Bounded mapping that evicts the least recently used entry.

    Entries older than ``ttl_seconds`` read as misses and are dropped on
    access. ``clock`` defaults to ``time.monotonic``.

    Examples:
        >>> cache = LRUCache[str, str](max_size=2)
        >>> cache.set("a", "1")
        >>> cache.get("a"), cache.get("b")
        ('1', None)
        >>> cache.stats.hit_rate
        0.5
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[K, _Entry] = OrderedDict()
        self._stats = Stats(max_size=max_size)

    def _expired(self, entry: _Entry) -> bool:
        return self.ttl_seconds is not None and self._clock() - entry.stored_at >= self.ttl_seconds

    def _sync_size(self) -> None:
        self._stats.size = len(self._entries)

    def get(self, key: K) -> T | None:
        """Cached value, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None or self._expired(entry):
            if entry is not None:
                del self._entries[key]
                self._sync_size()
            self._stats.misses += 1
            return None
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.value

    def set(self, key: K, value: T) -> None:
        self._entries[key] = _Entry(value, self._clock())
        self._entries.move_to_end(key)
        if len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self._stats.evictions += 1
        self._sync_size()

    def delete(self, key: K) -> bool:
        """Drop ``key``; True if it was present."""
        if self._entries.pop(key, None) is None:
            return False
        self._stats.invalidations += 1
        self._sync_size()
        return True

    def delete_where(self, predicate: Callable[[K], bool]) -> list[K]:
        """Drop every key matching ``predicate`` and return them."""
        doomed = [key for key in self._entries if predicate(key)]
        for key in doomed:
            self.delete(key)
        return doomed

    def clear(self) -> None:
        self._entries.clear()
        self._sync_size()

    def keys(self) -> list[K]:
        """Snapshot of stored keys, least recently used first."""
        return list(self._entries)

    @property
    def stats(self) -> Stats:
        return self._stats

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())

    def __contains__(self, key: object) -> bool:
        """Membership without touching recency; expired entries count as absent."""
        entry = self._entries.get(key)  # type: ignore[call-overload]
        return entry is not None and not self._expired(entry)


__all__ = ["LRUCache", "Stats"]
