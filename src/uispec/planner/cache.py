"""Plan cache - lightweight wrapper around the generic LRU cache."""

from ..core import LRUCache, hash_fields
from ..spec.models import SpecNode
from .base import PlannerInput


class PlanCache:
    """
    LRU cache of planned trees keyed by prompt and target node.

    Trees are immutable, so cached values are shared as-is.
    """

    def __init__(self, max_size: int = 100, ttl_seconds: int = 3600) -> None:
        self._cache: LRUCache[str, SpecNode] = LRUCache(max_size=max_size, ttl_seconds=ttl_seconds)

    @staticmethod
    def key_for(request: PlannerInput, prompt: str) -> str:
        return hash_fields(prompt, request.target_node_id or "")

    def get(self, key: str) -> SpecNode | None:
        return self._cache.get(key)

    def set(self, key: str, tree: SpecNode) -> None:
        self._cache.set(key, tree)

    def clear(self) -> None:
        self._cache.clear()

    @property
    def stats(self):
        return self._cache.stats


__all__ = ["PlanCache"]
