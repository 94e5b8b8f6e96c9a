"""Render Cache.

Memoizes adapter output per resolved node under a structured key of node
id, visibility and selected item identity. The same node id shown for two
different items, or shown and hidden, maps to distinct entries. Entries are
only dropped by explicit invalidation (driven by the Action Router), by LRU
eviction, or by ``clear()`` on a full replan.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..core import get_logger, LRUCache, Stats
from ..spec.models import ResolvedNode

logger = get_logger(__name__)

NO_SELECTION = "no-data-selected"

O = TypeVar("O")


def _format_flag(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).lower()


@dataclass(frozen=True)
class RenderKey:
    """Composite cache key, compared by value."""

    node_id: str
    visible: bool
    selection: str = NO_SELECTION

    @classmethod
    def for_node(cls, node: ResolvedNode) -> "RenderKey":
        """
        Derive the key from a resolved node.

        Visibility is the ``visible`` prop when present, otherwise whether a
        ``data`` prop holds a value (nodes without ``data`` are visible).
        Selection is the ``id`` of a mapping ``data`` prop.
        """
        props = node.props
        data = props.get("data")
        if "visible" in props:
            visible = bool(props["visible"])
        elif "data" in props:
            visible = data is not None
        else:
            visible = True

        selection = NO_SELECTION
        if isinstance(data, Mapping) and data.get("id") not in (None, ""):
            selection = str(data["id"])
        return cls(node_id=node.id, visible=visible, selection=selection)

    def __str__(self) -> str:
        return f"{self.node_id}:{_format_flag(self.visible)}:{self.selection}"


class RenderCache(Generic[O]):
    """LRU of adapter outputs keyed by RenderKey."""

    def __init__(self, max_size: int = 512, ttl_seconds: int | None = None) -> None:
        self._cache: LRUCache[RenderKey, O] = LRUCache(max_size=max_size, ttl_seconds=ttl_seconds)

    def get(self, key: RenderKey) -> O | None:
        """Cached output, or None on a miss."""
        return self._cache.get(key)

    def put(self, key: RenderKey, output: O) -> None:
        self._cache.set(key, output)

    def invalidate(self, key: RenderKey) -> bool:
        """Drop exactly ``key``; True if it was present."""
        removed = self._cache.delete(key)
        if removed:
            logger.debug("render_cache_invalidated", key=str(key))
        return removed

    def invalidate_many(self, keys: Iterable[RenderKey]) -> int:
        return sum(1 for key in keys if self.invalidate(key))

    def invalidate_node(self, node_id: str) -> int:
        """Drop every entry for ``node_id`` regardless of visibility or selection."""
        removed = self._cache.delete_where(lambda key: key.node_id == node_id)
        if removed:
            logger.debug("render_cache_node_invalidated", node_id=node_id, keys=[str(k) for k in removed])
        return len(removed)

    def clear(self) -> None:
        self._cache.clear()

    def keys(self) -> list[RenderKey]:
        return self._cache.keys()

    @property
    def stats(self) -> Stats:
        return self._cache.stats

    def __contains__(self, key: object) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)


__all__ = ["NO_SELECTION", "RenderKey", "RenderCache"]
