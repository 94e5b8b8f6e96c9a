"""Data Context.

Immutable mapping from source name to a ``SourceEntry`` (schema, rows,
selection), plus the reserved ``user`` and ``visibility`` entries. Every
write returns a new context; only the containers along the written path are
copied, so consumers can detect change by identity.
"""

import dataclasses
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..core import get_logger
from ..spec.models import DataItem

logger = get_logger(__name__)

USER = "user"
VISIBILITY = "visibility"
RESERVED = frozenset({USER, VISIBILITY})


class _Missing:
    """Sentinel for absent paths (distinct from a stored None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


@dataclass(frozen=True)
class SourceEntry:
    """One data source: its schema descriptor, current rows and selection."""

    schema: Mapping[str, Any] = field(default_factory=dict)
    data: list[DataItem] = field(default_factory=list)
    selected: DataItem | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"schema": dict(self.schema), "data": list(self.data), "selected": self.selected}


_ENTRY_FIELDS = frozenset(f.name for f in dataclasses.fields(SourceEntry))


def split_path(path: str | Sequence[str]) -> list[str]:
    if isinstance(path, str):
        return path.split(".") if path else []
    return list(path)


def _child(container: Any, key: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(key, MISSING)
    if isinstance(container, SourceEntry):
        return getattr(container, key) if key in _ENTRY_FIELDS else MISSING
    if isinstance(container, (list, tuple)):
        try:
            return container[int(key)]
        except (ValueError, IndexError):
            return MISSING
    return MISSING


def lookup_path(root: Any, path: str | Sequence[str], default: Any = MISSING) -> Any:
    """Walk ``path`` from any mapping, source entry or list; ``default`` when absent."""
    current = root
    for key in split_path(path):
        current = _child(current, key)
        if current is MISSING:
            return default
    return current


def _assign(container: Any, keys: list[str], value: Any) -> Any:
    key, rest = keys[0], keys[1:]
    if rest:
        current = _child(container, key)
        if current is MISSING or current is None:
            current = {}
        value = _assign(current, rest, value)

    if isinstance(container, SourceEntry):
        if key not in _ENTRY_FIELDS:
            raise KeyError(f"Source entries have no field '{key}'")
        return dataclasses.replace(container, **{key: value})
    if isinstance(container, Mapping):
        updated = dict(container)
        updated[key] = value
        return updated
    if isinstance(container, (list, tuple)):
        try:
            index = int(key)
            updated = list(container)
            updated[index] = value
        except (ValueError, IndexError) as e:
            raise KeyError(f"Invalid list index '{key}'") from e
        return updated
    raise KeyError(f"Cannot set '{key}' on {type(container).__name__}")


class DataContext(Mapping[str, Any]):
    """Copy-on-write data context."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, Any] | None = None) -> None:
        self._entries: dict[str, Any] = dict(entries or {})

    def __getitem__(self, name: str) -> Any:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DataContext({self._entries!r})"

    def lookup(self, path: str | Sequence[str], default: Any = MISSING) -> Any:
        """
        Walk ``path`` through mappings, source entries and list indices.

        Returns ``default`` (MISSING unless given) when any segment is absent.
        """
        return lookup_path(self._entries, path, default)

    def get_path(self, path: str | Sequence[str], default: Any = None) -> Any:
        return self.lookup(path, default)

    def has_path(self, path: str | Sequence[str]) -> bool:
        return self.lookup(path) is not MISSING

    def set_path(self, path: str | Sequence[str], value: Any) -> "DataContext":
        """
        New context with ``value`` stored at ``path``.

        Intermediate mappings are created as needed.

        Raises:
            KeyError: If the path crosses a scalar or an unknown entry field
        """
        keys = split_path(path)
        if not keys:
            return self
        return DataContext(_assign(self._entries, keys, value))

    def with_entry(self, name: str, entry: Any) -> "DataContext":
        entries = dict(self._entries)
        entries[name] = entry
        return DataContext(entries)

    def without(self, name: str) -> "DataContext":
        entries = {k: v for k, v in self._entries.items() if k != name}
        return DataContext(entries)

    def entry(self, name: str) -> SourceEntry | None:
        value = self._entries.get(name)
        return value if isinstance(value, SourceEntry) else None

    def source_names(self) -> list[str]:
        return [name for name, value in self._entries.items() if isinstance(value, SourceEntry)]

    @property
    def user(self) -> Mapping[str, Any]:
        return self._entries.get(USER) or {}

    def is_meaningfully_populated(self) -> bool:
        """True with at least one non-``user`` entry or a non-empty ``user`` entry."""
        if any(name != USER for name in self._entries):
            return True
        return bool(self._entries.get(USER))

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict snapshot for prompts and logs."""
        return {
            name: value.to_dict() if isinstance(value, SourceEntry) else value
            for name, value in self._entries.items()
        }


def initialize_data_context(
    schema: Mapping[str, Any],
    user_context: Mapping[str, Any] | None = None,
) -> DataContext:
    """
    Build the initial context from a schema.

    Each source starts with its ``sampleData`` rows (if any) and no selection.
    """
    entries: dict[str, Any] = {}
    for name, table in schema.items():
        table = table or {}
        rows = table.get("sampleData") or [] if isinstance(table, Mapping) else []
        entries[name] = SourceEntry(schema=table, data=list(rows), selected=None)
    if user_context:
        entries[USER] = dict(user_context)

    logger.debug("data_context_initialized", sources=list(schema), has_user=bool(user_context))
    return DataContext(entries)


__all__ = [
    "USER",
    "VISIBILITY",
    "RESERVED",
    "MISSING",
    "SourceEntry",
    "DataContext",
    "split_path",
    "lookup_path",
    "initialize_data_context",
]
