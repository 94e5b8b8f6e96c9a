"""Schema and component adapters."""

from .schema import (
    SchemaAdapter,
    SchemaAdapterError,
    TableSchemaAdapter,
    Column,
    Table,
    map_data_type,
    tables_from_dict,
)
from .http import HttpSchemaAdapter
from .component import ComponentAdapter, CachedComponentAdapter, TextComponentAdapter

__all__ = [
    "SchemaAdapter",
    "SchemaAdapterError",
    "TableSchemaAdapter",
    "Column",
    "Table",
    "map_data_type",
    "tables_from_dict",
    "HttpSchemaAdapter",
    "ComponentAdapter",
    "CachedComponentAdapter",
    "TextComponentAdapter",
]
