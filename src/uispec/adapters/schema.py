"""Schema adapters: external data definitions to the engine's schema and Data Context."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..core import get_logger
from ..engine.context import DataContext, initialize_data_context
from ..spec.models import DataItem

logger = get_logger(__name__)


class SchemaAdapterError(Exception):
    """Data source unavailable or query failed."""

    pass


@runtime_checkable
class SchemaAdapter(Protocol):
    def get_schema(self) -> dict[str, Any]:
        ...

    async def initialize_data_context(self, user_context: Mapping[str, Any] | None = None) -> DataContext:
        ...

    async def query(self, source: str, query: Mapping[str, Any] | None = None) -> list[DataItem]:
        ...


# ORM column types to schema types
TYPE_MAP = {
    "serial": "integer",
    "integer": "integer",
    "int": "integer",
    "bigint": "integer",
    "text": "string",
    "varchar": "string",
    "char": "string",
    "boolean": "boolean",
    "bool": "boolean",
    "timestamp": "datetime",
    "timestamptz": "datetime",
    "date": "date",
    "time": "time",
    "json": "object",
    "jsonb": "object",
    "real": "number",
    "float": "number",
    "double": "number",
    "numeric": "number",
    "decimal": "number",
}


def map_data_type(column_type: str) -> str:
    return TYPE_MAP.get(column_type.lower(), "string")


@dataclass
class Column:
    name: str
    data_type: str
    not_null: bool = False
    default: Any = None
    primary_key: bool = False
    unique: bool = False
    references: dict[str, str] | None = None


@dataclass
class Table:
    name: str
    columns: dict[str, Column]
    schema: str = "public"


QueryFn = Callable[[str, Mapping[str, Any] | None], Awaitable[list[DataItem]]]


def _matches(row: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    where = query.get("where", query)
    return all(row.get(key) == value for key, value in where.items() if key not in ("limit", "where"))


@dataclass
class TableSchemaAdapter:
    """
    Adapter over ORM-style table definitions.

    Without a ``query_fn`` rows come from ``rows`` (mock mode) and queries
    are equality filters over them, optionally limited by ``limit``.
    """

    tables: dict[str, Table]
    rows: dict[str, list[DataItem]] = field(default_factory=dict)
    query_fn: QueryFn | None = None

    @property
    def mock_mode(self) -> bool:
        return self.query_fn is None

    def get_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {}
        for name, table in self.tables.items():
            entry: dict[str, Any] = {
                "tableName": table.name,
                "schema": table.schema,
                "columns": {
                    column_name: {
                        "type": map_data_type(column.data_type),
                        "notNull": column.not_null,
                        "defaultValue": column.default,
                        "primaryKey": column.primary_key,
                        "unique": column.unique,
                        "references": column.references,
                    }
                    for column_name, column in table.columns.items()
                },
            }
            if self.mock_mode and name in self.rows:
                entry["sampleData"] = list(self.rows[name])
            schema[name] = entry
        return schema

    async def initialize_data_context(self, user_context: Mapping[str, Any] | None = None) -> DataContext:
        return initialize_data_context(self.get_schema(), user_context)

    async def query(self, source: str, query: Mapping[str, Any] | None = None) -> list[DataItem]:
        """
        Raises:
            SchemaAdapterError: Unknown source or failed query
        """
        if source not in self.tables:
            raise SchemaAdapterError(f"Unknown table '{source}'")

        if self.query_fn is not None:
            try:
                return list(await self.query_fn(source, query))
            except Exception as e:
                logger.error("query_failed", table=source, error=str(e))
                raise SchemaAdapterError(f"Query on '{source}' failed: {e}") from e

        rows = self.rows.get(source, [])
        if query:
            rows = [row for row in rows if _matches(row, query)]
            limit = query.get("limit")
            if isinstance(limit, int):
                rows = rows[:limit]
        return list(rows)


def tables_from_dict(definition: Mapping[str, Mapping[str, Any]]) -> dict[str, Table]:
    """
    Build Table objects from a plain description.

    Example:
        {"tasks": {"columns": {"id": {"dataType": "serial", "primaryKey": True}}}}
    """
    tables = {}
    for name, spec in definition.items():
        columns = {
            column_name: Column(
                name=column_name,
                data_type=column.get("dataType", "text"),
                not_null=column.get("notNull", False),
                default=column.get("defaultValue"),
                primary_key=column.get("primaryKey", False),
                unique=column.get("unique", False),
                references=column.get("references"),
            )
            for column_name, column in spec.get("columns", {}).items()
        }
        tables[name] = Table(name=spec.get("name", name), columns=columns, schema=spec.get("schema", "public"))
    return tables


__all__ = [
    "SchemaAdapterError",
    "SchemaAdapter",
    "TYPE_MAP",
    "map_data_type",
    "Column",
    "Table",
    "TableSchemaAdapter",
    "tables_from_dict",
]
