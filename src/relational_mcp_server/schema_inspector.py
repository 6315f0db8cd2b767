"""
Schema inspector for Relational MCP Server.

Introspects tables, columns, primary keys, foreign keys and secondary indexes
from PostgreSQL and MySQL `information_schema` (plus `pg_index` for PostgreSQL
indexes) and from SQLite's `sqlite_master` and PRAGMAs. Snapshots are cached
in a process-wide SchemaCache.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from .cache_manager import DEFAULT_SCHEMA_TTL_MS, CacheKeyGenerator, SchemaCache
from .exceptions import QueryValidationError
from .identifiers import QUALIFIED_IDENTIFIER_PATTERN
from .models import (
    BuiltQuery,
    ColumnSchema,
    DatabaseSchema,
    DatabaseVendor,
    ForeignKeySchema,
    IndexSchema,
    TableSchema,
)
from .query_executor import QueryExecutor
from .type_mapper import map_column_type

logger = logging.getLogger(__name__)

_shared_cache = SchemaCache()

POSTGRESQL_TABLES_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name
FROM information_schema.tables
WHERE table_type = 'BASE TABLE'
  AND table_schema NOT IN ('pg_catalog', 'information_schema')
ORDER BY table_schema, table_name
"""

POSTGRESQL_COLUMNS_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name,
  column_name,
  data_type,
  is_nullable,
  column_default
FROM information_schema.columns
WHERE table_schema NOT IN ('pg_catalog', 'information_schema')
ORDER BY table_schema, table_name, ordinal_position
"""

POSTGRESQL_PRIMARY_KEYS_QUERY = """
SELECT
  kcu.table_schema AS schema_name,
  kcu.table_name,
  kcu.column_name,
  kcu.ordinal_position AS key_position
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
 AND tc.table_name = kcu.table_name
WHERE tc.constraint_type = 'PRIMARY KEY'
ORDER BY kcu.table_schema, kcu.table_name, kcu.ordinal_position
"""

POSTGRESQL_FOREIGN_KEYS_QUERY = """
SELECT
  tc.table_schema AS schema_name,
  tc.table_name,
  tc.constraint_name,
  kcu.column_name,
  ccu.table_schema AS referenced_schema_name,
  ccu.table_name AS referenced_table_name,
  ccu.column_name AS referenced_column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON ccu.constraint_name = tc.constraint_name
 AND ccu.table_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
ORDER BY tc.table_schema, tc.table_name, tc.constraint_name, kcu.ordinal_position
"""

POSTGRESQL_INDEXES_QUERY = """
SELECT
  ns.nspname AS schema_name,
  tbl.relname AS table_name,
  idx.relname AS index_name,
  ix.indisunique AS is_unique,
  att.attname AS column_name,
  ord.ordinality AS column_position
FROM pg_class tbl
JOIN pg_namespace ns
  ON ns.oid = tbl.relnamespace
JOIN pg_index ix
  ON ix.indrelid = tbl.oid
JOIN pg_class idx
  ON idx.oid = ix.indexrelid
JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS ord(attnum, ordinality)
  ON true
JOIN pg_attribute att
  ON att.attrelid = tbl.oid
 AND att.attnum = ord.attnum
WHERE tbl.relkind = 'r'
  AND ns.nspname NOT IN ('pg_catalog', 'information_schema')
  AND ix.indisprimary = false
ORDER BY ns.nspname, tbl.relname, idx.relname, ord.ordinality
"""

# MySQL 8 returns information_schema column names in upper case unless aliased
MYSQL_TABLES_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name AS table_name
FROM information_schema.tables
WHERE table_type = 'BASE TABLE'
  AND table_schema = DATABASE()
ORDER BY table_name
"""

MYSQL_COLUMNS_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name AS table_name,
  column_name AS column_name,
  column_type AS data_type,
  is_nullable AS is_nullable,
  column_default AS column_default
FROM information_schema.columns
WHERE table_schema = DATABASE()
ORDER BY table_name, ordinal_position
"""

MYSQL_PRIMARY_KEYS_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name AS table_name,
  column_name AS column_name,
  ordinal_position AS key_position
FROM information_schema.key_column_usage
WHERE table_schema = DATABASE()
  AND constraint_name = 'PRIMARY'
ORDER BY table_name, ordinal_position
"""

MYSQL_FOREIGN_KEYS_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name AS table_name,
  constraint_name AS constraint_name,
  column_name AS column_name,
  referenced_table_schema AS referenced_schema_name,
  referenced_table_name AS referenced_table_name,
  referenced_column_name AS referenced_column_name
FROM information_schema.key_column_usage
WHERE table_schema = DATABASE()
  AND referenced_table_name IS NOT NULL
ORDER BY table_name, constraint_name, ordinal_position
"""

MYSQL_INDEXES_QUERY = """
SELECT
  table_schema AS schema_name,
  table_name AS table_name,
  index_name AS index_name,
  non_unique AS non_unique,
  column_name AS column_name,
  seq_in_index AS seq_in_index
FROM information_schema.statistics
WHERE table_schema = DATABASE()
  AND index_name <> 'PRIMARY'
ORDER BY table_name, index_name, seq_in_index
"""

SQLITE_TABLES_QUERY = """
SELECT
  name AS table_name
FROM sqlite_master
WHERE type = 'table'
  AND name NOT LIKE 'sqlite_%'
ORDER BY name
"""

Row = Dict[str, Any]


def to_bool(value: Any) -> bool:
    """Interpret the truthy spellings drivers use for flags (YES, t, 1, True)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("yes", "true", "t", "1")
    return False


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def to_str(value: Any) -> str:
    return value if isinstance(value, str) else ("" if value is None else str(value))


def to_optional_str(value: Any) -> Optional[str]:
    result = to_str(value)
    return result or None


def escape_sqlite_literal(value: str) -> str:
    return value.replace("'", "''")


@dataclass
class _TableBuilder:
    """Mutable accumulator used while rows are being read."""

    name: str
    schema: Optional[str] = None
    columns: List[Dict[str, Any]] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKeySchema] = field(default_factory=list)
    indexes: List[IndexSchema] = field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def mark_primary_key(self, column_name: str) -> None:
        self.primary_key.append(column_name)
        for column in self.columns:
            if column["name"] == column_name:
                column["is_primary_key"] = True

    def build(self, vendor: DatabaseVendor) -> TableSchema:
        columns = [
            ColumnSchema(
                name=column["name"],
                type=column["type"],
                is_nullable=column["is_nullable"],
                default_value=column["default_value"],
                is_primary_key=column["is_primary_key"],
                semantic_type=map_column_type(vendor, column["type"], column["is_nullable"]).category.value,
            )
            for column in self.columns
        ]
        return TableSchema(
            name=self.name,
            schema=self.schema,
            columns=columns,
            primary_key=list(self.primary_key),
            foreign_keys=list(self.foreign_keys),
            indexes=list(self.indexes),
        )


def _column_entry(name: str, column_type: str, is_nullable: bool, default_value: Any,
                  is_primary_key: bool = False) -> Dict[str, Any]:
    return {
        "name": name,
        "type": column_type,
        "is_nullable": is_nullable,
        "default_value": default_value,
        "is_primary_key": is_primary_key,
    }


def validate_table_filters(tables: Optional[Sequence[str]]) -> Optional[Set[str]]:
    """
    Normalize a table filter to a set of lower-case names.

    Raises:
        QueryValidationError: If the filter is empty or has an invalid name
    """
    if tables is None:
        return None

    if len(tables) == 0:
        raise QueryValidationError("Tables filter must not be empty when provided")

    normalized = set()
    for table in tables:
        trimmed = table.strip() if isinstance(table, str) else ""
        if not QUALIFIED_IDENTIFIER_PATTERN.fullmatch(trimmed):
            raise QueryValidationError(
                f'Invalid table filter "{table}". Table filter contains invalid characters. '
                f"Use alphanumeric, underscore, and optional schema qualification."
            )
        normalized.add(trimmed.lower())
    return normalized


def filter_schema_tables(schema: DatabaseSchema, table_filters: Optional[Set[str]]) -> DatabaseSchema:
    if not table_filters:
        return schema

    tables = [
        table for table in schema.tables
        if table.name.lower() in table_filters or table.qualified_name.lower() in table_filters
    ]
    return DatabaseSchema(vendor=schema.vendor, generated_at=schema.generated_at, tables=tables)


def summarize_schema(schema: DatabaseSchema) -> Dict[str, int]:
    """Counts reported alongside a schema snapshot."""
    return {
        "tableCount": len(schema.tables),
        "columnCount": sum(len(table.columns) for table in schema.tables),
        "foreignKeyCount": sum(len(table.foreign_keys) for table in schema.tables),
        "indexCount": sum(len(table.indexes) for table in schema.tables),
    }


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SchemaInspector:
    """
    Database schema inspector with a shared TTL cache.

    When no `cache_key` is given the inspector never reads or writes the cache.
    """

    def __init__(
        self,
        manager,
        vendor,
        cache_ttl_ms: float = DEFAULT_SCHEMA_TTL_MS,
        cache_key: Optional[str] = None,
        cache: Optional[SchemaCache] = None,
        now: Callable[[], str] = _utc_now_iso,
    ):
        """
        Initialize the schema inspector.

        Args:
            manager: Connected ConnectionManager (or any executor with `vendor` and `execute`)
            vendor: Database vendor
            cache_ttl_ms: Cache TTL in milliseconds; 0 disables caching
            cache_key: Key identifying this database in the cache
            cache: Cache instance (defaults to the process-wide cache)
            now: Returns the ISO-8601 timestamp stamped on snapshots
        """
        self.manager = manager
        self.vendor = DatabaseVendor(vendor)
        self.cache_ttl_ms = cache_ttl_ms
        self.cache_key = cache_key
        self.cache = cache if cache is not None else _shared_cache
        self._now = now
        self._executor = QueryExecutor(manager)

    @staticmethod
    def clear_cache(cache_key: Optional[str] = None, vendor: Optional[str] = None) -> None:
        """
        Evict entries from the shared cache.

        With `cache_key` one entry is evicted, with `vendor` every entry for that
        vendor, and with neither the whole cache.
        """
        if cache_key:
            _shared_cache.delete(cache_key)
        elif vendor:
            _shared_cache.invalidate(CacheKeyGenerator.vendor_pattern(DatabaseVendor(vendor).value))
        else:
            _shared_cache.clear()

    @staticmethod
    def configure_cache(max_size: int) -> None:
        """Set the entry limit of the shared cache."""
        _shared_cache.resize(max_size)

    def invalidate_cache(self) -> None:
        if self.cache_key:
            self.cache.delete(self.cache_key)

    def inspect(self, tables: Optional[Sequence[str]] = None, refresh_cache: bool = False) -> DatabaseSchema:
        """
        Return a schema snapshot, optionally restricted to some tables.

        Args:
            tables: Bare or `schema.table` names to keep (case-insensitive)
            refresh_cache: Skip the cache read and introspect again

        Returns:
            DatabaseSchema
        """
        table_filters = validate_table_filters(tables)

        if not refresh_cache and self.cache_key and self.cache_ttl_ms > 0:
            cached = self.cache.get(self.cache_key)
            if cached is not None:
                logger.debug(f"Schema cache hit for {self.vendor.value}")
                return filter_schema_tables(cached, table_filters)

        logger.info(f"Inspecting {self.vendor.value} schema")
        schema = self._inspect_from_database()

        if self.cache_key and self.cache_ttl_ms > 0:
            self.cache.set(self.cache_key, schema, self.cache_ttl_ms)

        logger.info(
            f"Inspected {len(schema.tables)} tables from {self.vendor.value}",
            extra={"vendor": self.vendor.value, "table_count": len(schema.tables)},
        )
        return filter_schema_tables(schema, table_filters)

    def _inspect_from_database(self) -> DatabaseSchema:
        inspectors = {
            DatabaseVendor.POSTGRESQL: self._inspect_postgresql,
            DatabaseVendor.MYSQL: self._inspect_mysql,
            DatabaseVendor.SQLITE: self._inspect_sqlite,
        }
        builders = inspectors[self.vendor]()
        tables = sorted((builder.build(self.vendor) for builder in builders), key=lambda t: t.qualified_name)
        return DatabaseSchema(vendor=self.vendor.value, generated_at=self._now(), tables=tables)

    def _rows(self, sql: str) -> List[Row]:
        return self._executor.execute_query(BuiltQuery(template=sql)).rows

    def _lookup(self, table_map: Dict[str, _TableBuilder], row: Row) -> Optional[_TableBuilder]:
        name = to_str(row.get("table_name"))
        schema = to_optional_str(row.get("schema_name"))
        return table_map.get(f"{schema}.{name}" if schema else name)

    def _information_schema(
        self,
        tables_query: str,
        columns_query: str,
        primary_keys_query: str,
        foreign_keys_query: str,
    ) -> Dict[str, _TableBuilder]:
        table_map: Dict[str, _TableBuilder] = {}
        for row in self._rows(tables_query):
            builder = _TableBuilder(name=to_str(row.get("table_name")), schema=to_optional_str(row.get("schema_name")))
            table_map[builder.key] = builder

        for row in self._rows(columns_query):
            table = self._lookup(table_map, row)
            if table is None:
                continue
            table.columns.append(_column_entry(
                to_str(row.get("column_name")),
                to_str(row.get("data_type")),
                to_bool(row.get("is_nullable")),
                row.get("column_default"),
            ))

        for row in self._rows(primary_keys_query):
            table = self._lookup(table_map, row)
            if table is not None:
                table.mark_primary_key(to_str(row.get("column_name")))

        for row in self._rows(foreign_keys_query):
            table = self._lookup(table_map, row)
            if table is None:
                continue
            table.foreign_keys.append(ForeignKeySchema(
                name=to_optional_str(row.get("constraint_name")),
                column=to_str(row.get("column_name")),
                referenced_schema=to_optional_str(row.get("referenced_schema_name")),
                referenced_table=to_str(row.get("referenced_table_name")),
                referenced_column=to_str(row.get("referenced_column_name")),
            ))

        return table_map

    def _apply_index_rows(
        self,
        table_map: Dict[str, _TableBuilder],
        rows: List[Row],
        position_field: str,
        is_unique: Callable[[Row], bool],
    ) -> None:
        grouped: Dict[Tuple[str, str], Dict[str, Any]] = {}
        for row in rows:
            table = self._lookup(table_map, row)
            index_name = to_str(row.get("index_name"))
            if table is None or not index_name:
                continue
            entry = grouped.setdefault(
                (table.key, index_name),
                {"table": table, "unique": is_unique(row), "columns": []},
            )
            entry["columns"].append((to_int(row.get(position_field)), to_str(row.get("column_name"))))

        for (_, index_name), entry in grouped.items():
            columns = [column for _, column in sorted(entry["columns"], key=lambda item: item[0])]
            entry["table"].indexes.append(IndexSchema(name=index_name, columns=columns, is_unique=entry["unique"]))

    def _inspect_postgresql(self) -> List[_TableBuilder]:
        table_map = self._information_schema(
            POSTGRESQL_TABLES_QUERY,
            POSTGRESQL_COLUMNS_QUERY,
            POSTGRESQL_PRIMARY_KEYS_QUERY,
            POSTGRESQL_FOREIGN_KEYS_QUERY,
        )
        self._apply_index_rows(
            table_map,
            self._rows(POSTGRESQL_INDEXES_QUERY),
            "column_position",
            lambda row: to_bool(row.get("is_unique")),
        )
        return list(table_map.values())

    def _inspect_mysql(self) -> List[_TableBuilder]:
        table_map = self._information_schema(
            MYSQL_TABLES_QUERY,
            MYSQL_COLUMNS_QUERY,
            MYSQL_PRIMARY_KEYS_QUERY,
            MYSQL_FOREIGN_KEYS_QUERY,
        )
        self._apply_index_rows(
            table_map,
            self._rows(MYSQL_INDEXES_QUERY),
            "seq_in_index",
            lambda row: not to_bool(row.get("non_unique")),
        )
        return list(table_map.values())

    def inspect_sqlite_table(self, table_name: str) -> DatabaseSchema:
        """
        Snapshot of one SQLite table holding only its columns and primary key.

        A `schema.table` name reads the table from that attached database.
        A table that does not exist yields a snapshot with no tables.
        """
        schema_name, _, name = table_name.rpartition(".")
        table = _TableBuilder(name=name, schema=schema_name or None)
        self._read_sqlite_columns(table)
        tables = [table.build(self.vendor)] if table.columns else []
        return DatabaseSchema(vendor=self.vendor.value, generated_at=self._now(), tables=tables)

    def _read_sqlite_columns(self, table: _TableBuilder) -> None:
        prefix = f'"{table.schema}".' if table.schema else ""
        primary_key_positions = []
        for row in self._rows(f"PRAGMA {prefix}table_info('{escape_sqlite_literal(table.name)}')"):
            position = to_int(row.get("pk"))
            column_name = to_str(row.get("name"))
            if position > 0:
                primary_key_positions.append((position, column_name))
            table.columns.append(_column_entry(
                column_name,
                to_str(row.get("type")),
                not to_bool(row.get("notnull")),
                row.get("dflt_value"),
                position > 0,
            ))
        table.primary_key = [column for _, column in sorted(primary_key_positions)]

    def _inspect_sqlite(self) -> List[_TableBuilder]:
        builders = []
        for table_row in self._rows(SQLITE_TABLES_QUERY):
            table = _TableBuilder(name=to_str(table_row.get("table_name")))
            literal = escape_sqlite_literal(table.name)
            self._read_sqlite_columns(table)

            for row in self._rows(f"PRAGMA foreign_key_list('{literal}')"):
                table.foreign_keys.append(ForeignKeySchema(
                    column=to_str(row.get("from")),
                    referenced_table=to_str(row.get("table")),
                    referenced_column=to_str(row.get("to")),
                ))

            for index_row in self._rows(f"PRAGMA index_list('{literal}')"):
                index_name = to_str(index_row.get("name"))
                if not index_name or to_str(index_row.get("origin")) == "pk":
                    continue
                info_rows = self._rows(f"PRAGMA index_info('{escape_sqlite_literal(index_name)}')")
                columns = [
                    to_str(row.get("name"))
                    for row in sorted(info_rows, key=lambda r: to_int(r.get("seqno")))
                ]
                table.indexes.append(IndexSchema(
                    name=index_name,
                    columns=columns,
                    is_unique=to_bool(index_row.get("unique")),
                ))

            builders.append(table)
        return builders
