"""
Schema diffing and JSON snapshot serialization.

Tables are matched by their bare name, case-insensitively. Two tables with the
same name in different schemas (`public.users` and `reporting.users`) are
treated as the same table.
"""

import json
import logging
from typing import Any, Dict, List

from .exceptions import SchemaImportError
from .models import (
    ColumnChange,
    ColumnDiff,
    ColumnSchema,
    DatabaseSchema,
    SchemaDiff,
    SchemaDiffSummary,
    TableDiff,
    TableSchema,
)

logger = logging.getLogger(__name__)


def _table_map(tables: List[TableSchema]) -> Dict[str, TableSchema]:
    return {table.name.lower(): table for table in tables}


def _column_map(columns: List[ColumnSchema]) -> Dict[str, ColumnSchema]:
    return {column.name.lower(): column for column in columns}


def _column_changes(before: ColumnSchema, after: ColumnSchema) -> List[ColumnChange]:
    changes = []
    if before.type.lower() != after.type.lower():
        changes.append(ColumnChange("type", before.type, after.type))
    if before.is_nullable != after.is_nullable:
        changes.append(ColumnChange("isNullable", before.is_nullable, after.is_nullable))
    if str(before.default_value) != str(after.default_value):
        changes.append(ColumnChange("defaultValue", before.default_value, after.default_value))
    if before.is_primary_key != after.is_primary_key:
        changes.append(ColumnChange("isPrimaryKey", before.is_primary_key, after.is_primary_key))
    return changes


def diff_columns(before: List[ColumnSchema], after: List[ColumnSchema]) -> List[ColumnDiff]:
    """Removed columns first, then added, then changed."""
    before_map = _column_map(before)
    after_map = _column_map(after)

    diffs = [ColumnDiff(column.name, "removed") for key, column in before_map.items() if key not in after_map]
    diffs.extend(ColumnDiff(column.name, "added") for key, column in after_map.items() if key not in before_map)

    for key, before_column in before_map.items():
        after_column = after_map.get(key)
        if after_column is None:
            continue
        changes = _column_changes(before_column, after_column)
        if changes:
            diffs.append(ColumnDiff(before_column.name, "changed", changes))

    return diffs


def diff_schemas(before: DatabaseSchema, after: DatabaseSchema) -> SchemaDiff:
    """
    Compare two schema snapshots.

    Args:
        before: Baseline snapshot
        after: Snapshot compared against the baseline

    Returns:
        SchemaDiff with removed, added and changed tables in that order
    """
    before_map = _table_map(before.tables)
    after_map = _table_map(after.tables)

    table_diffs = [
        TableDiff(table.qualified_name, "removed") for key, table in before_map.items() if key not in after_map
    ]
    table_diffs.extend(
        TableDiff(table.qualified_name, "added") for key, table in after_map.items() if key not in before_map
    )

    columns_added = columns_removed = columns_changed = 0

    for key, before_table in before_map.items():
        after_table = after_map.get(key)
        if after_table is None:
            continue

        column_diffs = diff_columns(before_table.columns, after_table.columns)
        primary_key_changed = list(before_table.primary_key) != list(after_table.primary_key)

        if column_diffs or primary_key_changed:
            table_diffs.append(TableDiff(
                table=before_table.qualified_name,
                type="changed",
                columns=column_diffs,
                primary_key_changed=(
                    {"before": list(before_table.primary_key), "after": list(after_table.primary_key)}
                    if primary_key_changed else None
                ),
            ))

        for column_diff in column_diffs:
            if column_diff.type == "added":
                columns_added += 1
            elif column_diff.type == "removed":
                columns_removed += 1
            else:
                columns_changed += 1

    summary = SchemaDiffSummary(
        tables_added=sum(1 for diff in table_diffs if diff.type == "added"),
        tables_removed=sum(1 for diff in table_diffs if diff.type == "removed"),
        tables_changed=sum(1 for diff in table_diffs if diff.type == "changed"),
        columns_added=columns_added,
        columns_removed=columns_removed,
        columns_changed=columns_changed,
    )
    identical = not table_diffs

    logger.debug(
        "Schema diff computed",
        extra={
            "identical": identical,
            "tables_added": summary.tables_added,
            "tables_removed": summary.tables_removed,
            "tables_changed": summary.tables_changed,
        },
    )
    return SchemaDiff(identical=identical, tables=table_diffs, summary=summary)


def export_schema_to_json(schema: DatabaseSchema) -> str:
    """Serialize a snapshot deterministically (sorted keys, 2-space indent)."""
    return json.dumps(schema.to_dict(), sort_keys=True, indent=2)


def _require_string(container: Dict[str, Any], key: str, message: str) -> None:
    value = container.get(key)
    if not isinstance(value, str) or not value:
        raise SchemaImportError(message)


def _require_list(container: Dict[str, Any], key: str, message: str) -> None:
    if not isinstance(container.get(key), list):
        raise SchemaImportError(message)


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _validate_table_keys(table: Dict[str, Any]) -> None:
    name = table["name"]
    column_names = {column["name"] for column in table["columns"]}

    if table.get("schema") is not None and not isinstance(table["schema"], str):
        raise SchemaImportError(f'Invalid schema JSON: table "{name}" has a non-string "schema"')

    for key_column in table["primaryKey"]:
        if not isinstance(key_column, str) or key_column not in column_names:
            raise SchemaImportError(
                f'Invalid schema JSON: table "{name}" primary key names unknown column {json.dumps(key_column)}'
            )

    foreign_keys = table.get("foreignKeys", [])
    if not isinstance(foreign_keys, list):
        raise SchemaImportError(f'Invalid schema JSON: table "{name}" has an invalid "foreignKeys" array')
    for foreign_key in foreign_keys:
        if not isinstance(foreign_key, dict):
            raise SchemaImportError(f'Invalid schema JSON: table "{name}" has a foreign key that is not an object')
        for field_name in ("column", "referencedTable", "referencedColumn"):
            _require_string(
                foreign_key, field_name,
                f'Invalid schema JSON: table "{name}" has a foreign key without a "{field_name}" string',
            )

    indexes = table.get("indexes", [])
    if not isinstance(indexes, list):
        raise SchemaImportError(f'Invalid schema JSON: table "{name}" has an invalid "indexes" array')
    for index in indexes:
        if not isinstance(index, dict):
            raise SchemaImportError(f'Invalid schema JSON: table "{name}" has an index that is not an object')
        _require_string(index, "name", f'Invalid schema JSON: table "{name}" has an index without a "name" string')
        if not _is_string_list(index.get("columns")):
            raise SchemaImportError(
                f'Invalid schema JSON: index "{index["name"]}" on table "{name}" needs a "columns" array of names'
            )


def import_schema_from_json(text: str) -> DatabaseSchema:
    """
    Parse a snapshot produced by export_schema_to_json.

    Raises:
        SchemaImportError: Naming the first missing or invalid field
    """
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as e:
        raise SchemaImportError(f"Invalid schema JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise SchemaImportError("Invalid schema JSON: expected an object")

    _require_string(parsed, "vendor", 'Invalid schema JSON: missing or invalid "vendor" field')
    _require_list(parsed, "tables", 'Invalid schema JSON: missing or invalid "tables" array')
    _require_string(parsed, "generatedAt", 'Invalid schema JSON: missing or invalid "generatedAt" field')

    for table in parsed["tables"]:
        if not isinstance(table, dict):
            raise SchemaImportError("Invalid schema JSON: each table must be an object")
        _require_string(table, "name", 'Invalid schema JSON: each table must have a "name" string')
        name = table["name"]
        _require_list(table, "columns", f'Invalid schema JSON: table "{name}" missing "columns" array')
        _require_list(table, "primaryKey", f'Invalid schema JSON: table "{name}" missing "primaryKey" array')

        for column in table["columns"]:
            if not isinstance(column, dict):
                raise SchemaImportError(f'Invalid schema JSON: table "{name}" has a column that is not an object')
            _require_string(column, "name", f'Invalid schema JSON: table "{name}" has a column without a "name"')
            _require_string(
                column, "type",
                f'Invalid schema JSON: column "{name}.{column["name"]}" missing "type"',
            )

        _validate_table_keys(table)

    schema = DatabaseSchema.from_dict(parsed)
    logger.debug(
        "Schema imported from JSON",
        extra={"vendor": schema.vendor, "table_count": len(schema.tables)},
    )
    return schema
