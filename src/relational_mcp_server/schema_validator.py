"""Checks of table names, column names and column types against a schema snapshot."""

import logging
from typing import Dict, List, Optional

from .models import DatabaseSchema, TableSchema, ValidationResult

logger = logging.getLogger(__name__)


def find_table(schema: DatabaseSchema, table_name: str) -> Optional[TableSchema]:
    """Find a table by bare name, or by `schema.table` when qualified."""
    parts = table_name.split(".")
    if len(parts) == 2:
        schema_name, name = parts[0].lower(), parts[1].lower()
        for table in schema.tables:
            if table.name.lower() == name and (table.schema or "").lower() == schema_name:
                return table
        return None

    lowered = table_name.lower()
    for table in schema.tables:
        if table.name.lower() == lowered:
            return table
    return None


def validate_table_exists(schema: DatabaseSchema, table_name: str) -> ValidationResult:
    errors: List[str] = []

    if not isinstance(table_name, str) or not table_name:
        return ValidationResult(valid=False, errors=["Table name must be a non-empty string"])

    if find_table(schema, table_name) is None:
        available = ", ".join(table.qualified_name for table in schema.tables)
        errors.append(f'Table "{table_name}" does not exist. Available tables: {available or "(none)"}')

    logger.debug("Table existence validation", extra={"table": table_name, "valid": not errors})
    return ValidationResult(valid=not errors, errors=errors)


def validate_columns_exist(schema: DatabaseSchema, table_name: str, column_names: List[str]) -> ValidationResult:
    """
    Check that every named column exists in the table (case-insensitive).

    Returns:
        ValidationResult with one error per missing column
    """
    table = find_table(schema, table_name)
    if table is None:
        return ValidationResult(valid=False, errors=[f'Table "{table_name}" does not exist'])

    existing = {column.name.lower() for column in table.columns}
    available = ", ".join(column.name for column in table.columns)
    errors = [
        f'Column "{name}" does not exist in table "{table_name}". Available columns: {available}'
        for name in column_names
        if name.lower() not in existing
    ]

    logger.debug(
        "Column existence validation",
        extra={"table": table_name, "column_count": len(column_names), "valid": not errors},
    )
    return ValidationResult(valid=not errors, errors=errors)


def validate_column_types(
    schema: DatabaseSchema, table_name: str, expected_types: Dict[str, str]
) -> ValidationResult:
    """
    Check column types by case-insensitive substring match in either direction,
    so `varchar` matches `varchar(255)` and `character varying` matches `varying`.
    """
    table = find_table(schema, table_name)
    if table is None:
        return ValidationResult(valid=False, errors=[f'Table "{table_name}" does not exist'])

    errors = []
    for column_name, expected_type in expected_types.items():
        column = table.get_column(column_name)
        if column is None:
            errors.append(f'Column "{column_name}" does not exist in table "{table_name}"')
            continue

        actual = column.type.lower()
        expected = expected_type.lower()
        if expected not in actual and actual not in expected:
            errors.append(
                f'Column "{column_name}" has type "{column.type}", expected type containing "{expected_type}"'
            )

    logger.debug(
        "Column type validation",
        extra={"table": table_name, "type_checks": len(expected_types), "valid": not errors},
    )
    return ValidationResult(valid=not errors, errors=errors)
