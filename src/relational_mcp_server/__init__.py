"""Relational MCP Server package."""

__version__ = "0.1.0"

# Export the main building blocks for easy importing
from .connection_manager import ConnectionManager
from .models import (
    DatabaseVendor,
    WhereCondition,
    BuiltQuery,
    QueryResult,
    ColumnSchema,
    TableSchema,
    DatabaseSchema,
    SchemaDiff,
    ValidationResult,
)
from .query_builder import (
    build_select_query,
    build_insert_query,
    build_update_query,
    build_delete_query,
)
from .query_executor import QueryExecutor
from .schema_diff import diff_schemas, export_schema_to_json, import_schema_from_json
from .schema_inspector import SchemaInspector
from .schema_validator import validate_column_types, validate_columns_exist, validate_table_exists
from .transaction import with_transaction

__all__ = [
    "ConnectionManager",
    "DatabaseVendor",
    "WhereCondition",
    "BuiltQuery",
    "QueryResult",
    "ColumnSchema",
    "TableSchema",
    "DatabaseSchema",
    "SchemaDiff",
    "ValidationResult",
    "build_select_query",
    "build_insert_query",
    "build_update_query",
    "build_delete_query",
    "QueryExecutor",
    "diff_schemas",
    "export_schema_to_json",
    "import_schema_from_json",
    "SchemaInspector",
    "validate_table_exists",
    "validate_columns_exist",
    "validate_column_types",
    "with_transaction",
]
