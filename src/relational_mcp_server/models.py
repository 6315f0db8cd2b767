"""
Data models for Relational MCP Server.

This module contains the value types shared by the query builder, the executors,
the schema inspector and the schema differ. Schema snapshots serialize to the
camelCase JSON document used for export/import.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple


class DatabaseVendor(str, Enum):
    """Supported relational database vendors."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class WhereOperator(str, Enum):
    """Comparison operators accepted in WHERE conditions."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    LIKE = "like"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"


class TypeCategory(str, Enum):
    """Semantic category a raw column type maps to."""

    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    BYTES = "bytes"
    UNKNOWN = "unknown"


class _Unset:
    """Marker for a WHERE value that was not supplied at all."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class WhereCondition:
    """A single `column <operator> value` filter."""

    column: str
    operator: str
    value: Any = UNSET

    @property
    def has_value(self) -> bool:
        return self.value is not UNSET

    def to_dict(self) -> Dict[str, Any]:
        data = {'column': self.column, 'operator': self.operator}
        if self.has_value:
            data['value'] = list(self.value) if isinstance(self.value, tuple) else self.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WhereCondition':
        """Create instance from dictionary. A missing `value` key stays UNSET."""
        return cls(
            column=data.get('column'),
            operator=data.get('operator'),
            value=data.get('value', UNSET),
        )


@dataclass(frozen=True)
class OrderBy:
    """ORDER BY entry."""

    column: str
    direction: str = "asc"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderBy':
        return cls(column=data.get('column'), direction=data.get('direction', 'asc'))


@dataclass(frozen=True)
class OptimisticLock:
    """Version check appended to an UPDATE's WHERE clause."""

    column: str
    expected_value: Any

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OptimisticLock':
        return cls(
            column=data.get('column'),
            expected_value=data.get('expectedValue', data.get('expected_value')),
        )


@dataclass(frozen=True)
class SoftDelete:
    """Soft-delete settings: the column to stamp and an optional explicit value."""

    column: str = "deleted_at"
    value: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SoftDelete':
        return cls(column=data.get('column') or "deleted_at", value=data.get('value'))


@dataclass(frozen=True)
class BuiltQuery:
    """A parameterized statement. User data only ever lives in `parameters`."""

    template: str
    parameters: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {'template': self.template, 'parameters': list(self.parameters)}


@dataclass(frozen=True)
class BuiltInsertQuery:
    """INSERT statement plus the metadata the executor needs to derive ids."""

    query: BuiltQuery
    rows: Tuple[Dict[str, Any], ...]
    returning_mode: str
    id_column: str
    supports_returning: bool


@dataclass(frozen=True)
class BuiltUpdateQuery:
    """UPDATE statement plus guard metadata."""

    query: BuiltQuery
    where_applied: bool
    uses_optimistic_lock: bool


@dataclass(frozen=True)
class BuiltDeleteQuery:
    """DELETE (or soft-delete UPDATE) statement plus guard metadata."""

    query: BuiltQuery
    where_applied: bool
    uses_soft_delete: bool


@dataclass
class QueryResult:
    """Result of a SQL statement execution."""

    rows: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: float
    affected_rows: int = 0
    columns: List[str] = field(default_factory=list)
    inserted_ids: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for MCP response formatting."""
        return asdict(self)

    def get_formatted_execution_time(self) -> str:
        """Get formatted execution time string."""
        if self.execution_time_ms < 1000:
            return f"{self.execution_time_ms:.2f}ms"
        else:
            return f"{self.execution_time_ms / 1000:.2f}s"


@dataclass(frozen=True)
class MappedType:
    """Outcome of mapping a vendor column type to a semantic category."""

    category: TypeCategory
    raw_type: str
    normalized_type: str
    nullable: bool = False
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'category': self.category.value,
            'rawType': self.raw_type,
            'normalizedType': self.normalized_type,
            'nullable': self.nullable,
        }
        if self.note:
            data['note'] = self.note
        return data


@dataclass(frozen=True)
class ColumnSchema:
    """Information about a table column."""

    name: str
    type: str
    is_nullable: bool
    default_value: Any = None
    is_primary_key: bool = False
    semantic_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'type': self.type,
            'isNullable': self.is_nullable,
            'defaultValue': self.default_value,
            'isPrimaryKey': self.is_primary_key,
        }
        if self.semantic_type is not None:
            data['semanticType'] = self.semantic_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnSchema':
        return cls(
            name=data['name'],
            type=data['type'],
            is_nullable=bool(data.get('isNullable', True)),
            default_value=data.get('defaultValue'),
            is_primary_key=bool(data.get('isPrimaryKey', False)),
            semantic_type=data.get('semanticType'),
        )


@dataclass(frozen=True)
class ForeignKeySchema:
    """A single-column foreign key reference."""

    column: str
    referenced_table: str
    referenced_column: str
    name: Optional[str] = None
    referenced_schema: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'column': self.column,
            'referencedTable': self.referenced_table,
            'referencedColumn': self.referenced_column,
        }
        if self.name is not None:
            data['name'] = self.name
        if self.referenced_schema is not None:
            data['referencedSchema'] = self.referenced_schema
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForeignKeySchema':
        return cls(
            column=data['column'],
            referenced_table=data['referencedTable'],
            referenced_column=data['referencedColumn'],
            name=data.get('name'),
            referenced_schema=data.get('referencedSchema'),
        )


@dataclass(frozen=True)
class IndexSchema:
    """Information about a secondary index."""

    name: str
    columns: List[str]
    is_unique: bool

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'columns': list(self.columns), 'isUnique': self.is_unique}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IndexSchema':
        return cls(
            name=data['name'],
            columns=list(data.get('columns', [])),
            is_unique=bool(data.get('isUnique', False)),
        )


@dataclass(frozen=True)
class TableSchema:
    """Complete schema information for a table."""

    name: str
    columns: List[ColumnSchema]
    primary_key: List[str]
    foreign_keys: List[ForeignKeySchema] = field(default_factory=list)
    indexes: List[IndexSchema] = field(default_factory=list)
    schema: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        """Look up a column by name, case-insensitively."""
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'columns': [col.to_dict() for col in self.columns],
            'primaryKey': list(self.primary_key),
            'foreignKeys': [fk.to_dict() for fk in self.foreign_keys],
            'indexes': [idx.to_dict() for idx in self.indexes],
        }
        if self.schema is not None:
            data['schema'] = self.schema
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TableSchema':
        return cls(
            name=data['name'],
            columns=[ColumnSchema.from_dict(col) for col in data['columns']],
            primary_key=list(data['primaryKey']),
            foreign_keys=[ForeignKeySchema.from_dict(fk) for fk in data.get('foreignKeys', [])],
            indexes=[IndexSchema.from_dict(idx) for idx in data.get('indexes', [])],
            schema=data.get('schema'),
        )


@dataclass(frozen=True)
class DatabaseSchema:
    """Point-in-time structural description of a database."""

    vendor: str
    generated_at: str
    tables: List[TableSchema]

    def find_table(self, name: str) -> Optional[TableSchema]:
        """Find a table by bare or `schema.table` name, case-insensitively."""
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered or table.qualified_name.lower() == lowered:
                return table
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vendor': self.vendor,
            'generatedAt': self.generated_at,
            'tables': [table.to_dict() for table in self.tables],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseSchema':
        return cls(
            vendor=data['vendor'],
            generated_at=data['generatedAt'],
            tables=[TableSchema.from_dict(table) for table in data['tables']],
        )


@dataclass(frozen=True)
class ColumnChange:
    """One property that differs between two versions of a column."""

    property: str
    before: Any
    after: Any

    def to_dict(self) -> Dict[str, Any]:
        return {'property': self.property, 'before': self.before, 'after': self.after}


@dataclass(frozen=True)
class ColumnDiff:
    """Column-level difference: added, removed or changed."""

    column: str
    type: str
    changes: List[ColumnChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {'column': self.column, 'type': self.type}
        if self.changes:
            data['changes'] = [change.to_dict() for change in self.changes]
        return data


@dataclass(frozen=True)
class TableDiff:
    """Table-level difference: added, removed or changed."""

    table: str
    type: str
    columns: List[ColumnDiff] = field(default_factory=list)
    primary_key_changed: Optional[Dict[str, List[str]]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'table': self.table, 'type': self.type}
        if self.type == 'changed':
            data['columns'] = [col.to_dict() for col in self.columns]
        if self.primary_key_changed is not None:
            data['primaryKeyChanged'] = {
                'before': list(self.primary_key_changed['before']),
                'after': list(self.primary_key_changed['after']),
            }
        return data


@dataclass(frozen=True)
class SchemaDiffSummary:
    """Aggregate counts across all table diffs."""

    tables_added: int = 0
    tables_removed: int = 0
    tables_changed: int = 0
    columns_added: int = 0
    columns_removed: int = 0
    columns_changed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'tablesAdded': self.tables_added,
            'tablesRemoved': self.tables_removed,
            'tablesChanged': self.tables_changed,
            'columnsAdded': self.columns_added,
            'columnsRemoved': self.columns_removed,
            'columnsChanged': self.columns_changed,
        }


@dataclass(frozen=True)
class SchemaDiff:
    """Structured difference between two schema snapshots."""

    identical: bool
    tables: List[TableDiff]
    summary: SchemaDiffSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identical': self.identical,
            'tables': [table.to_dict() for table in self.tables],
            'summary': self.summary.to_dict(),
        }


@dataclass
class ValidationResult:
    """Outcome of a schema validation check."""

    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Type aliases for better code readability
TableList = List[TableSchema]
ColumnList = List[ColumnSchema]
IndexList = List[IndexSchema]
