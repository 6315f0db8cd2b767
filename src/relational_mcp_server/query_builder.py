"""
Parameterized SQL construction for structured CRUD requests.

Identifiers are validated and quoted for the vendor; every user-supplied value
is bound through the driver's placeholder, never written into the template.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .dialects import get_dialect
from .exceptions import InvalidConditionError, QueryValidationError
from .identifiers import (
    quote_identifier,
    quote_qualified_identifier,
    validate_identifier,
    validate_qualified_identifier,
)
from .models import (
    UNSET,
    BuiltDeleteQuery,
    BuiltInsertQuery,
    BuiltQuery,
    BuiltUpdateQuery,
    DatabaseVendor,
    OptimisticLock,
    OrderBy,
    SoftDelete,
    WhereCondition,
    WhereOperator,
)

logger = logging.getLogger(__name__)

DEFAULT_ID_COLUMN = "id"
RETURNING_MODES = ("none", "id", "row")

_COMPARISON_SQL = {
    WhereOperator.EQ: "=",
    WhereOperator.NE: "!=",
    WhereOperator.GT: ">",
    WhereOperator.LT: "<",
    WhereOperator.GTE: ">=",
    WhereOperator.LTE: "<=",
}

_OPERATOR_LABELS = {
    WhereOperator.EQ: "EQ",
    WhereOperator.NE: "NE",
    WhereOperator.GT: "GT",
    WhereOperator.LT: "LT",
    WhereOperator.GTE: "GTE",
    WhereOperator.LTE: "LTE",
    WhereOperator.LIKE: "LIKE",
    WhereOperator.IN: "IN",
    WhereOperator.NOT_IN: "NOT IN",
    WhereOperator.IS_NULL: "IS NULL",
    WhereOperator.IS_NOT_NULL: "IS NOT NULL",
}

ConditionInput = Union[WhereCondition, Mapping[str, Any]]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _as_condition(condition: ConditionInput) -> WhereCondition:
    if isinstance(condition, WhereCondition):
        return condition
    if isinstance(condition, Mapping):
        return WhereCondition.from_dict(condition)
    raise InvalidConditionError("WHERE condition must be an object with column and operator")


def compile_condition(condition: ConditionInput, vendor) -> Tuple[str, List[Any]]:
    """
    Compile one WHERE condition to a SQL fragment and its bound values.

    Raises:
        InvalidIdentifierError: If the column name is invalid
        InvalidConditionError: If the operator/value combination is invalid
    """
    condition = _as_condition(condition)
    column_name = condition.column
    column = quote_identifier(column_name, vendor, "WHERE column")
    placeholder = get_dialect(vendor).placeholder

    try:
        operator = WhereOperator(condition.operator)
    except ValueError:
        raise InvalidConditionError(f"Unsupported operator '{condition.operator}' for column {column_name}")

    label = _OPERATOR_LABELS[operator]
    value = condition.value

    if operator in (WhereOperator.IS_NULL, WhereOperator.IS_NOT_NULL):
        if condition.has_value:
            raise InvalidConditionError(f"{label} operator must not include value for column {column_name}")
        return f"{column} {label}", []

    if operator in (WhereOperator.IN, WhereOperator.NOT_IN):
        if not isinstance(value, (list, tuple)) or len(value) == 0:
            raise InvalidConditionError(f"{label} operator requires a non-empty array value for column {column_name}")
        for item in value:
            if not (isinstance(item, str) or _is_number(item)):
                raise InvalidConditionError(
                    f"{label} operator values must be strings or numbers for column {column_name}"
                )
        placeholders = ", ".join([placeholder] * len(value))
        return f"{column} {label} ({placeholders})", list(value)

    if operator in (WhereOperator.EQ, WhereOperator.NE):
        if value is UNSET:
            raise InvalidConditionError(f"{label} operator requires a value for column {column_name}")
        if value is None:
            raise InvalidConditionError("null is only allowed with isNull/isNotNull operators")
        if not _is_scalar(value):
            raise InvalidConditionError(f"{label} operator requires a scalar value for column {column_name}")
        return f"{column} {_COMPARISON_SQL[operator]} {placeholder}", [value]

    if operator == WhereOperator.LIKE:
        if not isinstance(value, str):
            raise InvalidConditionError(f"LIKE operator requires a string value for column {column_name}")
        return f"{column} LIKE {placeholder}", [value]

    if value is None:
        raise InvalidConditionError("null is only allowed with isNull/isNotNull operators")
    if not (isinstance(value, str) or _is_number(value)):
        raise InvalidConditionError(f"{label} operator requires a string or number value for column {column_name}")
    return f"{column} {_COMPARISON_SQL[operator]} {placeholder}", [value]


def compile_where(conditions: Optional[Sequence[ConditionInput]], vendor) -> Tuple[List[str], List[Any]]:
    """Compile a list of conditions joined later with AND."""
    fragments: List[str] = []
    parameters: List[Any] = []
    for condition in conditions or []:
        fragment, values = compile_condition(condition, vendor)
        fragments.append(fragment)
        parameters.extend(values)
    return fragments, parameters


def _non_negative_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise QueryValidationError(f"{label} must be a non-negative integer")
    return value


def build_select_query(
    table: str,
    vendor,
    columns: Optional[Sequence[str]] = None,
    where: Optional[Sequence[ConditionInput]] = None,
    order_by: Optional[Sequence[Union[OrderBy, Mapping[str, Any]]]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> BuiltQuery:
    """
    Build a SELECT statement.

    Args:
        table: Table name, optionally `schema.table`
        vendor: Database vendor
        columns: Columns to project; empty or None selects `*`
        where: Conditions joined with AND
        order_by: OrderBy entries or dicts with `column` and `direction`
        limit: Bound LIMIT value
        offset: Bound OFFSET value

    Returns:
        BuiltQuery
    """
    validate_qualified_identifier(table, "Table name")
    dialect = get_dialect(vendor)
    parameters: List[Any] = []

    if columns:
        projection = ", ".join(quote_identifier(column, vendor, "SELECT column") for column in columns)
    else:
        projection = "*"

    sql = f"SELECT {projection} FROM {quote_qualified_identifier(table, vendor, 'Table name')}"

    fragments, where_params = compile_where(where, vendor)
    if fragments:
        sql += " WHERE " + " AND ".join(fragments)
        parameters.extend(where_params)

    if order_by:
        clauses = []
        for entry in order_by:
            order = entry if isinstance(entry, OrderBy) else OrderBy.from_dict(entry)
            direction = str(order.direction or "asc").lower()
            if direction not in ("asc", "desc"):
                raise QueryValidationError(f"ORDER BY direction must be 'asc' or 'desc', got '{order.direction}'")
            clauses.append(f"{quote_identifier(order.column, vendor, 'ORDER BY column')} {direction.upper()}")
        sql += " ORDER BY " + ", ".join(clauses)

    if limit is not None:
        sql += f" LIMIT {dialect.placeholder}"
        parameters.append(_non_negative_int(limit, "LIMIT"))
    elif offset is not None and dialect.unbounded_limit is not None:
        sql += f" LIMIT {dialect.unbounded_limit}"

    if offset is not None:
        sql += f" OFFSET {dialect.placeholder}"
        parameters.append(_non_negative_int(offset, "OFFSET"))

    return BuiltQuery(template=sql, parameters=tuple(parameters))


def _normalize_insert_rows(data: Any) -> List[Dict[str, Any]]:
    rows = list(data) if isinstance(data, (list, tuple)) else [data]
    if not rows:
        raise QueryValidationError("Insert data must not be an empty array")
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            raise QueryValidationError(f"Insert row at index {index} must be an object")
    return [dict(row) for row in rows]


def _ordered_columns(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(column for row in rows for column in row))


def build_insert_query(
    table: str,
    data: Any,
    vendor,
    returning: Optional[Mapping[str, Any]] = None,
) -> BuiltInsertQuery:
    """
    Build a single- or multi-row INSERT.

    Columns are the ordered union over all rows; a row that lacks a column gets
    DEFAULT in that position. `returning` accepts `{"mode": "none"|"id"|"row",
    "idColumn": ...}`.
    """
    validate_qualified_identifier(table, "Table name")
    dialect = get_dialect(vendor)
    vendor = DatabaseVendor(vendor)

    rows = _normalize_insert_rows(data)
    columns = _ordered_columns(rows)

    returning = dict(returning or {})
    mode = returning.get("mode") or "none"
    explicit_id_column = returning.get("idColumn", returning.get("id_column"))
    id_column = explicit_id_column or DEFAULT_ID_COLUMN

    if mode not in RETURNING_MODES:
        raise QueryValidationError(f'returning.mode must be one of "none", "id" or "row", got "{mode}"')

    if mode == "id":
        validate_identifier(id_column, "Returning id column")
    elif explicit_id_column:
        raise QueryValidationError('returning.idColumn can only be provided when returning.mode is "id"')

    if mode == "row" and vendor == DatabaseVendor.MYSQL:
        raise QueryValidationError('Returning full rows is not supported for mysql. Use returning.mode "id" or "none".')

    for column in columns:
        validate_identifier(column, "Insert column")

    quoted_table = quote_qualified_identifier(table, vendor, "Table name")
    parameters: List[Any] = []

    if columns:
        tuples = []
        for row in rows:
            if len(row) != len(columns) and not dialect.supports_default_keyword:
                raise QueryValidationError(
                    f"All insert rows must provide the same columns for {vendor.value}; "
                    f"missing values cannot be filled with DEFAULT"
                )
            fragments = []
            for column in columns:
                if column in row:
                    fragments.append(dialect.placeholder)
                    parameters.append(row[column])
                else:
                    fragments.append("DEFAULT")
            tuples.append(f"({', '.join(fragments)})")
        quoted_columns = ", ".join(quote_identifier(column, vendor) for column in columns)
        sql = f"INSERT INTO {quoted_table} ({quoted_columns}) VALUES {', '.join(tuples)}"
    else:
        if len(rows) > 1:
            raise QueryValidationError("Batch INSERT with only DEFAULT VALUES is not supported")
        sql = dialect.default_values_insert(quoted_table)

    if mode != "none" and dialect.supports_returning:
        if mode == "id":
            sql += f" RETURNING {quote_identifier(id_column, vendor)}"
        else:
            sql += " RETURNING *"

    return BuiltInsertQuery(
        query=BuiltQuery(template=sql, parameters=tuple(parameters)),
        rows=tuple(rows),
        returning_mode=mode,
        id_column=id_column,
        supports_returning=dialect.supports_returning,
    )


def build_update_query(
    table: str,
    data: Mapping[str, Any],
    vendor,
    where: Optional[Sequence[ConditionInput]] = None,
    allow_full_table_update: bool = False,
    optimistic_lock: Optional[Union[OptimisticLock, Mapping[str, Any]]] = None,
) -> BuiltUpdateQuery:
    """
    Build an UPDATE statement.

    Raises:
        QueryValidationError: If data is empty, the lock has no expected value, or
            there is no WHERE/lock guard and `allow_full_table_update` is False
    """
    validate_qualified_identifier(table, "Table name")
    dialect = get_dialect(vendor)

    if not isinstance(data, Mapping):
        raise QueryValidationError("Update data must be an object")
    if not data:
        raise QueryValidationError("Update data must not be empty")

    set_clauses = []
    parameters: List[Any] = []
    for column, value in data.items():
        set_clauses.append(f"{quote_identifier(column, vendor, 'Update column')} = {dialect.placeholder}")
        parameters.append(value)

    fragments, where_params = compile_where(where, vendor)
    parameters.extend(where_params)

    if optimistic_lock is not None:
        lock = optimistic_lock if isinstance(optimistic_lock, OptimisticLock) else OptimisticLock.from_dict(optimistic_lock)
        lock_column = quote_identifier(lock.column, vendor, "Optimistic lock column")
        if lock.expected_value is None:
            raise QueryValidationError("Optimistic lock expectedValue must not be empty")
        fragments.append(f"{lock_column} = {dialect.placeholder}")
        parameters.append(lock.expected_value)

    if not fragments and not allow_full_table_update:
        raise QueryValidationError(
            "WHERE conditions are required for UPDATE queries. Set allowFullTableUpdate=true to override."
        )

    sql = f"UPDATE {quote_qualified_identifier(table, vendor, 'Table name')} SET {', '.join(set_clauses)}"
    if fragments:
        sql += " WHERE " + " AND ".join(fragments)

    return BuiltUpdateQuery(
        query=BuiltQuery(template=sql, parameters=tuple(parameters)),
        where_applied=bool(fragments),
        uses_optimistic_lock=optimistic_lock is not None,
    )


def build_delete_query(
    table: str,
    vendor,
    where: Optional[Sequence[ConditionInput]] = None,
    allow_full_table_delete: bool = False,
    soft_delete: Optional[Union[SoftDelete, Mapping[str, Any]]] = None,
) -> BuiltDeleteQuery:
    """
    Build a DELETE, or an UPDATE that stamps a soft-delete column.

    Without an explicit soft-delete value the column is set to CURRENT_TIMESTAMP.
    """
    validate_qualified_identifier(table, "Table name")
    dialect = get_dialect(vendor)
    quoted_table = quote_qualified_identifier(table, vendor, "Table name")

    fragments, where_params = compile_where(where, vendor)

    if not fragments and not allow_full_table_delete:
        raise QueryValidationError(
            "WHERE conditions are required for DELETE queries. Set allowFullTableDelete=true to override."
        )

    parameters: List[Any] = []
    if soft_delete is not None:
        settings = soft_delete if isinstance(soft_delete, SoftDelete) else SoftDelete.from_dict(soft_delete)
        column = quote_identifier(settings.column, vendor, "Soft delete column")
        if settings.value is None:
            sql = f"UPDATE {quoted_table} SET {column} = CURRENT_TIMESTAMP"
        else:
            sql = f"UPDATE {quoted_table} SET {column} = {dialect.placeholder}"
            parameters.append(settings.value)
    else:
        sql = f"DELETE FROM {quoted_table}"

    if fragments:
        sql += " WHERE " + " AND ".join(fragments)
        parameters.extend(where_params)

    return BuiltDeleteQuery(
        query=BuiltQuery(template=sql, parameters=tuple(parameters)),
        where_applied=bool(fragments),
        uses_soft_delete=soft_delete is not None,
    )
