"""
Query executor for Relational MCP Server.

Runs built or raw statements on a ConnectionManager or a transaction, normalizes
driver results into QueryResult objects and maps driver errors onto the
exception hierarchy without leaking database internals.
"""

import base64
import datetime
import decimal
import logging
import re
import time
import uuid
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .connection_manager import row_to_dict, truncate_sql
from .exceptions import (
    ConfigurationError,
    ConstraintViolationError,
    DomainError,
    OptimisticLockFailedError,
    QueryExecutionError,
    QueryValidationError,
    RelationalToolkitError,
    SecurityError,
    ValidationError,
)
from .models import (
    BuiltDeleteQuery,
    BuiltInsertQuery,
    BuiltQuery,
    BuiltUpdateQuery,
    DatabaseVendor,
    QueryResult,
)
from .sql_sanitizer import enforce_parameterized_query_usage, validate_sql_string

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100
MAX_CHUNK_SIZE = 5000

AFFECTED_ROW_KEYS = ("affectedRows", "rowCount", "changes")

CONSTRAINT_VIOLATION_PATTERNS = [
    (re.compile(r"(unique constraint|duplicate key|duplicate entry)", re.IGNORECASE), "unique constraint violation"),
    (re.compile(r"(foreign key constraint|violates foreign key constraint)", re.IGNORECASE),
     "foreign key constraint violation"),
    (re.compile(r"(not null constraint|cannot be null)", re.IGNORECASE), "NOT NULL constraint violation"),
]

CASCADE_HINT = (
    "Delete failed: foreign key constraint violation. Other rows still reference the rows being deleted; "
    "delete the referencing rows first or define the foreign key with ON DELETE CASCADE."
)

SAFE_ERROR_TYPES = (ValidationError, SecurityError, DomainError, ConfigurationError)


def _to_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return int(value)


def normalize_affected_rows(raw_result: Any) -> int:
    """
    Extract the affected row count from a driver result.

    Dict results are checked for `affectedRows`, `rowCount` and `changes`;
    absent or negative counts become 0.
    """
    if isinstance(raw_result, dict):
        for key in AFFECTED_ROW_KEYS:
            count = _to_count(raw_result.get(key))
            if count is not None:
                return max(count, 0)
        return 0

    count = _to_count(getattr(raw_result, "rowcount", None))
    return max(count, 0) if count is not None else 0


def normalize_value(value: Any) -> Any:
    """Convert a driver value into something JSON serializable."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        # keep full precision
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(raw).decode("ascii")
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    if isinstance(value, dict):
        return {key: normalize_value(item) for key, item in value.items()}
    return str(value)


def normalize_rows(rows: Any, columns: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    if not rows:
        return []
    columns = columns or []
    normalized = []
    for row in rows:
        as_dict = row_to_dict(row, columns)
        normalized.append({key: normalize_value(value) for key, value in as_dict.items()})
    return normalized


def _operation_label(operation: str) -> str:
    return operation.strip().lower().capitalize()


def get_constraint_violation_message(error: BaseException, operation: str, cascade: bool = False) -> Optional[str]:
    """
    Return a caller-safe constraint violation message, or None.

    Both the error and its `__cause__` are checked, since driver errors are often
    wrapped.
    """
    messages = [str(error)]
    if error.__cause__ is not None:
        messages.append(str(error.__cause__))

    label = _operation_label(operation)
    for pattern, description in CONSTRAINT_VIOLATION_PATTERNS:
        if any(pattern.search(message) for message in messages):
            if cascade and label == "Delete" and description.startswith("foreign key"):
                return CASCADE_HINT
            return f"{label} failed: {description}."
    return None


def map_execution_error(error: BaseException, operation: str, cascade: bool = False) -> RelationalToolkitError:
    """
    Map an error raised while executing `operation` to the error callers see.

    Validation, security, domain and configuration errors pass through unchanged.
    Recognizable constraint violations become ConstraintViolationError; anything
    else becomes a generic QueryExecutionError.
    """
    if isinstance(error, SAFE_ERROR_TYPES):
        return error

    message = get_constraint_violation_message(error, operation, cascade)
    if message:
        mapped: RelationalToolkitError = ConstraintViolationError(message)
    else:
        mapped = QueryExecutionError(f"{operation.strip().upper()} query failed. See logs for details.")
    mapped.__cause__ = error
    return mapped


def derive_inserted_ids(
    id_column: str,
    input_rows,
    returned_rows: List[Dict[str, Any]],
    row_count: int,
    insert_id: Optional[int] = None,
    last_insert_rowid: Optional[int] = None,
) -> List[Union[int, str]]:
    """
    Work out the ids of inserted rows.

    Preference order: ids from RETURNING rows, ids present in every input row,
    MySQL's first insert id counted upwards, SQLite's last rowid counted back.
    """
    def is_id(value):
        return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))

    returned_ids = [row.get(id_column) for row in returned_rows if is_id(row.get(id_column))]
    if returned_ids:
        return returned_ids

    if input_rows and all(is_id(row.get(id_column)) for row in input_rows):
        return [row[id_column] for row in input_rows]

    if insert_id is not None and row_count > 0:
        return [insert_id + index for index in range(row_count)]

    if last_insert_rowid is not None and row_count > 0:
        start = last_insert_rowid - row_count + 1
        return [start + index for index in range(row_count)]

    return []


class QueryExecutor:
    """
    Executes statements against a ConnectionManager or ManagedTransaction.

    Built queries are trusted as constructed by the query builder. Raw SQL
    strings go through both sanitizer checks before reaching the driver.
    """

    def __init__(self, executor, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the query executor.

        Args:
            executor: Object with `vendor` and `execute(sql, params)`
            clock: Monotonic clock in seconds
        """
        self.executor = executor
        self.vendor = DatabaseVendor(executor.vendor)
        self._clock = clock

    def _run(self, sql: str, params: Any):
        start_time = self._clock()
        raw_result = self.executor.execute(sql, params)
        execution_time_ms = (self._clock() - start_time) * 1000
        return raw_result, execution_time_ms

    def execute_query(self, query: Union[BuiltQuery, str], params: Any = None) -> QueryResult:
        """
        Execute a built query or a raw SQL string.

        Returns:
            QueryResult with normalized rows, counts and timing

        Raises:
            SecurityError: If a raw SQL string fails sanitization
        """
        if isinstance(query, BuiltQuery):
            sql = query.template
            bound = query.parameters or None
        else:
            validate_sql_string(query, self.vendor.value)
            enforce_parameterized_query_usage(query, params, self.vendor.value)
            sql = query
            bound = params if params else None

        raw_result, execution_time_ms = self._run(sql, bound)
        columns = list(raw_result.get("columns") or [])
        rows = normalize_rows(raw_result.get("rows"), columns)
        affected_rows = normalize_affected_rows(raw_result)

        result = QueryResult(
            rows=rows,
            row_count=len(rows) if columns else affected_rows,
            execution_time_ms=execution_time_ms,
            affected_rows=affected_rows,
            columns=columns,
        )
        logger.debug(
            f"Query executed: {truncate_sql(sql)} ({result.row_count} rows in "
            f"{result.get_formatted_execution_time()})",
            extra={"vendor": self.vendor.value},
        )
        return result

    def execute_insert(self, built: BuiltInsertQuery) -> QueryResult:
        raw_result, execution_time_ms = self._run(built.query.template, built.query.parameters or None)
        columns = list(raw_result.get("columns") or [])
        returned_rows = normalize_rows(raw_result.get("rows"), columns)

        affected = normalize_affected_rows(raw_result)
        row_count = affected if affected > 0 else len(built.rows)

        inserted_ids: List[Any] = []
        if built.returning_mode == "id":
            inserted_ids = derive_inserted_ids(
                built.id_column,
                built.rows,
                returned_rows,
                row_count,
                insert_id=raw_result.get("insertId"),
                last_insert_rowid=raw_result.get("lastInsertRowid"),
            )

        return QueryResult(
            rows=returned_rows if built.returning_mode == "row" else [],
            row_count=row_count,
            execution_time_ms=execution_time_ms,
            affected_rows=row_count,
            columns=columns if built.returning_mode == "row" else [],
            inserted_ids=inserted_ids,
        )

    def execute_update(self, built: BuiltUpdateQuery) -> QueryResult:
        """
        Execute an UPDATE.

        Raises:
            OptimisticLockFailedError: If an optimistic-lock update affected no rows
        """
        raw_result, execution_time_ms = self._run(built.query.template, built.query.parameters or None)
        affected = normalize_affected_rows(raw_result)

        if built.uses_optimistic_lock and affected == 0:
            logger.info("Optimistic lock check failed: no rows matched the expected version")
            raise OptimisticLockFailedError()

        return QueryResult(rows=[], row_count=affected, execution_time_ms=execution_time_ms, affected_rows=affected)

    def execute_delete(self, built: BuiltDeleteQuery) -> QueryResult:
        raw_result, execution_time_ms = self._run(built.query.template, built.query.parameters or None)
        affected = normalize_affected_rows(raw_result)
        return QueryResult(rows=[], row_count=affected, execution_time_ms=execution_time_ms, affected_rows=affected)


def _bounded_int(value: Any, field_name: str, minimum: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not minimum <= value <= maximum:
        raise QueryValidationError(f"{field_name} must be an integer between {minimum} and {maximum}")
    return value


def stream_select(
    manager,
    built_query: BuiltQuery,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_rows: Optional[int] = None,
) -> Iterator[List[Dict[str, Any]]]:
    """
    Yield the rows of a SELECT in chunks of at most `chunk_size`.

    One cursor is used for the whole result and read with `fetchmany`; the
    manager's connection lock is held until the generator finishes or is closed.
    """
    chunk_size = _bounded_int(chunk_size, "chunkSize", 1, MAX_CHUNK_SIZE)
    if max_rows is not None:
        _bounded_int(max_rows, "maxRows", 1, 2 ** 63 - 1)

    logger.debug(
        f"Streaming query: {truncate_sql(built_query.template)}",
        extra={"chunk_size": chunk_size, "max_rows": max_rows},
    )

    with manager.cursor() as cursor:
        if built_query.parameters:
            cursor.execute(built_query.template, built_query.parameters)
        else:
            cursor.execute(built_query.template)

        columns = [description[0] for description in cursor.description or []]
        emitted = 0
        while True:
            size = chunk_size if max_rows is None else min(chunk_size, max_rows - emitted)
            if size <= 0:
                return
            batch = cursor.fetchmany(size)
            if not batch:
                return
            rows = normalize_rows(batch, columns)
            emitted += len(rows)
            yield rows
            if len(rows) < size:
                return


def execute_streaming_select(
    manager,
    built_query: BuiltQuery,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_rows: Optional[int] = None,
    sample_size: int = 50,
    on_chunk: Optional[Callable[[int, List[Dict[str, Any]]], None]] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Dict[str, Any]:
    """
    Consume `stream_select` and summarize it.

    Returns:
        Dictionary with a row sample, total rowCount, chunkCount and executionTime in ms
    """
    sample_size = _bounded_int(sample_size, "sampleSize", 0, MAX_CHUNK_SIZE)
    start_time = clock()
    sample: List[Dict[str, Any]] = []
    row_count = 0
    chunk_count = 0

    for rows in stream_select(manager, built_query, chunk_size=chunk_size, max_rows=max_rows):
        if on_chunk is not None:
            on_chunk(chunk_count, rows)
        chunk_count += 1
        row_count += len(rows)
        if len(sample) < sample_size:
            sample.extend(rows[:sample_size - len(sample)])

    execution_time_ms = (clock() - start_time) * 1000
    logger.debug(f"Streaming select finished: {row_count} rows in {chunk_count} chunks")

    return {
        "rows": sample,
        "rowCount": row_count,
        "chunkCount": chunk_count,
        "executionTime": execution_time_ms,
    }
