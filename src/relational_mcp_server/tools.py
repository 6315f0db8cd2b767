"""
MCP tools for Relational MCP Server.

Each tool validates its input with a pydantic model, opens one connection for
the duration of the call and always returns a dictionary. Failures come back as
`{"success": False, "error": ...}`; database internals are replaced with a
generic message and the details go to the log.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .batch_executor import (
    BatchFailure,
    BatchOptions,
    BatchProgress,
    benchmark_batch_execution,
    execute_batched_task,
)
from .cache_manager import DEFAULT_SCHEMA_TTL_MS, CacheKeyGenerator
from .config import BatchConfig, ConnectionConfig
from .connection_manager import ConnectionManager
from .exceptions import QueryValidationError, RelationalToolkitError
from .identifiers import QUALIFIED_IDENTIFIER_PATTERN
from .models import UNSET, DatabaseVendor, OptimisticLock, OrderBy, QueryResult, SoftDelete, WhereCondition
from .query_builder import build_delete_query, build_insert_query, build_select_query, build_update_query
from .query_executor import QueryExecutor, execute_streaming_select, map_execution_error
from .schema_diff import diff_schemas, import_schema_from_json
from .schema_inspector import SchemaInspector, summarize_schema, validate_table_filters
from .schema_validator import validate_columns_exist, validate_table_exists
from .sql_sanitizer import enforce_parameterized_query_usage, validate_sql_string

logger = logging.getLogger(__name__)

T = TypeVar("T")
TModel = TypeVar("TModel", bound=BaseModel)

NULL_CHECK_OPERATORS = ("isNull", "isNotNull")
LIST_OPERATORS = ("in", "notIn")
RANGE_OPERATORS = ("gt", "lt", "gte", "lte")


@dataclass
class ToolDefaults:
    """Server-wide defaults applied when a tool call leaves a value out."""

    vendor: Optional[DatabaseVendor] = None
    connection_string: Optional[str] = None
    database: Optional[str] = None
    schema_cache_ttl_ms: int = DEFAULT_SCHEMA_TTL_MS
    batch: BatchConfig = field(default_factory=BatchConfig)


_defaults = ToolDefaults()


def initialize_tools(config) -> None:
    """
    Apply server configuration to the tool defaults.

    Args:
        config: ServerConfig instance
    """
    global _defaults
    _defaults = ToolDefaults(
        vendor=config.db_vendor,
        connection_string=config.db_connection_string,
        database=config.db_database,
        schema_cache_ttl_ms=config.get_cache_config().schema_ttl_ms,
        batch=config.get_batch_config(),
    )
    SchemaInspector.configure_cache(config.get_cache_config().max_size)
    logger.info(
        "MCP tools initialized",
        extra={
            "default_vendor": config.db_vendor.value if config.db_vendor else None,
            "schema_cache_ttl_ms": _defaults.schema_cache_ttl_ms,
            "batch_size": _defaults.batch.batch_size,
        },
    )


def get_tool_defaults() -> ToolDefaults:
    return _defaults


# Input models

class ToolInput(BaseModel):
    """Base for tool inputs. Nested objects accept camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class WhereConditionInput(ToolInput):
    column: str = Field(min_length=1, description="Column name to filter on")
    operator: Literal["eq", "ne", "gt", "lt", "gte", "lte", "like", "in", "notIn", "isNull", "isNotNull"]
    value: Any = Field(default=None, description="Value to compare against (not used by isNull/isNotNull)")

    @model_validator(mode="after")
    def validate_value(self):
        provided = "value" in self.model_fields_set
        op = self.operator
        value = self.value

        if op in NULL_CHECK_OPERATORS:
            if provided:
                raise ValueError("value must not be provided when using isNull or isNotNull operator")
            return self

        if not provided:
            raise ValueError("value is required for this operator")

        if op in LIST_OPERATORS:
            label = "IN" if op == "in" else "NOT IN"
            if not isinstance(value, list):
                raise ValueError(f"{label} operator requires an array value")
            if not value:
                raise ValueError(f"{label} operator requires a non-empty array value")
            return self

        if value is None:
            raise ValueError("null is only allowed with isNull/isNotNull operators")

        if op == "like" and not isinstance(value, str):
            raise ValueError("LIKE operator requires a string value")

        if op in RANGE_OPERATORS and (isinstance(value, bool) or not isinstance(value, (str, int, float))):
            raise ValueError(f"{op.upper()} operator requires a string or number value")

        return self

    def to_condition(self) -> WhereCondition:
        value = self.value if "value" in self.model_fields_set else UNSET
        return WhereCondition(column=self.column, operator=self.operator, value=value)


class OrderByInput(ToolInput):
    column: str = Field(min_length=1)
    direction: Literal["asc", "desc"] = "asc"


class StreamingInput(ToolInput):
    enabled: bool = True
    chunk_size: int = Field(default=100, ge=1, le=5000)
    max_rows: Optional[int] = Field(default=None, ge=1)
    sample_size: int = Field(default=50, ge=0, le=5000)


class ReturningInput(ToolInput):
    mode: Literal["none", "id", "row"] = "none"
    id_column: Optional[str] = None

    def to_builder_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"mode": self.mode}
        if self.id_column is not None:
            options["idColumn"] = self.id_column
        return options


class OptimisticLockInput(ToolInput):
    column: str = Field(min_length=1, description="Version or lock column name")
    expected_value: Union[str, int, float] = Field(description="Expected current value for the lock column")

    def to_lock(self) -> OptimisticLock:
        return OptimisticLock(column=self.column, expected_value=self.expected_value)


class SoftDeleteInput(ToolInput):
    column: str = Field(default="deleted_at", min_length=1)
    value: Optional[Union[str, int, float]] = None

    def to_soft_delete(self) -> SoftDelete:
        return SoftDelete(column=self.column, value=self.value)


class BatchInput(ToolInput):
    """Batch settings; unset fields fall back to the server defaults."""

    enabled: bool = True
    batch_size: Optional[int] = None
    continue_on_error: Optional[bool] = None
    max_retries: Optional[int] = None
    retry_delay_ms: Optional[int] = None
    benchmark: bool = False

    def to_options(self, defaults: BatchConfig) -> BatchOptions:
        return BatchOptions(
            batch_size=self.batch_size if self.batch_size is not None else defaults.batch_size,
            continue_on_error=(
                self.continue_on_error if self.continue_on_error is not None else defaults.continue_on_error
            ),
            max_retries=self.max_retries if self.max_retries is not None else defaults.max_retries,
            retry_delay_ms=self.retry_delay_ms if self.retry_delay_ms is not None else defaults.retry_delay_ms,
        )


class ConnectionInput(ToolInput):
    vendor: DatabaseVendor = Field(description="Database vendor")
    connection_string: str = Field(min_length=1, description="Database connection string")

    def connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(vendor=self.vendor, connection=self.connection_string)


class TableInput(ConnectionInput):
    table: str = Field(min_length=1, description="Table name (schema-qualified names supported)")

    @field_validator("table")
    @classmethod
    def validate_table(cls, v):
        if not QUALIFIED_IDENTIFIER_PATTERN.fullmatch(v):
            raise ValueError(
                "Table name contains invalid characters. Only alphanumeric characters, underscores, "
                "and dots (for schema qualification) are allowed."
            )
        return v


def _conditions(where: Optional[List[WhereConditionInput]]) -> Optional[List[WhereCondition]]:
    return [condition.to_condition() for condition in where] if where else None


class SelectInput(TableInput):
    columns: Optional[List[str]] = None
    where: Optional[List[WhereConditionInput]] = None
    order_by: Optional[List[OrderByInput]] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)
    streaming: Optional[StreamingInput] = None


class InsertInput(TableInput):
    data: Union[Dict[str, Any], List[Dict[str, Any]]]
    returning: Optional[ReturningInput] = None


class UpdateOperationInput(ToolInput):
    data: Dict[str, Any]
    where: Optional[List[WhereConditionInput]] = None
    allow_full_table_update: bool = False
    optimistic_lock: Optional[OptimisticLockInput] = None


class UpdateInput(TableInput):
    data: Optional[Dict[str, Any]] = None
    where: Optional[List[WhereConditionInput]] = None
    allow_full_table_update: bool = False
    optimistic_lock: Optional[OptimisticLockInput] = None
    operations: Optional[List[UpdateOperationInput]] = Field(default=None, min_length=1)
    batch: Optional[BatchInput] = None

    @property
    def batch_mode(self) -> bool:
        return bool(self.operations) and (self.batch is None or self.batch.enabled)

    @model_validator(mode="after")
    def validate_data(self):
        if not self.batch_mode and self.data is None:
            raise ValueError("UPDATE data is required when operations[] is not provided.")
        return self


class DeleteOperationInput(ToolInput):
    where: Optional[List[WhereConditionInput]] = None
    allow_full_table_delete: bool = False
    soft_delete: Optional[SoftDeleteInput] = None


class DeleteInput(TableInput):
    where: Optional[List[WhereConditionInput]] = None
    allow_full_table_delete: bool = False
    soft_delete: Optional[SoftDeleteInput] = None
    cascade: bool = False
    operations: Optional[List[DeleteOperationInput]] = Field(default=None, min_length=1)
    batch: Optional[BatchInput] = None

    @property
    def batch_mode(self) -> bool:
        return bool(self.operations) and (self.batch is None or self.batch.enabled)


class GetSchemaInput(ConnectionInput):
    database: Optional[str] = None
    tables: Optional[List[str]] = None
    cache_ttl_ms: Optional[int] = Field(default=None, ge=0)
    refresh_cache: bool = False


class QueryInput(ConnectionInput):
    sql: str
    params: Optional[Union[List[Any], Dict[str, Any]]] = None


class DiffInput(ToolInput):
    before_json: str
    after_json: str


def parse_tool_input(model: Type[TModel], **values: Any) -> TModel:
    """
    Validate tool arguments, turning pydantic errors into QueryValidationError.

    Arguments passed as None are treated as omitted.
    """
    provided = {key: value for key, value in values.items() if value is not None}
    try:
        return model(**provided)
    except ValidationError as e:
        first = e.errors()[0]
        message = str(first.get("msg", "Invalid input"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise QueryValidationError(f"{location}: {message}" if location else message) from e


# Execution helpers

def _connection_values(vendor: Optional[str], connection_string: Optional[str]) -> Dict[str, Any]:
    defaults = get_tool_defaults()
    return {
        "vendor": vendor or defaults.vendor,
        "connection_string": connection_string or defaults.connection_string,
    }


def _with_connection(params: ConnectionInput, work: Callable[[ConnectionManager], T]) -> T:
    manager = ConnectionManager(params.connection_config())
    try:
        manager.connect()
        return work(manager)
    finally:
        manager.disconnect()


def _where_columns(where: Optional[List[WhereConditionInput]]) -> List[str]:
    return [condition.column for condition in where or []]


def _require_known_columns(manager: ConnectionManager, params: TableInput, columns: List[str]) -> None:
    """
    Check column references against the live table before a SQLite statement runs.

    SQLite reads a double-quoted name that matches no column as a string
    literal, so an unknown column would silently compare or write a constant.

    Raises:
        QueryValidationError: Naming the missing table or columns
    """
    if params.vendor != DatabaseVendor.SQLITE:
        return
    names = list(dict.fromkeys(column for column in columns if column))
    if not names:
        return

    schema = SchemaInspector(manager, params.vendor).inspect_sqlite_table(params.table)
    for result in (
        validate_table_exists(schema, params.table),
        validate_columns_exist(schema, params.table, names),
    ):
        if not result.valid:
            raise QueryValidationError("; ".join(result.errors))


def _execute(operation: str, work: Callable[[], T], cascade: bool = False) -> T:
    """Run database work, mapping failures to caller-safe errors."""
    try:
        return work()
    except Exception as e:
        mapped = map_execution_error(e, operation, cascade)
        if mapped is e:
            raise
        logger.error(
            f"{operation.upper()} execution failed: {e}",
            extra={"operation": operation, "error_type": type(e).__name__},
        )
        raise mapped from e


def _run_tool(tool_name: str, body: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    start_time = time.monotonic()
    logger.info(f"Processing MCP tool request: {tool_name}", extra={"tool_name": tool_name})

    try:
        result = body()
    except RelationalToolkitError as e:
        logger.warning(
            f"MCP tool request failed: {tool_name}: {e.message}",
            extra={"tool_name": tool_name, "error_code": e.error_code},
        )
        return {"success": False, "error": e.message, "errorCode": e.error_code}
    except Exception as e:
        logger.exception(f"Unexpected error in MCP tool {tool_name}: {e}", extra={"tool_name": tool_name})
        return {"success": False, "error": f"{tool_name} failed unexpectedly. See logs for details."}

    logger.info(
        f"MCP tool request completed successfully: {tool_name}",
        extra={"tool_name": tool_name, "execution_time_ms": (time.monotonic() - start_time) * 1000},
    )
    return result


def _run_operations_in_batches(
    manager: ConnectionManager,
    operation: str,
    items: List[Any],
    run_one: Callable[[QueryExecutor, Any], QueryResult],
    options: BatchOptions,
    benchmark: bool = False,
    cascade: bool = False,
) -> Dict[str, Any]:
    """
    Run independent operations chunk by chunk.

    Retries apply to the failing operation only; operations that already
    succeeded are never executed again.
    """
    executor = QueryExecutor(manager)
    retries = 0

    def execute_batch(chunk: List[Any], batch_index: int) -> Dict[str, Any]:
        nonlocal retries
        row_count = 0
        successful_items = 0
        failures = []
        for item in chunk:
            attempts = 0
            while True:
                attempts += 1
                try:
                    row_count += run_one(executor, item).row_count
                    successful_items += 1
                    break
                except Exception as e:
                    if attempts <= options.max_retries:
                        retries += 1
                        logger.warning(
                            f"{operation.upper()} operation in batch {batch_index + 1} failed, retrying: {e}",
                            extra={"operation": operation, "batch_index": batch_index, "attempts": attempts},
                        )
                        if options.retry_delay_ms > 0:
                            time.sleep(options.retry_delay_ms / 1000)
                        continue
                    if not options.continue_on_error:
                        raise
                    failures.append(BatchFailure(
                        operation=operation,
                        batch_index=batch_index,
                        batch_size=len(chunk),
                        attempts=attempts,
                        error=map_execution_error(e, operation, cascade).message,
                    ))
                    break
        return {"rowCount": row_count, "successfulItems": successful_items, "failures": failures}

    def on_progress(progress: BatchProgress) -> None:
        logger.debug(
            f"{operation.upper()} batch progress: {progress.processed_items}/{progress.total_items}",
            extra={"operation": operation, "batch_index": progress.batch_index, "failed_items": progress.failed_items},
        )

    result = execute_batched_task(
        operation,
        items,
        execute_batch,
        replace(options, max_retries=0),
        success_counter=lambda batch_result, _chunk: batch_result["successfulItems"],
        on_progress=on_progress,
    )

    metadata = result.to_dict()
    metadata["enabled"] = True
    metadata["retries"] = retries
    metadata["batchSize"] = options.batch_size
    metadata["failures"].extend(
        failure.to_dict() for batch_result in result.results for failure in batch_result["failures"]
    )

    if benchmark:
        logger.warning(
            f"{operation.upper()} batch benchmark enabled. Benchmark callbacks are timing-only and do not execute SQL.",
            extra={"operation": operation, "item_count": len(items), "batch_size": options.batch_size},
        )
        metadata["benchmark"] = benchmark_batch_execution(
            items,
            run_individual=lambda item, index: None,
            run_batch=lambda chunk, index: None,
            batch_size=options.batch_size,
        ).to_dict()

    return {
        "success": True,
        "rowCount": sum(batch_result["rowCount"] for batch_result in result.results),
        "executionTime": result.execution_time_ms,
        "batch": metadata,
    }


# Tools

def relational_select(
    table: str,
    vendor: Optional[str] = None,
    connection_string: Optional[str] = None,
    columns: Optional[List[str]] = None,
    where: Optional[List[Dict[str, Any]]] = None,
    order_by: Optional[List[Dict[str, Any]]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    streaming: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Execute a parameterized SELECT.

    With `streaming` enabled the rows are read in chunks; the response then
    carries a sample of at most `sampleSize` rows and the full row count.

    Returns:
        Dictionary with success, rows, rowCount and executionTime
    """
    def body():
        params = parse_tool_input(
            SelectInput,
            table=table,
            columns=columns,
            where=where,
            order_by=order_by,
            limit=limit,
            offset=offset,
            streaming=streaming,
            **_connection_values(vendor, connection_string),
        )
        built = build_select_query(
            params.table,
            params.vendor,
            columns=params.columns,
            where=_conditions(params.where),
            order_by=[OrderBy(entry.column, entry.direction) for entry in params.order_by or []],
            limit=params.limit,
            offset=params.offset,
        )

        referenced = (
            list(params.columns or [])
            + _where_columns(params.where)
            + [entry.column for entry in params.order_by or []]
        )
        stream = params.streaming if params.streaming and params.streaming.enabled else None

        def work(manager):
            _require_known_columns(manager, params, referenced)
            if stream is not None:
                summary = execute_streaming_select(
                    manager,
                    built,
                    chunk_size=stream.chunk_size,
                    max_rows=stream.max_rows,
                    sample_size=stream.sample_size,
                )
                return {
                    "success": True,
                    "rows": summary["rows"],
                    "rowCount": summary["rowCount"],
                    "executionTime": summary["executionTime"],
                    "streaming": {
                        "chunkCount": summary["chunkCount"],
                        "sampled": summary["rowCount"] > len(summary["rows"]),
                    },
                }
            result = QueryExecutor(manager).execute_query(built)
            return {
                "success": True,
                "rows": result.rows,
                "rowCount": result.row_count,
                "executionTime": result.execution_time_ms,
            }

        return _execute("select", lambda: _with_connection(params, work))

    return _run_tool("relational_select", body)


def relational_insert(
    table: str,
    data: Union[Dict[str, Any], List[Dict[str, Any]]],
    vendor: Optional[str] = None,
    connection_string: Optional[str] = None,
    returning: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Insert one row or many. `returning.mode` chooses none, ids or full rows."""
    def body():
        params = parse_tool_input(
            InsertInput,
            table=table,
            data=data,
            returning=returning,
            **_connection_values(vendor, connection_string),
        )
        rows = params.data if isinstance(params.data, list) else [params.data]
        referenced = [column for row in rows for column in row]
        if params.returning and params.returning.id_column:
            referenced.append(params.returning.id_column)
        built = build_insert_query(
            params.table,
            params.data,
            params.vendor,
            returning=params.returning.to_builder_options() if params.returning else None,
        )

        def work(manager):
            _require_known_columns(manager, params, referenced)
            result = QueryExecutor(manager).execute_insert(built)
            return {
                "success": True,
                "rowCount": result.row_count,
                "insertedIds": result.inserted_ids,
                "rows": result.rows,
                "executionTime": result.execution_time_ms,
            }

        return _execute("insert", lambda: _with_connection(params, work))

    return _run_tool("relational_insert", body)


def relational_update(
    table: str,
    vendor: Optional[str] = None,
    connection_string: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
    where: Optional[List[Dict[str, Any]]] = None,
    allow_full_table_update: bool = False,
    optimistic_lock: Optional[Dict[str, Any]] = None,
    operations: Optional[List[Dict[str, Any]]] = None,
    batch: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Update rows, either once or as a batch of independent operations.

    A single update without WHERE conditions or an optimistic lock is rejected
    unless `allow_full_table_update` is set. An optimistic-lock update that
    matches no rows fails.
    """
    def body():
        params = parse_tool_input(
            UpdateInput,
            table=table,
            data=data,
            where=where,
            allow_full_table_update=allow_full_table_update,
            optimistic_lock=optimistic_lock,
            operations=operations,
            batch=batch,
            **_connection_values(vendor, connection_string),
        )

        def build(item) -> Any:
            return build_update_query(
                params.table,
                item.data,
                params.vendor,
                where=_conditions(item.where),
                allow_full_table_update=item.allow_full_table_update,
                optimistic_lock=item.optimistic_lock.to_lock() if item.optimistic_lock else None,
            )

        def columns(item) -> List[str]:
            referenced = list(item.data or {}) + _where_columns(item.where)
            if item.optimistic_lock:
                referenced.append(item.optimistic_lock.column)
            return referenced

        if params.batch_mode:
            batch_input = params.batch or BatchInput()
            options = batch_input.to_options(get_tool_defaults().batch)

            def work(manager):
                _require_known_columns(manager, params, [c for op in params.operations for c in columns(op)])
                return _run_operations_in_batches(
                    manager,
                    "update",
                    params.operations,
                    lambda executor, item: executor.execute_update(build(item)),
                    options,
                    benchmark=batch_input.benchmark,
                )
        else:
            built = build(params)

            def work(manager):
                _require_known_columns(manager, params, columns(params))
                result = QueryExecutor(manager).execute_update(built)
                return {"success": True, "rowCount": result.row_count, "executionTime": result.execution_time_ms}

        return _execute("update", lambda: _with_connection(params, work))

    return _run_tool("relational_update", body)


def relational_delete(
    table: str,
    vendor: Optional[str] = None,
    connection_string: Optional[str] = None,
    where: Optional[List[Dict[str, Any]]] = None,
    allow_full_table_delete: bool = False,
    soft_delete: Optional[Dict[str, Any]] = None,
    cascade: bool = False,
    operations: Optional[List[Dict[str, Any]]] = None,
    batch: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Delete rows, or stamp a soft-delete column instead.

    Batch operations without their own `soft_delete` inherit the top-level one.
    `cascade` only changes the message reported for foreign key violations.
    """
    def body():
        params = parse_tool_input(
            DeleteInput,
            table=table,
            where=where,
            allow_full_table_delete=allow_full_table_delete,
            soft_delete=soft_delete,
            cascade=cascade,
            operations=operations,
            batch=batch,
            **_connection_values(vendor, connection_string),
        )

        def build(item) -> Any:
            settings = item.soft_delete or params.soft_delete
            return build_delete_query(
                params.table,
                params.vendor,
                where=_conditions(item.where),
                allow_full_table_delete=item.allow_full_table_delete,
                soft_delete=settings.to_soft_delete() if settings else None,
            )

        def columns(item) -> List[str]:
            settings = item.soft_delete or params.soft_delete
            return _where_columns(item.where) + ([settings.column] if settings else [])

        if params.batch_mode:
            batch_input = params.batch or BatchInput()
            options = batch_input.to_options(get_tool_defaults().batch)
            soft_deleted = params.soft_delete is not None or any(op.soft_delete for op in params.operations)

            def work(manager):
                _require_known_columns(manager, params, [c for op in params.operations for c in columns(op)])
                response = _run_operations_in_batches(
                    manager,
                    "delete",
                    params.operations,
                    lambda executor, item: executor.execute_delete(build(item)),
                    options,
                    benchmark=batch_input.benchmark,
                    cascade=params.cascade,
                )
                response["softDeleted"] = soft_deleted
                return response
        else:
            built = build(params)

            def work(manager):
                _require_known_columns(manager, params, columns(params))
                result = QueryExecutor(manager).execute_delete(built)
                return {
                    "success": True,
                    "rowCount": result.row_count,
                    "executionTime": result.execution_time_ms,
                    "softDeleted": built.uses_soft_delete,
                }

        return _execute("delete", lambda: _with_connection(params, work), cascade=params.cascade)

    return _run_tool("relational_delete", body)


def relational_get_schema(
    vendor: Optional[str] = None,
    connection_string: Optional[str] = None,
    database: Optional[str] = None,
    tables: Optional[List[str]] = None,
    cache_ttl_ms: Optional[int] = None,
    refresh_cache: bool = False,
) -> Dict[str, Any]:
    """
    Introspect tables, columns, keys and indexes.

    Snapshots are cached per connection for `cache_ttl_ms` (0 disables caching).
    """
    def body():
        defaults = get_tool_defaults()
        params = parse_tool_input(
            GetSchemaInput,
            database=database or defaults.database,
            tables=tables,
            cache_ttl_ms=cache_ttl_ms,
            refresh_cache=refresh_cache,
            **_connection_values(vendor, connection_string),
        )
        validate_table_filters(params.tables)
        ttl_ms = params.cache_ttl_ms if params.cache_ttl_ms is not None else defaults.schema_cache_ttl_ms
        cache_key = CacheKeyGenerator.schema_key(params.vendor.value, params.connection_string, params.database)

        def work(manager):
            inspector = SchemaInspector(manager, params.vendor, cache_ttl_ms=ttl_ms, cache_key=cache_key)
            schema = inspector.inspect(tables=params.tables, refresh_cache=params.refresh_cache)
            return {"success": True, "schema": schema.to_dict(), "summary": summarize_schema(schema)}

        return _execute("schema inspection", lambda: _with_connection(params, work))

    return _run_tool("relational_get_schema", body)


def relational_query(
    sql: str,
    vendor: Optional[str] = None,
    connection_string: Optional[str] = None,
    params: Optional[Union[List[Any], Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Execute raw SQL.

    The statement is rejected before connecting if it is empty, contains DDL
    keywords, has placeholders without parameters, or is a mutation without
    parameters.
    """
    def body():
        query_input = parse_tool_input(
            QueryInput,
            sql=sql,
            params=params,
            **_connection_values(vendor, connection_string),
        )
        validate_sql_string(query_input.sql, query_input.vendor.value)
        enforce_parameterized_query_usage(query_input.sql, query_input.params, query_input.vendor.value)

        def work(manager):
            result = QueryExecutor(manager).execute_query(query_input.sql, query_input.params)
            return {
                "success": True,
                "rows": result.rows,
                "rowCount": result.row_count,
                "executionTime": result.execution_time_ms,
            }

        return _execute("raw", lambda: _with_connection(query_input, work))

    return _run_tool("relational_query", body)


def relational_diff_schemas(before_json: str, after_json: str) -> Dict[str, Any]:
    """Diff two exported schema snapshots."""
    def body():
        diff_input = parse_tool_input(DiffInput, before_json=before_json, after_json=after_json)
        before = import_schema_from_json(diff_input.before_json)
        after = import_schema_from_json(diff_input.after_json)
        return {"success": True, "diff": diff_schemas(before, after).to_dict()}

    return _run_tool("relational_diff_schemas", body)
