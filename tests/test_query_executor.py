"""
Unit tests for the query executor.

Tests result normalization, inserted id derivation, optimistic lock failures,
error mapping and streaming reads.
"""

import datetime
import decimal
import uuid

import pytest

from relational_mcp_server.exceptions import (
    ConstraintViolationError,
    DangerousOperationError,
    InvalidConditionError,
    MissingParametersError,
    OptimisticLockFailedError,
    QueryExecutionError,
    QueryValidationError,
)
from relational_mcp_server.models import BuiltQuery
from relational_mcp_server.query_builder import (
    build_delete_query,
    build_insert_query,
    build_select_query,
    build_update_query,
)
from relational_mcp_server.query_executor import (
    CASCADE_HINT,
    QueryExecutor,
    derive_inserted_ids,
    execute_streaming_select,
    map_execution_error,
    normalize_affected_rows,
    normalize_value,
    stream_select,
)

from fixtures import FakeClock, RecordingExecutor


class TestNormalization:
    """Test cases for driver result normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ({"affectedRows": 3}, 3),
        ({"rowCount": 2}, 2),
        ({"changes": 4}, 4),
        ({"rowCount": -1}, 0),
        ({"rowCount": None}, 0),
        ({}, 0),
        ({"rowCount": True}, 0),
    ])
    def test_normalize_affected_rows(self, raw, expected):
        """Test affected row extraction from dict results."""
        assert normalize_affected_rows(raw) == expected

    def test_normalize_affected_rows_from_cursor(self):
        """Test affected row extraction from a cursor-like object."""
        class Cursor:
            rowcount = 7

        assert normalize_affected_rows(Cursor()) == 7

    def test_normalize_value(self):
        """Test JSON-safe conversion of driver values."""
        assert normalize_value(decimal.Decimal("12.3400")) == "12.3400"
        assert normalize_value(datetime.date(2024, 1, 2)) == "2024-01-02"
        assert normalize_value(datetime.datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"
        assert normalize_value(b"hello") == "hello"
        assert normalize_value(b"\xff\x00") == "/wA="
        assert normalize_value(datetime.timedelta(seconds=90)) == 90.0
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert normalize_value(value) == "12345678-1234-5678-1234-567812345678"
        assert normalize_value({"a": [decimal.Decimal("1")]}) == {"a": ["1"]}
        assert normalize_value(None) is None


class TestDeriveInsertedIds:
    """Test cases for inserted id derivation."""

    def test_prefers_returned_rows(self):
        """Test that RETURNING rows win."""
        assert derive_inserted_ids("id", [{"id": 99}], [{"id": 5}, {"id": 6}], 2, insert_id=1) == [5, 6]

    def test_uses_input_ids(self):
        """Test ids supplied by the caller."""
        assert derive_inserted_ids("id", [{"id": "a"}, {"id": "b"}], [], 2) == ["a", "b"]

    def test_mysql_insert_id_counts_up(self):
        """Test MySQL's first-id arithmetic."""
        assert derive_inserted_ids("id", [{}, {}, {}], [], 3, insert_id=10) == [10, 11, 12]

    def test_sqlite_last_rowid_counts_back(self):
        """Test SQLite's last-rowid arithmetic."""
        assert derive_inserted_ids("id", [{}, {}], [], 2, last_insert_rowid=8) == [7, 8]

    def test_no_information(self):
        """Test that nothing is invented when no id is known."""
        assert derive_inserted_ids("id", [{}], [], 1) == []


class TestMapExecutionError:
    """Test cases for error mapping."""

    def test_safe_errors_pass_through(self):
        """Test that validation and security errors are returned as-is."""
        error = InvalidConditionError("bad")
        assert map_execution_error(error, "select") is error

    def test_unique_violation(self):
        """Test unique constraint detection."""
        mapped = map_execution_error(RuntimeError('duplicate key value violates unique constraint "x"'), "insert")
        assert isinstance(mapped, ConstraintViolationError)
        assert mapped.message == "Insert failed: unique constraint violation."

    def test_not_null_violation_in_cause(self):
        """Test that wrapped driver errors are inspected through __cause__."""
        try:
            try:
                raise RuntimeError("NOT NULL constraint failed: users.email")
            except RuntimeError as inner:
                raise ValueError("wrapper") from inner
        except ValueError as outer:
            mapped = map_execution_error(outer, "update")
        assert mapped.message == "Update failed: NOT NULL constraint violation."

    def test_foreign_key_delete_with_cascade_hint(self):
        """Test the cascade hint for foreign key violations on delete."""
        error = RuntimeError("FOREIGN KEY constraint failed")
        assert map_execution_error(error, "delete").message == "Delete failed: foreign key constraint violation."
        assert map_execution_error(error, "delete", cascade=True).message == CASCADE_HINT

    def test_generic_error_hides_details(self):
        """Test that unknown driver errors never leak their text."""
        error = RuntimeError('relation "secret_table" does not exist')
        mapped = map_execution_error(error, "select")
        assert isinstance(mapped, QueryExecutionError)
        assert mapped.message == "SELECT query failed. See logs for details."
        assert "secret_table" not in mapped.message
        assert mapped.__cause__ is error


class TestQueryExecutor:
    """Test cases for QueryExecutor with a recording executor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = FakeClock()

    def test_execute_built_query(self):
        """Test that built queries pass their template and parameters through."""
        executor = RecordingExecutor(results=[
            {"rows": [{"id": 1, "price": decimal.Decimal("9.99")}], "columns": ["id", "price"], "rowCount": 1},
        ])
        built = build_select_query("items", "postgresql", where=[{"column": "id", "operator": "eq", "value": 1}])

        result = QueryExecutor(executor, clock=self.clock).execute_query(built)

        assert executor.calls == [('SELECT * FROM "items" WHERE "id" = %s', (1,))]
        assert result.rows == [{"id": 1, "price": "9.99"}]
        assert result.row_count == 1
        assert result.columns == ["id", "price"]

    def test_raw_sql_is_sanitized(self):
        """Test that raw strings go through both safety checks."""
        executor = RecordingExecutor()
        query_executor = QueryExecutor(executor)

        with pytest.raises(DangerousOperationError):
            query_executor.execute_query("DROP TABLE users")
        with pytest.raises(MissingParametersError):
            query_executor.execute_query("SELECT * FROM users WHERE id = %s")
        assert executor.calls == []

    def test_raw_sql_with_params(self):
        """Test that raw parameterized SQL reaches the executor."""
        executor = RecordingExecutor(results=[{"rows": [], "columns": [], "rowCount": 2}])
        result = QueryExecutor(executor).execute_query("UPDATE t SET a = %s", [1])
        assert executor.calls == [("UPDATE t SET a = %s", [1])]
        assert result.row_count == 2
        assert result.affected_rows == 2

    def test_insert_with_returning_ids(self):
        """Test id mode with RETURNING rows."""
        executor = RecordingExecutor(results=[
            {"rows": [{"id": 10}, {"id": 11}], "columns": ["id"], "rowCount": 2},
        ])
        built = build_insert_query("users", [{"email": "a"}, {"email": "b"}], "postgresql", returning={"mode": "id"})
        result = QueryExecutor(executor).execute_insert(built)
        assert result.inserted_ids == [10, 11]
        assert result.row_count == 2
        assert result.rows == []

    def test_insert_mysql_insert_id(self):
        """Test id mode on MySQL using the driver insert id."""
        executor = RecordingExecutor(vendor="mysql", results=[
            {"rows": [], "columns": [], "rowCount": 2, "insertId": 100},
        ])
        built = build_insert_query("users", [{"email": "a"}, {"email": "b"}], "mysql", returning={"mode": "id"})
        assert QueryExecutor(executor).execute_insert(built).inserted_ids == [100, 101]

    def test_insert_returning_rows(self):
        """Test row mode returns normalized rows."""
        executor = RecordingExecutor(results=[
            {"rows": [{"id": 1, "created": datetime.date(2024, 5, 1)}], "columns": ["id", "created"], "rowCount": 1},
        ])
        built = build_insert_query("users", {"email": "a"}, "postgresql", returning={"mode": "row"})
        result = QueryExecutor(executor).execute_insert(built)
        assert result.rows == [{"id": 1, "created": "2024-05-01"}]
        assert result.inserted_ids == []

    def test_insert_row_count_falls_back_to_input(self):
        """Test that a driver without a row count reports the input size."""
        executor = RecordingExecutor(results=[{"rows": [], "columns": [], "rowCount": -1}])
        built = build_insert_query("users", [{"email": "a"}, {"email": "b"}], "postgresql")
        assert QueryExecutor(executor).execute_insert(built).row_count == 2

    def test_optimistic_lock_failure(self):
        """Test that a locked update matching nothing raises."""
        executor = RecordingExecutor(results=[{"rows": [], "columns": [], "rowCount": 0}])
        built = build_update_query("users", {"name": "x"}, "postgresql", optimistic_lock={"column": "version", "expectedValue": 1})
        with pytest.raises(OptimisticLockFailedError, match="optimistic lock check failed"):
            QueryExecutor(executor).execute_update(built)

    def test_update_without_lock_may_affect_nothing(self):
        """Test that a plain update matching nothing is not an error."""
        executor = RecordingExecutor(results=[{"rows": [], "columns": [], "rowCount": 0}])
        built = build_update_query("users", {"name": "x"}, "postgresql", where=[{"column": "id", "operator": "eq", "value": 9}])
        assert QueryExecutor(executor).execute_update(built).row_count == 0

    def test_delete(self):
        """Test affected rows for DELETE."""
        executor = RecordingExecutor(results=[{"rows": [], "columns": [], "rowCount": 3}])
        built = build_delete_query("users", "postgresql", allow_full_table_delete=True)
        assert QueryExecutor(executor).execute_delete(built).row_count == 3

    def test_execution_time_uses_clock(self):
        """Test that timing comes from the injected clock."""
        clock = FakeClock()

        class SlowExecutor(RecordingExecutor):
            def execute(self, sql, params=None):
                clock.advance_ms(25)
                return super().execute(sql, params)

        result = QueryExecutor(SlowExecutor(), clock=clock).execute_query(BuiltQuery("SELECT 1"))
        assert result.execution_time_ms == pytest.approx(25)


class TestSQLiteExecution:
    """Test cases for QueryExecutor against a real SQLite database."""

    def test_insert_ids_and_select(self, sqlite_manager):
        """Test inserting with RETURNING ids and reading the rows back."""
        executor = QueryExecutor(sqlite_manager)
        built = build_insert_query(
            "users",
            [{"email": "x@example.com", "name": "X"}, {"email": "y@example.com", "name": "Y"}],
            "sqlite",
            returning={"mode": "id"},
        )
        inserted = executor.execute_insert(built)
        assert inserted.row_count == 2
        assert inserted.inserted_ids == [5, 6]

        selected = executor.execute_query(build_select_query(
            "users", "sqlite", columns=["email"],
            where=[{"column": "id", "operator": "in", "value": inserted.inserted_ids}],
            order_by=[{"column": "id"}],
        ))
        assert selected.rows == [{"email": "x@example.com"}, {"email": "y@example.com"}]

    def test_optimistic_lock_roundtrip(self, sqlite_manager):
        """Test a successful and then a stale optimistic-lock update."""
        executor = QueryExecutor(sqlite_manager)
        lock = {"column": "version", "expectedValue": 1}
        where = [{"column": "id", "operator": "eq", "value": 1}]

        first = executor.execute_update(build_update_query("users", {"name": "A2", "version": 2}, "sqlite", where=where, optimistic_lock=lock))
        assert first.row_count == 1

        with pytest.raises(OptimisticLockFailedError):
            executor.execute_update(build_update_query("users", {"name": "A3", "version": 2}, "sqlite", where=where, optimistic_lock=lock))

    def test_unique_violation_is_mapped(self, sqlite_manager):
        """Test constraint mapping for a real driver error."""
        built = build_insert_query("users", {"email": "alice@example.com"}, "sqlite")
        with pytest.raises(Exception) as exc_info:
            QueryExecutor(sqlite_manager).execute_insert(built)
        mapped = map_execution_error(exc_info.value, "insert")
        assert isinstance(mapped, ConstraintViolationError)


class TestStreaming:
    """Test cases for chunked SELECT streaming."""

    def test_chunks(self, sqlite_manager):
        """Test that rows arrive in chunks of the requested size."""
        built = build_select_query("users", "sqlite", columns=["id"], order_by=[{"column": "id"}])
        chunks = list(stream_select(sqlite_manager, built, chunk_size=3))
        assert [len(chunk) for chunk in chunks] == [3, 1]
        assert [row["id"] for chunk in chunks for row in chunk] == [1, 2, 3, 4]

    def test_max_rows(self, sqlite_manager):
        """Test that max_rows caps the total."""
        built = build_select_query("users", "sqlite", columns=["id"], order_by=[{"column": "id"}])
        chunks = list(stream_select(sqlite_manager, built, chunk_size=2, max_rows=3))
        assert [len(chunk) for chunk in chunks] == [2, 1]

    def test_invalid_chunk_size(self, sqlite_manager):
        """Test chunk size bounds."""
        built = build_select_query("users", "sqlite")
        with pytest.raises(QueryValidationError, match="chunkSize"):
            list(stream_select(sqlite_manager, built, chunk_size=0))
        with pytest.raises(QueryValidationError, match="chunkSize"):
            list(stream_select(sqlite_manager, built, chunk_size=5001))

    def test_streaming_summary(self, sqlite_manager):
        """Test the summary with a bounded sample and chunk callbacks."""
        built = build_select_query("users", "sqlite", order_by=[{"column": "id"}])
        seen = []

        summary = execute_streaming_select(
            sqlite_manager, built, chunk_size=2, sample_size=3,
            on_chunk=lambda index, rows: seen.append((index, len(rows))),
        )

        assert summary["rowCount"] == 4
        assert summary["chunkCount"] == 2
        assert len(summary["rows"]) == 3
        assert seen == [(0, 2), (1, 2)]
