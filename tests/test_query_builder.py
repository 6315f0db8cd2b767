"""
Unit tests for the query builder.

Tests SQL construction for SELECT, INSERT, UPDATE and DELETE across vendors and
the guards that reject unsafe or malformed requests before any SQL runs.
"""

import pytest

from relational_mcp_server.exceptions import (
    InvalidConditionError,
    InvalidIdentifierError,
    QueryValidationError,
)
from relational_mcp_server.models import OptimisticLock, OrderBy, SoftDelete, WhereCondition
from relational_mcp_server.query_builder import (
    build_delete_query,
    build_insert_query,
    build_select_query,
    build_update_query,
    compile_condition,
)


class TestCompileCondition:
    """Test cases for WHERE condition compilation."""

    def test_comparison_operators(self):
        """Test that each comparison operator binds its value."""
        expected = {"eq": "=", "ne": "!=", "gt": ">", "lt": "<", "gte": ">=", "lte": "<="}
        for operator, symbol in expected.items():
            fragment, params = compile_condition({"column": "age", "operator": operator, "value": 30}, "postgresql")
            assert fragment == f'"age" {symbol} %s'
            assert params == [30]

    def test_like(self):
        """Test LIKE with a string pattern."""
        fragment, params = compile_condition(WhereCondition("name", "like", "A%"), "sqlite")
        assert fragment == '"name" LIKE ?'
        assert params == ["A%"]

    def test_in_and_not_in(self):
        """Test list operators expand to one placeholder per value."""
        fragment, params = compile_condition({"column": "id", "operator": "in", "value": [1, 2, 3]}, "mysql")
        assert fragment == "`id` IN (%s, %s, %s)"
        assert params == [1, 2, 3]

        fragment, params = compile_condition({"column": "status", "operator": "notIn", "value": ["a"]}, "sqlite")
        assert fragment == '"status" NOT IN (?)'
        assert params == ["a"]

    def test_null_checks(self):
        """Test isNull/isNotNull bind nothing."""
        assert compile_condition({"column": "deleted_at", "operator": "isNull"}, "postgresql") == (
            '"deleted_at" IS NULL', []
        )
        assert compile_condition({"column": "deleted_at", "operator": "isNotNull"}, "postgresql") == (
            '"deleted_at" IS NOT NULL', []
        )

    def test_null_check_with_value_rejected(self):
        """Test that a value with isNull is rejected, even None."""
        with pytest.raises(InvalidConditionError, match="must not include value"):
            compile_condition({"column": "x", "operator": "isNull", "value": None}, "postgresql")

    def test_null_value_rejected_for_eq(self):
        """Test that null comparisons must use isNull."""
        with pytest.raises(InvalidConditionError, match="null is only allowed"):
            compile_condition({"column": "x", "operator": "eq", "value": None}, "postgresql")

    def test_missing_value_rejected(self):
        """Test that eq without a value is rejected."""
        with pytest.raises(InvalidConditionError, match="requires a value"):
            compile_condition({"column": "x", "operator": "eq"}, "postgresql")

    def test_empty_in_list_rejected(self):
        """Test that IN needs a non-empty list."""
        with pytest.raises(InvalidConditionError, match="non-empty array"):
            compile_condition({"column": "x", "operator": "in", "value": []}, "postgresql")

    def test_in_list_with_objects_rejected(self):
        """Test that IN values must be strings or numbers."""
        with pytest.raises(InvalidConditionError, match="strings or numbers"):
            compile_condition({"column": "x", "operator": "in", "value": [{"a": 1}]}, "postgresql")

    def test_like_requires_string(self):
        """Test that LIKE rejects numbers."""
        with pytest.raises(InvalidConditionError, match="LIKE operator requires a string"):
            compile_condition({"column": "x", "operator": "like", "value": 5}, "postgresql")

    def test_range_rejects_boolean(self):
        """Test that range operators reject booleans."""
        with pytest.raises(InvalidConditionError, match="GT operator requires a string or number"):
            compile_condition({"column": "x", "operator": "gt", "value": True}, "postgresql")

    def test_unsupported_operator(self):
        """Test that unknown operators are rejected."""
        with pytest.raises(InvalidConditionError, match="Unsupported operator 'between'"):
            compile_condition({"column": "x", "operator": "between", "value": 1}, "postgresql")

    def test_invalid_column(self):
        """Test that unsafe column names never reach the SQL text."""
        with pytest.raises(InvalidIdentifierError):
            compile_condition({"column": "x; DROP TABLE y", "operator": "eq", "value": 1}, "postgresql")


class TestBuildSelectQuery:
    """Test cases for build_select_query."""

    def test_select_all(self):
        """Test the minimal SELECT."""
        query = build_select_query("users", "postgresql")
        assert query.template == 'SELECT * FROM "users"'
        assert query.parameters == ()

    def test_full_select(self):
        """Test projection, filters, ordering and paging together."""
        query = build_select_query(
            "public.users",
            "postgresql",
            columns=["id", "email"],
            where=[{"column": "age", "operator": "gte", "value": 18},
                   {"column": "status", "operator": "in", "value": ["active", "trial"]}],
            order_by=[OrderBy("created_at", "desc"), {"column": "id"}],
            limit=10,
            offset=20,
        )
        assert query.template == (
            'SELECT "id", "email" FROM "public"."users" WHERE "age" >= %s AND "status" IN (%s, %s) '
            'ORDER BY "created_at" DESC, "id" ASC LIMIT %s OFFSET %s'
        )
        assert query.parameters == (18, "active", "trial", 10, 20)

    def test_mysql_and_sqlite_placeholders(self):
        """Test vendor-specific quoting and placeholders."""
        mysql = build_select_query("users", "mysql", where=[{"column": "id", "operator": "eq", "value": 1}], limit=5)
        assert mysql.template == "SELECT * FROM `users` WHERE `id` = %s LIMIT %s"

        sqlite = build_select_query("users", "sqlite", where=[{"column": "id", "operator": "eq", "value": 1}])
        assert sqlite.template == 'SELECT * FROM "users" WHERE "id" = ?'

    @pytest.mark.parametrize("vendor,expected", [
        ("sqlite", 'SELECT * FROM "users" LIMIT -1 OFFSET ?'),
        ("mysql", "SELECT * FROM `users` LIMIT 18446744073709551615 OFFSET %s"),
        ("postgresql", 'SELECT * FROM "users" OFFSET %s'),
    ])
    def test_offset_without_limit(self, vendor, expected):
        """Test that OFFSET alone gets an unbounded LIMIT where the vendor requires one."""
        query = build_select_query("users", vendor, offset=2)
        assert query.template == expected
        assert query.parameters == (2,)

    def test_values_never_in_template(self):
        """Test that hostile values only ever appear as parameters."""
        payload = "'; DROP TABLE users; --"
        query = build_select_query("users", "postgresql", where=[{"column": "name", "operator": "eq", "value": payload}])
        assert payload not in query.template
        assert query.parameters == (payload,)

    def test_invalid_order_direction(self):
        """Test that ORDER BY only accepts asc/desc."""
        with pytest.raises(QueryValidationError, match="ORDER BY direction"):
            build_select_query("users", "postgresql", order_by=[{"column": "id", "direction": "sideways"}])

    def test_negative_limit(self):
        """Test that LIMIT and OFFSET must be non-negative integers."""
        with pytest.raises(QueryValidationError, match="LIMIT must be a non-negative integer"):
            build_select_query("users", "postgresql", limit=-1)
        with pytest.raises(QueryValidationError, match="OFFSET must be a non-negative integer"):
            build_select_query("users", "postgresql", offset=1.5)

    def test_invalid_table(self):
        """Test that invalid table names are rejected."""
        with pytest.raises(InvalidIdentifierError):
            build_select_query("users; --", "postgresql")


class TestBuildInsertQuery:
    """Test cases for build_insert_query."""

    def test_single_row(self):
        """Test a single-row insert."""
        built = build_insert_query("users", {"email": "a@b.c", "name": "A"}, "postgresql")
        assert built.query.template == 'INSERT INTO "users" ("email", "name") VALUES (%s, %s)'
        assert built.query.parameters == ("a@b.c", "A")
        assert built.returning_mode == "none"

    def test_multi_row_union_with_default(self):
        """Test that missing columns are filled with DEFAULT in column-union order."""
        built = build_insert_query("users", [{"email": "a"}, {"name": "B", "email": "b"}], "postgresql")
        assert built.query.template == (
            'INSERT INTO "users" ("email", "name") VALUES (%s, DEFAULT), (%s, %s)'
        )
        assert built.query.parameters == ("a", "b", "B")

    def test_sqlite_rejects_ragged_rows(self):
        """Test that SQLite cannot fill missing values with DEFAULT."""
        with pytest.raises(QueryValidationError, match="same columns"):
            build_insert_query("users", [{"email": "a"}, {"email": "b", "name": "B"}], "sqlite")

    def test_returning_id(self):
        """Test RETURNING of the id column."""
        built = build_insert_query("users", {"email": "a"}, "postgresql", returning={"mode": "id", "idColumn": "user_id"})
        assert built.query.template.endswith(' RETURNING "user_id"')
        assert built.id_column == "user_id"

    def test_returning_row(self):
        """Test RETURNING of full rows."""
        built = build_insert_query("users", {"email": "a"}, "sqlite", returning={"mode": "row"})
        assert built.query.template.endswith(" RETURNING *")

    def test_mysql_has_no_returning_clause(self):
        """Test that MySQL id mode relies on the driver instead of RETURNING."""
        built = build_insert_query("users", {"email": "a"}, "mysql", returning={"mode": "id"})
        assert "RETURNING" not in built.query.template
        assert not built.supports_returning

    def test_mysql_row_mode_rejected(self):
        """Test that full-row returning is refused on MySQL."""
        with pytest.raises(QueryValidationError, match="not supported for mysql"):
            build_insert_query("users", {"email": "a"}, "mysql", returning={"mode": "row"})

    def test_id_column_requires_id_mode(self):
        """Test that idColumn is only valid with mode id."""
        with pytest.raises(QueryValidationError, match="idColumn can only be provided"):
            build_insert_query("users", {"email": "a"}, "postgresql", returning={"mode": "row", "idColumn": "id"})

    def test_invalid_returning_mode(self):
        """Test that unknown returning modes are rejected."""
        with pytest.raises(QueryValidationError, match="returning.mode"):
            build_insert_query("users", {"email": "a"}, "postgresql", returning={"mode": "all"})

    def test_empty_row_uses_default_values(self):
        """Test the empty-row insert per vendor."""
        assert build_insert_query("t", {}, "postgresql").query.template == 'INSERT INTO "t" DEFAULT VALUES'
        assert build_insert_query("t", {}, "mysql").query.template == "INSERT INTO `t` () VALUES ()"

    def test_multiple_empty_rows_rejected(self):
        """Test that several all-default rows are rejected."""
        with pytest.raises(QueryValidationError, match="DEFAULT VALUES"):
            build_insert_query("t", [{}, {}], "postgresql")

    def test_empty_list_rejected(self):
        """Test that an empty list of rows is rejected."""
        with pytest.raises(QueryValidationError, match="must not be an empty array"):
            build_insert_query("t", [], "postgresql")

    def test_non_object_row_rejected(self):
        """Test that every row must be a mapping."""
        with pytest.raises(QueryValidationError, match="index 1 must be an object"):
            build_insert_query("t", [{"a": 1}, 2], "postgresql")

    def test_invalid_column_rejected(self):
        """Test that insert column names are validated."""
        with pytest.raises(InvalidIdentifierError):
            build_insert_query("t", {"bad column": 1}, "postgresql")


class TestBuildUpdateQuery:
    """Test cases for build_update_query."""

    def test_update_with_where(self):
        """Test SET parameters precede WHERE parameters."""
        built = build_update_query(
            "users", {"name": "A", "age": 3}, "postgresql",
            where=[{"column": "id", "operator": "eq", "value": 7}],
        )
        assert built.query.template == 'UPDATE "users" SET "name" = %s, "age" = %s WHERE "id" = %s'
        assert built.query.parameters == ("A", 3, 7)
        assert built.where_applied
        assert not built.uses_optimistic_lock

    def test_update_without_where_rejected(self):
        """Test that an unguarded update is refused."""
        with pytest.raises(QueryValidationError, match="allowFullTableUpdate=true"):
            build_update_query("users", {"name": "A"}, "postgresql")

    def test_full_table_update_allowed(self):
        """Test the explicit full-table override."""
        built = build_update_query("users", {"name": "A"}, "mysql", allow_full_table_update=True)
        assert built.query.template == "UPDATE `users` SET `name` = %s"
        assert not built.where_applied

    def test_optimistic_lock_counts_as_guard(self):
        """Test that the lock predicate alone satisfies the WHERE guard."""
        built = build_update_query(
            "users", {"name": "A", "version": 4}, "sqlite",
            optimistic_lock=OptimisticLock("version", 3),
        )
        assert built.query.template == 'UPDATE "users" SET "name" = ?, "version" = ? WHERE "version" = ?'
        assert built.query.parameters == ("A", 4, 3)
        assert built.uses_optimistic_lock

    def test_optimistic_lock_appended_after_where(self):
        """Test that the lock predicate is ANDed after user conditions."""
        built = build_update_query(
            "users", {"name": "A"}, "postgresql",
            where=[{"column": "id", "operator": "eq", "value": 1}],
            optimistic_lock={"column": "version", "expectedValue": 2},
        )
        assert built.query.template.endswith('WHERE "id" = %s AND "version" = %s')
        assert built.query.parameters == ("A", 1, 2)

    def test_optimistic_lock_requires_value(self):
        """Test that a lock without an expected value is rejected."""
        with pytest.raises(QueryValidationError, match="expectedValue"):
            build_update_query("users", {"name": "A"}, "postgresql", optimistic_lock={"column": "version"})

    def test_empty_data_rejected(self):
        """Test that there must be something to set."""
        with pytest.raises(QueryValidationError, match="must not be empty"):
            build_update_query("users", {}, "postgresql", allow_full_table_update=True)


class TestBuildDeleteQuery:
    """Test cases for build_delete_query."""

    def test_delete_with_where(self):
        """Test a guarded DELETE."""
        built = build_delete_query("users", "postgresql", where=[{"column": "id", "operator": "eq", "value": 1}])
        assert built.query.template == 'DELETE FROM "users" WHERE "id" = %s'
        assert built.query.parameters == (1,)
        assert not built.uses_soft_delete

    def test_delete_without_where_rejected(self):
        """Test that an unguarded delete is refused."""
        with pytest.raises(QueryValidationError, match="allowFullTableDelete=true"):
            build_delete_query("users", "postgresql")

    def test_full_table_delete_allowed(self):
        """Test the explicit full-table override."""
        built = build_delete_query("users", "sqlite", allow_full_table_delete=True)
        assert built.query.template == 'DELETE FROM "users"'

    def test_soft_delete_defaults_to_current_timestamp(self):
        """Test soft delete without an explicit value."""
        built = build_delete_query(
            "users", "postgresql",
            where=[{"column": "id", "operator": "eq", "value": 1}],
            soft_delete=SoftDelete(),
        )
        assert built.query.template == 'UPDATE "users" SET "deleted_at" = CURRENT_TIMESTAMP WHERE "id" = %s'
        assert built.query.parameters == (1,)
        assert built.uses_soft_delete

    def test_soft_delete_with_value(self):
        """Test that the soft-delete value precedes WHERE parameters."""
        built = build_delete_query(
            "users", "mysql",
            where=[{"column": "id", "operator": "in", "value": [1, 2]}],
            soft_delete={"column": "removed", "value": "2024-01-01"},
        )
        assert built.query.template == "UPDATE `users` SET `removed` = %s WHERE `id` IN (%s, %s)"
        assert built.query.parameters == ("2024-01-01", 1, 2)
