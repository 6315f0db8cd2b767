"""Tests for vendor column type mapping."""

import pytest

from relational_mcp_server.models import TypeCategory
from relational_mcp_server.type_mapper import (
    BIG_INTEGER_NOTE,
    get_vendor_type_map,
    map_column_type,
    map_schema_types,
    normalize_type,
)


class TestNormalizeType:
    """Test cases for raw type normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("VARCHAR(255)", "varchar"),
        ("numeric(10, 2)", "numeric"),
        ("integer[]", "integer"),
        ("int(11) unsigned", "int"),
        ("  Double Precision ", "double precision"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        """Test stripping of size, array and unsigned decorations."""
        assert normalize_type(raw) == expected


class TestMapColumnType:
    """Test cases for map_column_type."""

    def test_postgresql_types(self):
        """Test representative PostgreSQL mappings."""
        assert map_column_type("postgresql", "integer").category == TypeCategory.NUMBER
        assert map_column_type("postgresql", "character varying(255)").category == TypeCategory.STRING
        assert map_column_type("postgresql", "boolean").category == TypeCategory.BOOLEAN
        assert map_column_type("postgresql", "bytea").category == TypeCategory.BYTES
        assert map_column_type("postgresql", "jsonb").category == TypeCategory.UNKNOWN
        assert map_column_type("postgresql", "numeric(12,4)").category == TypeCategory.STRING

    def test_mysql_types(self):
        """Test representative MySQL mappings."""
        assert map_column_type("mysql", "int(11) unsigned").category == TypeCategory.NUMBER
        assert map_column_type("mysql", "varchar(50)").category == TypeCategory.STRING
        assert map_column_type("mysql", "longblob").category == TypeCategory.BYTES
        assert map_column_type("mysql", "decimal(10,2)").category == TypeCategory.STRING

    def test_big_integers_map_to_string_with_note(self):
        """Test that 64-bit integers are strings on PostgreSQL and MySQL."""
        for vendor in ("postgresql", "mysql"):
            mapped = map_column_type(vendor, "BIGINT")
            assert mapped.category == TypeCategory.STRING
            assert mapped.note == BIG_INTEGER_NOTE

    def test_sqlite_bigint_is_number(self):
        """Test that SQLite integers of any width stay numbers."""
        mapped = map_column_type("sqlite", "BIGINT")
        assert mapped.category == TypeCategory.NUMBER
        assert mapped.note is None

    def test_unmapped_type(self):
        """Test that unknown types map to unknown with a note."""
        mapped = map_column_type("postgresql", "hstore", nullable=True)
        assert mapped.category == TypeCategory.UNKNOWN
        assert "hstore" in mapped.note
        assert mapped.nullable is True

    def test_unsupported_vendor_never_raises(self):
        """Test that an unsupported vendor yields unknown instead of an error."""
        mapped = map_column_type("oracle", "NUMBER")
        assert mapped.category == TypeCategory.UNKNOWN
        assert "Unsupported vendor" in mapped.note

    def test_to_dict(self):
        """Test camelCase serialization."""
        data = map_column_type("postgresql", "text").to_dict()
        assert data == {
            "category": "string",
            "rawType": "text",
            "normalizedType": "text",
            "nullable": False,
        }


class TestMapSchemaTypes:
    """Test cases for whole-schema mapping helpers."""

    def test_map_schema_types(self):
        """Test grouping of mapped columns by table."""
        result = map_schema_types("sqlite", [
            {"table": "users", "name": "id", "type": "INTEGER", "nullable": False},
            {"table": "users", "name": "email", "type": "TEXT", "nullable": True},
            {"table": "files", "name": "body", "type": "BLOB"},
        ])
        assert set(result) == {"users", "files"}
        assert result["users"]["email"].nullable is True
        assert result["files"]["body"].category == TypeCategory.BYTES

    def test_get_vendor_type_map_is_a_copy(self):
        """Test that callers cannot mutate the shared mapping table."""
        type_map = get_vendor_type_map("mysql")
        type_map["int"] = TypeCategory.BYTES
        assert map_column_type("mysql", "int").category == TypeCategory.NUMBER
