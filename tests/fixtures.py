"""Test fixtures and sample data for Relational MCP Server tests."""

import sqlite3
from typing import Any, Dict, List, Optional

from relational_mcp_server.models import (
    ColumnSchema,
    DatabaseSchema,
    ForeignKeySchema,
    IndexSchema,
    TableSchema,
)

SAMPLE_DDL = [
    """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email VARCHAR(100) NOT NULL UNIQUE,
        name TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        total NUMERIC(10, 2) NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'new'
    )
    """,
    "CREATE INDEX idx_orders_user_status ON orders (user_id, status)",
    """
    CREATE TABLE order_items (
        order_id INTEGER NOT NULL,
        line_no INTEGER NOT NULL,
        sku TEXT NOT NULL,
        PRIMARY KEY (order_id, line_no)
    )
    """,
]

SAMPLE_USERS = [
    ("alice@example.com", "Alice"),
    ("bob@example.com", "Bob"),
    ("carol@example.com", "Carol"),
    ("dave@example.com", None),
]


def create_sample_database(path: str) -> None:
    """Create the sample tables and rows in a SQLite file."""
    connection = sqlite3.connect(path)
    try:
        for statement in SAMPLE_DDL:
            connection.execute(statement)
        connection.executemany("INSERT INTO users (email, name) VALUES (?, ?)", SAMPLE_USERS)
        connection.executemany(
            "INSERT INTO orders (user_id, total, status) VALUES (?, ?, ?)",
            [(1, 10.5, "new"), (1, 20, "paid"), (2, 5, "new")],
        )
        connection.commit()
    finally:
        connection.close()


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0):
        # whole milliseconds keep boundary comparisons exact
        self._elapsed_ms = start * 1000

    def __call__(self) -> float:
        return self._elapsed_ms / 1000

    def advance_ms(self, milliseconds: float) -> None:
        self._elapsed_ms += milliseconds


class RecordingExecutor:
    """Executor stand-in that records statements and replays canned results."""

    def __init__(self, vendor: str = "postgresql", results: Optional[List[Any]] = None):
        self.vendor = vendor
        self.results = list(results or [])
        self.calls: List[tuple] = []

    def execute(self, sql: str, params: Any = None) -> Dict[str, Any]:
        self.calls.append((sql, params))
        if not self.results:
            return {"rows": [], "columns": [], "rowCount": 0}
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def statements(self) -> List[str]:
        return [sql for sql, _ in self.calls]


def make_column(name: str, column_type: str = "integer", nullable: bool = False,
                default: Any = None, primary_key: bool = False) -> ColumnSchema:
    return ColumnSchema(
        name=name,
        type=column_type,
        is_nullable=nullable,
        default_value=default,
        is_primary_key=primary_key,
    )


def make_users_table(schema: Optional[str] = "public") -> TableSchema:
    return TableSchema(
        name="users",
        schema=schema,
        columns=[
            make_column("id", "integer", primary_key=True),
            make_column("email", "character varying(255)"),
            make_column("name", "text", nullable=True),
        ],
        primary_key=["id"],
        indexes=[IndexSchema(name="users_email_key", columns=["email"], is_unique=True)],
    )


def make_orders_table(schema: Optional[str] = "public") -> TableSchema:
    return TableSchema(
        name="orders",
        schema=schema,
        columns=[
            make_column("id", "integer", primary_key=True),
            make_column("user_id", "integer"),
            make_column("total", "numeric(10,2)", default="0"),
        ],
        primary_key=["id"],
        foreign_keys=[ForeignKeySchema(
            name="orders_user_id_fkey",
            column="user_id",
            referenced_table="users",
            referenced_column="id",
            referenced_schema=schema,
        )],
    )


def make_schema(tables: Optional[List[TableSchema]] = None, vendor: str = "postgresql") -> DatabaseSchema:
    return DatabaseSchema(
        vendor=vendor,
        generated_at="2024-01-01T00:00:00.000Z",
        tables=tables if tables is not None else [make_orders_table(), make_users_table()],
    )
