"""Shared pytest fixtures for Relational MCP Server tests."""

import pytest

from relational_mcp_server import tools
from relational_mcp_server.config import ConnectionConfig
from relational_mcp_server.connection_manager import ConnectionManager
from relational_mcp_server.schema_inspector import SchemaInspector

from fixtures import FakeClock, create_sample_database


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sqlite_db_path(tmp_path):
    """Path of a SQLite file holding the sample tables."""
    path = str(tmp_path / "sample.db")
    create_sample_database(path)
    return path


@pytest.fixture
def sqlite_manager(sqlite_db_path):
    """Connected manager for the sample SQLite database."""
    manager = ConnectionManager(ConnectionConfig(vendor="sqlite", connection=sqlite_db_path))
    manager.connect()
    yield manager
    manager.disconnect()


@pytest.fixture
def memory_manager():
    """Connected manager for an empty in-memory SQLite database."""
    manager = ConnectionManager(ConnectionConfig(vendor="sqlite", connection=":memory:"))
    manager.connect()
    yield manager
    manager.disconnect()


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Isolate the process-wide schema cache and tool defaults between tests."""
    SchemaInspector.clear_cache()
    tools._defaults = tools.ToolDefaults()
    yield
    SchemaInspector.clear_cache()
    SchemaInspector.configure_cache(256)
    tools._defaults = tools.ToolDefaults()
