"""
Connection manager for Relational MCP Server.

Owns a single DB-API connection for one vendor. Tool calls create a manager,
use it and disconnect it before returning; there is no pooling.
"""

import logging
import threading
import time
from contextlib import closing, contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from .dialects import get_dialect
from .drivers import check_driver
from .exceptions import DatabaseConnectionError, NotConnectedError, RelationalToolkitError
from .models import DatabaseVendor

logger = logging.getLogger(__name__)

T = TypeVar("T")

SQL_LOG_LIMIT = 100


class ConnectionState(str, Enum):
    """Lifecycle states of a ConnectionManager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


def truncate_sql(sql: str, limit: int = SQL_LOG_LIMIT) -> str:
    """Shorten SQL for log output."""
    sql = " ".join(str(sql).split())
    return sql if len(sql) <= limit else sql[:limit] + "..."


def row_to_dict(row: Any, columns: List[str]) -> Dict[str, Any]:
    """Convert a driver row (dict, sqlite3.Row or sequence) into a plain dict."""
    if isinstance(row, dict):
        return dict(row)
    if hasattr(row, "keys"):
        return {key: row[key] for key in row.keys()}
    return dict(zip(columns, row))


class ConnectionManager:
    """
    Single-connection manager for PostgreSQL, MySQL and SQLite.

    All access to the underlying connection is serialized through an RLock, so a
    transaction can hold the connection while nested `execute` calls on the same
    thread still go through.
    """

    def __init__(self, config):
        """
        Initialize the manager.

        Args:
            config: ConnectionConfig with the vendor and a connection string or credentials
        """
        self.config = config
        self.vendor = DatabaseVendor(config.vendor)
        self.dialect = get_dialect(self.vendor)
        self._connection = None
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def get_vendor(self) -> DatabaseVendor:
        return self.vendor

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def connect(self) -> None:
        """
        Open the connection.

        Raises:
            MissingDriverError: If the vendor's driver is not installed
            DatabaseConnectionError: If the driver fails to connect
        """
        with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return

            check_driver(self.vendor)

            self._state = ConnectionState.CONNECTING
            start_time = time.monotonic()
            logger.info(f"Connecting to {self.vendor.value} database")

            try:
                self._connection = self.dialect.connect(self.config.connection)
            except RelationalToolkitError:
                self._state = ConnectionState.DISCONNECTED
                raise
            except Exception as e:
                self._state = ConnectionState.DISCONNECTED
                logger.error(
                    f"Failed to connect to {self.vendor.value} database: {e}",
                    extra={"vendor": self.vendor.value},
                )
                raise DatabaseConnectionError(f"Failed to connect to {self.vendor.value} database") from e

            self._state = ConnectionState.CONNECTED
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.debug(
                f"Connected to {self.vendor.value} database in {duration_ms:.2f}ms",
                extra={"vendor": self.vendor.value},
            )

    def disconnect(self) -> None:
        """Close the connection. Safe to call repeatedly; close errors are logged."""
        with self._lock:
            if self._connection is None:
                self._state = ConnectionState.DISCONNECTED
                return

            self._state = ConnectionState.DISCONNECTING
            try:
                self._connection.close()
                logger.debug(f"Closed {self.vendor.value} connection")
            except Exception as e:
                logger.warning(f"Error closing {self.vendor.value} connection: {e}")
            finally:
                self._connection = None
                self._state = ConnectionState.DISCONNECTED

    def execute_in_connection(self, operation: Callable[[Any], T]) -> T:
        """
        Run `operation(connection)` while holding the connection lock.

        Raises:
            NotConnectedError: If the manager is not connected
        """
        with self._lock:
            if self._state != ConnectionState.CONNECTED or self._connection is None:
                raise NotConnectedError()
            return operation(self._connection)

    @contextmanager
    def cursor(self) -> Iterator[Any]:
        """Hold the connection lock and yield a dialect cursor that is closed on exit."""
        with self._lock:
            if self._state != ConnectionState.CONNECTED or self._connection is None:
                raise NotConnectedError()
            with closing(self.dialect.cursor(self._connection)) as cursor:
                yield cursor

    def execute(self, sql: str, params: Any = None) -> Dict[str, Any]:
        """
        Execute one statement and return the raw driver outcome.

        Returns:
            Dictionary with `rows`, `columns`, `rowCount` and any driver insert id fields
        """
        return self.execute_in_connection(lambda connection: self.run_statement(connection, sql, params))

    def run_statement(self, connection: Any, sql: str, params: Any = None) -> Dict[str, Any]:
        """Execute a statement on an already acquired connection."""
        logger.debug(
            f"Executing SQL: {truncate_sql(sql)}",
            extra={"vendor": self.vendor.value, "param_count": _param_count(params)},
        )

        with closing(self.dialect.cursor(connection)) as cursor:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, params)

            columns: List[str] = []
            rows: List[Dict[str, Any]] = []
            if cursor.description:
                columns = [description[0] for description in cursor.description]
                rows = [row_to_dict(row, columns) for row in cursor.fetchall()]

            result = {
                "rows": rows,
                "columns": columns,
                "rowCount": cursor.rowcount,
            }
            result.update(self.dialect.insert_id_fields(cursor))
            return result

    def is_healthy(self) -> bool:
        """Run `SELECT 1`; any failure means unhealthy."""
        if not self.is_connected():
            return False
        try:
            self.execute("SELECT 1")
            return True
        except Exception as e:
            logger.debug(f"Health check failed for {self.vendor.value}: {e}")
            return False

    def __enter__(self) -> "ConnectionManager":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()


def _param_count(params: Any) -> Optional[int]:
    if params is None:
        return 0
    try:
        return len(params)
    except TypeError:
        return None
