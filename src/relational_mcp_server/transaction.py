"""
Transactions and savepoints.

`with_transaction` holds the manager's connection for the whole unit of work,
issues BEGIN/COMMIT/ROLLBACK explicitly (connections are opened in autocommit
mode) and hands the operation a `ManagedTransaction` that behaves like an
executor for the query layer.
"""

import itertools
import logging
import math
import re
import time
from typing import Any, Callable, Dict, Optional, TypeVar

from .connection_manager import ConnectionManager
from .exceptions import QueryTimeoutError, QueryValidationError, TransactionError
from .models import DatabaseVendor

logger = logging.getLogger(__name__)

T = TypeVar("T")

SAVEPOINT_NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

ISOLATION_LEVELS = {
    "read uncommitted": "READ UNCOMMITTED",
    "read committed": "READ COMMITTED",
    "repeatable read": "REPEATABLE READ",
    "serializable": "SERIALIZABLE",
}

_transaction_sequence = itertools.count(1)


def resolve_isolation_level(level: Optional[str]) -> Optional[str]:
    if level is None:
        return None
    normalized = " ".join(str(level).lower().replace("_", " ").split())
    if normalized not in ISOLATION_LEVELS:
        raise QueryValidationError(
            f"Unsupported isolation level '{level}'. Use one of: {', '.join(ISOLATION_LEVELS)}"
        )
    return normalized


def resolve_timeout(timeout_ms: Optional[float]) -> Optional[float]:
    if timeout_ms is None:
        return None
    valid = (
        isinstance(timeout_ms, (int, float))
        and not isinstance(timeout_ms, bool)
        and math.isfinite(timeout_ms)
        and timeout_ms > 0
    )
    if not valid:
        raise QueryValidationError("Transaction timeout must be a positive number")
    return timeout_ms


class ManagedTransaction:
    """
    Handle passed to transactional operations.

    Exposes the same `execute(sql, params)` / `vendor` surface as
    ConnectionManager, so builders and executors work unchanged inside a
    transaction.
    """

    def __init__(
        self,
        transaction_id: str,
        manager: ConnectionManager,
        connection: Any,
        isolation_level: Optional[str] = None,
        timeout_ms: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.id = transaction_id
        self.manager = manager
        self.vendor = manager.get_vendor()
        self.dialect = manager.dialect
        self.isolation_level = isolation_level
        self.timeout_ms = timeout_ms
        self._connection = connection
        self._clock = clock
        self._started_at = clock()
        self._completed = False
        self._cancelled_reason: Optional[str] = None
        self._savepoint_counter = 0
        self._sqlite_read_uncommitted_original: Optional[int] = None
        self._restore_sqlite_read_uncommitted = False

    def is_active(self) -> bool:
        return not self._completed

    def elapsed_ms(self) -> float:
        return (self._clock() - self._started_at) * 1000

    def check_timeout(self) -> None:
        """Cancel the transaction once its time budget is spent."""
        if self.timeout_ms is not None and self.elapsed_ms() > self.timeout_ms:
            self.cancel(f"Transaction timed out after {self.timeout_ms:g}ms")
        if self._cancelled_reason:
            raise QueryTimeoutError(self._cancelled_reason)

    def cancel(self, reason: str) -> None:
        if not self._cancelled_reason:
            self._cancelled_reason = reason

    def execute(self, sql: str, params: Any = None) -> Dict[str, Any]:
        self.check_timeout()
        if not self.is_active():
            raise TransactionError("Transaction is no longer active")
        return self._run(sql, params)

    def _run(self, sql: str, params: Any = None) -> Dict[str, Any]:
        return self.manager.run_statement(self._connection, sql, params)

    def begin(self) -> None:
        if self.dialect.isolation_before_begin:
            # MySQL only applies SET TRANSACTION to the next transaction
            self._apply_isolation_level()
            self._run("BEGIN")
            return

        self._run("BEGIN")
        self._apply_isolation_level()

    def commit(self) -> None:
        if not self.is_active():
            return
        self._run("COMMIT")
        self._restore_sqlite_isolation()
        self._completed = True

    def rollback(self) -> None:
        if not self.is_active():
            return
        self._run("ROLLBACK")
        self._restore_sqlite_isolation()
        self._completed = True

    def create_savepoint(self, name: Optional[str] = None) -> str:
        self._require_active()
        if name is None:
            self._savepoint_counter += 1
            name = f"sp_{self._savepoint_counter}"
        savepoint = _validate_savepoint_name(name)
        self._run(f"SAVEPOINT {savepoint}")
        return savepoint

    def rollback_to_savepoint(self, name: str) -> None:
        self._require_active()
        self._run(f"ROLLBACK TO SAVEPOINT {_validate_savepoint_name(name)}")

    def release_savepoint(self, name: str) -> None:
        self._require_active()
        self._run(f"RELEASE SAVEPOINT {_validate_savepoint_name(name)}")

    def with_savepoint(self, operation: Callable[["ManagedTransaction"], T], name: Optional[str] = None) -> T:
        """Run `operation` inside a savepoint, rolling back to it on error."""
        savepoint = self.create_savepoint(name)

        try:
            result = operation(self)
        except Exception:
            self.rollback_to_savepoint(savepoint)
            try:
                self.release_savepoint(savepoint)
            except Exception as release_error:
                logger.debug(f"Ignoring savepoint release error after rollback: {release_error}")
            raise

        self.release_savepoint(savepoint)
        return result

    def _require_active(self) -> None:
        if not self.is_active():
            raise TransactionError("Transaction is no longer active")

    def _apply_isolation_level(self) -> None:
        if not self.isolation_level:
            return

        if self.dialect.isolation_via_pragma:
            if self.isolation_level == "read uncommitted":
                self._sqlite_read_uncommitted_original = self._read_sqlite_read_uncommitted()
                self._run("PRAGMA read_uncommitted = 1")
                self._restore_sqlite_read_uncommitted = True
            else:
                logger.debug(
                    f"Ignoring SQLite isolation level '{self.isolation_level}'",
                    extra={"transaction_id": self.id},
                )
            return

        self._run(f"SET TRANSACTION ISOLATION LEVEL {ISOLATION_LEVELS[self.isolation_level]}")

    def _read_sqlite_read_uncommitted(self) -> Optional[int]:
        try:
            rows = self._run("PRAGMA read_uncommitted")["rows"]
        except Exception as e:
            logger.debug(f"Could not read SQLite read_uncommitted pragma: {e}")
            return None
        if rows:
            value = next(iter(rows[0].values()), None)
            if isinstance(value, int):
                return 1 if value == 1 else 0
        return None

    def _restore_sqlite_isolation(self) -> None:
        if not self._restore_sqlite_read_uncommitted:
            return
        try:
            self._run(f"PRAGMA read_uncommitted = {self._sqlite_read_uncommitted_original or 0}")
        except Exception as e:
            logger.warning(
                f"Failed to restore SQLite read_uncommitted pragma: {e}",
                extra={"transaction_id": self.id},
            )
        finally:
            self._restore_sqlite_read_uncommitted = False


def _validate_savepoint_name(name: str) -> str:
    if not isinstance(name, str) or not SAVEPOINT_NAME_PATTERN.fullmatch(name):
        raise QueryValidationError(
            "Invalid savepoint name. Use only letters, numbers, and underscores, "
            "and start with a letter or underscore."
        )
    return name


def with_transaction(
    manager: ConnectionManager,
    operation: Callable[[ManagedTransaction], T],
    isolation_level: Optional[str] = None,
    timeout_ms: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """
    Run `operation(tx)` inside BEGIN/COMMIT.

    Any exception rolls the transaction back and propagates unchanged. When
    `timeout_ms` is exceeded the transaction is cancelled: further statements
    raise QueryTimeoutError and the work is rolled back.

    Args:
        manager: Connected ConnectionManager
        operation: Callable receiving the ManagedTransaction
        isolation_level: "read uncommitted", "read committed", "repeatable read" or "serializable"
        timeout_ms: Positive time budget in milliseconds
        clock: Monotonic clock in seconds

    Returns:
        Whatever `operation` returns
    """
    level = resolve_isolation_level(isolation_level)
    timeout = resolve_timeout(timeout_ms)
    transaction_id = f"tx-{next(_transaction_sequence)}"
    vendor = DatabaseVendor(manager.get_vendor())

    logger.debug(
        f"Starting transaction {transaction_id}",
        extra={"transaction_id": transaction_id, "vendor": vendor.value,
               "isolation_level": level, "timeout_ms": timeout},
    )

    def run(connection):
        transaction = ManagedTransaction(
            transaction_id,
            manager,
            connection,
            isolation_level=level,
            timeout_ms=timeout,
            clock=clock,
        )
        transaction.begin()

        try:
            result = operation(transaction)
            transaction.check_timeout()
            if transaction.is_active():
                transaction.commit()
        except Exception as e:
            if transaction.is_active():
                try:
                    transaction.rollback()
                except Exception as rollback_error:
                    logger.error(
                        f"Transaction {transaction_id} rollback failed: {rollback_error}",
                        extra={"transaction_id": transaction_id, "vendor": vendor.value},
                    )
            logger.error(
                f"Transaction {transaction_id} failed after {transaction.elapsed_ms():.2f}ms: {e}",
                extra={"transaction_id": transaction_id, "vendor": vendor.value},
            )
            raise

        logger.debug(
            f"Transaction {transaction_id} committed in {transaction.elapsed_ms():.2f}ms",
            extra={"transaction_id": transaction_id, "vendor": vendor.value},
        )
        return result

    return manager.execute_in_connection(run)
