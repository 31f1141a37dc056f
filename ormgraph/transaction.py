"""Thread-local transactions with SAVEPOINT-based nesting."""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TransactionError(Exception):
    """Custom exception for transaction-related errors"""


class TransactionManager:
    """Owns one DB-API connection per thread and the nesting level of its transaction."""

    def __init__(self, connection_factory: Callable[[], Any]):
        """
        Initialize the transaction manager.

        Args:
            connection_factory: A callable that returns a database connection
        """
        self._connection_factory = connection_factory
        self._local = threading.local()
        # every connection opened by any thread, keyed by id()
        self._opened: dict[int, Any] = {}
        self._opened_lock = threading.Lock()

    # get connection (built on first call)

    def get_connection(self):
        """Get or create a connection for the current thread"""
        connection = getattr(self._local, "connection", None)
        with self._opened_lock:
            if connection is not None and id(connection) in self._opened:
                return connection
        connection = self._connection_factory()
        self._local.connection = connection
        with self._opened_lock:
            self._opened[id(connection)] = connection
        return connection

    def close_all(self):
        """Close the connections of every thread.

        A thread that still holds one of them opens a fresh connection on
        its next get_connection().
        """
        with self._opened_lock:
            connections = list(self._opened.values())
            self._opened.clear()
        if hasattr(self._local, "connection"):
            del self._local.connection
        for connection in connections:
            connection.close()
        if connections:
            logger.debug("Closed %d connection(s)", len(connections))

    @property
    def open_connections(self) -> int:
        """Number of connections opened and not closed yet, across all threads."""
        with self._opened_lock:
            return len(self._opened)

    # transaction level

    @property
    def level(self) -> int:
        """Current transaction nesting level of the calling thread (0 outside any transaction)."""
        return getattr(self._local, "transaction_level", 0)

    def _set_level(self, level: int):
        self._local.transaction_level = max(0, level)

    # actual transaction itself

    def _run(self, connection, sql: str):
        logger.debug(sql)
        cursor = connection.cursor()
        try:
            cursor.execute(sql)
        finally:
            cursor.close()

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with SAVEPOINT support.

        The outermost scope commits or rolls back; nested scopes release or
        roll back to their own savepoint.

        Yields:
            Transaction: Transaction object for executing statements
        """
        connection = self.get_connection()
        new_level = self.level + 1
        self._set_level(new_level)
        savepoint_name = f"savepoint_{new_level}" if new_level > 1 else None
        transaction_obj = Transaction(connection, self, new_level)

        try:
            if savepoint_name:
                self._run(connection, f"SAVEPOINT {savepoint_name}")
            elif getattr(connection, "in_transaction", True) is False:
                # sqlite3 only opens a transaction implicitly before DML
                self._run(connection, "BEGIN")

            with transaction_obj:
                yield transaction_obj

            if savepoint_name:
                self._run(connection, f"RELEASE SAVEPOINT {savepoint_name}")
            else:
                logger.debug("COMMIT")
                connection.commit()

        except Exception:
            if savepoint_name:
                self._run(connection, f"ROLLBACK TO SAVEPOINT {savepoint_name}")
            else:
                logger.debug("ROLLBACK")
                connection.rollback()
            raise
        finally:
            self._set_level(new_level - 1)


class Transaction:
    """Handle yielded by TransactionManager.transaction(); usable only at its own level."""

    def __init__(self, connection, manager: TransactionManager, level: int):
        self._connection = connection
        self._manager = manager
        self._level = level
        self._active = True

    @property
    def level(self) -> int:
        return self._level

    def execute(self, sql: str, parameters=()):
        """
        Execute a statement within this transaction.

        Args:
            sql: SQL statement to execute
            parameters: Bound parameters

        Returns:
            The fetched rows (empty for statements without a result set)

        Raises:
            TransactionError: If trying to use a higher-level transaction
        """
        if not self._active:
            raise TransactionError("Transaction is no longer active")

        current_level = self._manager.level
        if current_level > self._level:
            raise TransactionError(
                f"Cannot use transaction level {self._level} from level {current_level}. "
                "Higher-level transactions cannot be accessed from nested transactions."
            )
        logger.debug("%s %r", sql, tuple(parameters))
        cursor = self._connection.cursor()
        try:
            cursor.execute(sql, tuple(parameters))
            return cursor.fetchall() if cursor.description else []
        finally:
            cursor.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._active = False


def transaction(connection_name: str = "default"):
    """Open a transaction scope on the named connection (see connect())."""
    from .connection import get_connection  # pylint: disable=import-outside-toplevel
    return get_connection(connection_name).transaction()
