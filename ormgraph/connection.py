"""Named database connections: URL registry, statement execution and worker pool."""

import logging
import threading
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, NamedTuple, Optional, Sequence

from .dialects import Dialect, get_dialect_for_scheme
from .statement import InsertStatement, SelectStatement, Statement
from .transaction import TransactionManager

logger = logging.getLogger(__name__)


class _CursorResult(NamedTuple):
    columns: list[str]
    rows: list[tuple]
    rowcount: int
    lastrowid: Any


class Connection:
    """A configured database: dialect, per-thread DB-API connections and a worker pool.

    Raw connections are opened lazily, one per thread, by the transaction
    manager. Outside a transaction scope every statement is committed on its
    own; inside one, the scope decides.
    """

    def __init__(self, database_url: str | Callable[[], str], name: str = "default", max_workers: int = 4):
        if not isinstance(database_url, str) and not callable(database_url):
            raise ValueError("database_url should be a str, or a method returning a str")
        self.name = name
        self.max_workers = max_workers
        self._database_url = database_url
        self._dialect: Optional[Dialect] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._transaction_manager = TransactionManager(connection_factory=self._open)

    @property
    def url(self) -> str:
        """Database URL (a callable URL is resolved on every access)."""
        if callable(self._database_url):
            return self._database_url()
        return self._database_url

    @property
    def dialect(self) -> Dialect:
        if self._dialect is None:
            self._dialect = get_dialect_for_scheme(urllib.parse.urlparse(self.url).scheme)
        return self._dialect

    def _open(self):
        url = self.url
        logger.info("Opening %s connection `%s`", self.dialect.name, self.name)
        return self.dialect.connect(url)

    @property
    def raw(self):
        """DB-API connection of the calling thread."""
        return self._transaction_manager.get_connection()

    @property
    def open_connections(self) -> int:
        """DB-API connections currently open, over all threads."""
        return self._transaction_manager.open_connections

    # transactions

    @property
    def in_transaction(self) -> bool:
        """True when the calling thread is inside a transaction scope of this connection."""
        return self._transaction_manager.level > 0

    def transaction(self):
        """Context manager for a (possibly nested) transaction on this connection."""
        return self._transaction_manager.transaction()

    # worker pool

    @property
    def executor(self) -> ThreadPoolExecutor:
        """Thread pool used to run independent read queries side by side."""
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=max(1, self.max_workers),
                    thread_name_prefix=f"ormgraph-{self.name}",
                )
            return self._executor

    def close(self):
        """Shut the worker pool down and close the connections opened by every thread."""
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
        self._transaction_manager.close_all()

    # execution

    def _execute(self, sql: str, parameters: Sequence[Any] = ()) -> _CursorResult:
        logger.debug("%s %r", sql, tuple(parameters))
        connection = self.raw
        cursor = connection.cursor()
        try:
            cursor.execute(sql, tuple(parameters))
            if cursor.description:
                columns = [description[0] for description in cursor.description]
                rows = list(cursor.fetchall())
            else:
                columns, rows = [], []
            result = _CursorResult(columns, rows, cursor.rowcount, cursor.lastrowid)
        except Exception:
            if not self.in_transaction:
                connection.rollback()
            raise
        finally:
            cursor.close()
        if not self.in_transaction:
            connection.commit()
        return result

    def execute(self, sql: str, parameters: Sequence[Any] = (), rows_as_dicts: bool = False):
        """Run raw SQL and return its rows.

        Args:
            sql: Full SQL statement, with the dialect's placeholders.
            parameters: Bound parameters.
            rows_as_dicts: If True, return list of dicts; otherwise list of tuples.

        Returns:
            List of row tuples or list of row dicts, empty for statements
            without a result set.
        """
        result = self._execute(sql, parameters)
        if rows_as_dicts:
            return [dict(zip(result.columns, row)) for row in result.rows]
        return result.rows

    def run(self, statement: Statement):
        """Compile and run a statement description.

        Returns:
            - SelectStatement: list of row dicts;
            - InsertStatement: list of identity dicts (``returning`` columns), one per row;
            - UpdateStatement / DeleteStatement: number of affected rows.
        """
        dialect = self.dialect
        if isinstance(statement, SelectStatement):
            sql, parameters = statement.compile(dialect)
            return self.execute(sql, parameters, rows_as_dicts=True)
        if isinstance(statement, InsertStatement):
            identities = []
            for row in statement.rows:
                sql, parameters = statement.compile_row(row, dialect)
                result = self._execute(sql, parameters)
                identities.append(self._identity_of(statement, row, result))
            return identities
        sql, parameters = statement.compile(dialect)
        return self._execute(sql, parameters).rowcount

    def _identity_of(self, statement: InsertStatement, row: dict, result: _CursorResult) -> dict:
        if not statement.returning:
            return {}
        if result.rows:
            return dict(zip(result.columns, result.rows[0]))
        identity = {column: row.get(column) for column in statement.returning}
        missing = [column for column, value in identity.items() if value is None]
        if len(missing) == 1 and result.lastrowid is not None:
            identity[missing[0]] = result.lastrowid
        return identity

    def __repr__(self):
        return f"<Connection {self.name!r} {self.dialect.name}>"


_connections: dict[str, Connection] = {}
_connections_lock = threading.Lock()


def connect(database_url: str | Callable[[], str], name: str = "default", max_workers: int = 4) -> Connection:
    """Register a database under name; replaces (and closes) a previous registration."""
    connection = Connection(database_url, name=name, max_workers=max_workers)
    with _connections_lock:
        previous = _connections.get(name)
        _connections[name] = connection
    if previous is not None:
        previous.close()
    return connection


def get_connection(name: str = "default") -> Connection:
    try:
        return _connections[name]
    except KeyError as error:
        raise ValueError(f"No connection configured with name=`{name}`") from error
