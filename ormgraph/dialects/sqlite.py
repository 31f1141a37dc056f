"""SQLite dialect."""

import logging
import sqlite3
import urllib.parse
from typing import ClassVar, Optional

from .base import Dialect

logger = logging.getLogger(__name__)


class SqliteDialect(Dialect):
    """Dialect for SQLite (scheme sqlite).

    SQLite cannot be trusted with composite row-value subqueries in UPDATE and
    DELETE on every supported version, so modifications through a join table
    go through the built-in rowid.
    """

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ("sqlite",)
    PLACEHOLDER: ClassVar[str] = "?"
    SUPPORTS_RETURNING: ClassVar[bool] = True
    SUPPORTS_MODIFY_SUBQUERY: ClassVar[bool] = False
    ROWID_COLUMN: ClassVar[Optional[str]] = "_rowid_"

    def connect(self, url: str):
        parsed = urllib.parse.urlparse(url)
        path = (parsed.path or "")[1:] or parsed.hostname
        logger.info("Connecting to SQLite database %s", path)
        # each connection stays on its own thread; Connection.close() may close it from another
        conn = sqlite3.connect(path, check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn
