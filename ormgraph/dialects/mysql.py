"""MySQL dialect (pymysql driver)."""

import logging
import urllib.parse
from typing import Any, ClassVar

from .base import Dialect

logger = logging.getLogger(__name__)

_INTEGER_OPTIONS = ("connect_timeout", "read_timeout", "write_timeout")


class MysqlDialect(Dialect):
    """Dialect for MySQL and MariaDB (schemes mysql, mariadb).

    MySQL has no INSERT ... RETURNING, so generated keys are read back from
    cursor.lastrowid, one row at a time. An INSERT without columns is spelled
    ``() VALUES ()``.
    """

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ("mysql", "mariadb")
    PLACEHOLDER: ClassVar[str] = "%s"
    SUPPORTS_RETURNING: ClassVar[bool] = False
    SUPPORTS_MODIFY_SUBQUERY: ClassVar[bool] = True
    DEFAULT_VALUES: ClassVar[str] = "() VALUES ()"
    DEFAULT_PORT: ClassVar[int] = 3306
    DEFAULT_CHARSET: ClassVar[str] = "utf8mb4"

    def connection_arguments(self, url: str) -> dict[str, Any]:
        """Keyword arguments for pymysql.connect() described by url.

        Credentials may be percent-encoded. Query parameters are passed on as
        driver options (``?charset=latin1&connect_timeout=5``); a ``socket``
        parameter selects a unix socket instead of host and port.
        """
        parsed = urllib.parse.urlsplit(url)
        options = dict(urllib.parse.parse_qsl(parsed.query))
        arguments: dict[str, Any] = {
            "user": urllib.parse.unquote(parsed.username) if parsed.username else None,
            "password": urllib.parse.unquote(parsed.password) if parsed.password else None,
            "database": urllib.parse.unquote(parsed.path.lstrip("/")) or None,
            "charset": options.pop("charset", self.DEFAULT_CHARSET),
            "autocommit": False,
        }
        socket = options.pop("socket", None)
        if socket:
            arguments["unix_socket"] = socket
        else:
            arguments["host"] = parsed.hostname or "localhost"
            arguments["port"] = parsed.port or self.DEFAULT_PORT
        for name in _INTEGER_OPTIONS:
            if name in options:
                arguments[name] = int(options.pop(name))
        arguments.update(options)
        return arguments

    def connect(self, url: str):
        import pymysql  # pylint: disable=import-outside-toplevel,import-error
        arguments = self.connection_arguments(url)
        logger.info("Connecting to MySQL database %s", arguments["database"])
        return pymysql.connect(**arguments)
