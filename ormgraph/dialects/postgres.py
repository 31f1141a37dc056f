"""PostgreSQL dialect."""

import urllib.parse
from typing import ClassVar

from .base import Dialect


class PostgresDialect(Dialect):
    """Dialect for PostgreSQL (schemes postgresql, postgres)."""

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ("postgresql", "postgres")
    PLACEHOLDER: ClassVar[str] = "%s"
    SUPPORTS_RETURNING: ClassVar[bool] = True
    SUPPORTS_MODIFY_SUBQUERY: ClassVar[bool] = True

    def connect(self, url: str):
        import psycopg2  # pylint: disable=import-outside-toplevel,import-error
        parsed = urllib.parse.urlparse(url)
        return psycopg2.connect(
            host=parsed.hostname,
            user=parsed.username,
            password=parsed.password,
            database=(parsed.path or "")[1:] or None,
            port=parsed.port,
        )
