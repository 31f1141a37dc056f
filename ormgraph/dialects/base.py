"""Base Dialect type: subclasses implement connect() and declare capabilities."""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional

from pydantic import BaseModel


class Dialect(BaseModel, ABC):
    """Base for database dialects; subclasses implement connect() for a given URL.

    Capability flags are read by the statement compiler and by relation
    operations that have more than one SQL strategy.
    """

    model_config = {"arbitrary_types_allowed": True}

    SUPPORTED_SCHEMA: ClassVar[tuple[str, ...]] = ()
    """URL schemes this dialect handles (e.g. ('sqlite',), ('postgresql', 'postgres'))."""

    PLACEHOLDER: ClassVar[str] = "?"
    """Bound parameter marker of the DB-API driver (paramstyle qmark or format)."""

    SUPPORTS_RETURNING: ClassVar[bool] = True
    """INSERT ... RETURNING is available; otherwise cursor.lastrowid is used."""

    SUPPORTS_MODIFY_SUBQUERY: ClassVar[bool] = True
    """UPDATE/DELETE may filter with a (composite) IN subquery over another table.

    When False, relation operations use a rowid indirection instead.
    """

    ROWID_COLUMN: ClassVar[Optional[str]] = None
    """Built-in row identifier column, required when SUPPORTS_MODIFY_SUBQUERY is False."""

    DEFAULT_VALUES: ClassVar[str] = "DEFAULT VALUES"
    """INSERT suffix used for a row without any explicit column."""

    @property
    def name(self) -> str:
        """Short name of the dialect (first supported scheme)."""
        return self.SUPPORTED_SCHEMA[0]

    @abstractmethod
    def connect(self, url: str) -> Any:
        """Return a new raw DB-API connection for the given URL.

        The return value is engine-specific (e.g. sqlite3.Connection, pymysql.Connection).
        """
        ...  # pylint: disable=unnecessary-ellipsis
