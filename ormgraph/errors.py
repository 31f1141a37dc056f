"""Exception types raised by ormgraph.

Driver errors (sqlite3.IntegrityError, psycopg2 errors, ...) are never wrapped:
they propagate unchanged from the connection.
"""

from typing import Any, Optional


class OrmGraphError(Exception):
    """Base class for all errors raised by ormgraph itself."""


class ValidationError(OrmGraphError, ValueError):
    """Invalid input data.

    ``data`` maps the offending key (field name, expression keyword, ...) to a
    human readable message.
    """

    def __init__(self, data: Optional[dict[str, Any]] = None, message: Optional[str] = None):
        self.data = dict(data or {})
        if message is None:
            message = "; ".join(f"{key}: {value}" for key, value in self.data.items())
        super().__init__(message or "validation failed")


class RelationExpressionError(ValidationError):
    """Malformed relation expression, unknown relation or unknown filter."""

    def __init__(self, message: str, key: str = "expression"):
        super().__init__({key: message}, message)


class GraphError(ValidationError):
    """Insert graph that cannot be resolved (cycle, dangling or duplicate reference)."""

    def __init__(self, message: str):
        super().__init__({"graph": message}, message)


class RelationError(OrmGraphError):
    """Invalid relation mapping or use of an undeclared relation."""


class CardinalityError(RelationError):
    """More related rows than a relation slot admits."""


class QueryBuildError(OrmGraphError, ValueError):
    """Programming error while composing or running a query pipeline."""
