"""ormgraph: relation graphs, eager loading and graph inserts over pydantic models."""

from .model import Model
from .connection import connect, get_connection
from .transaction import transaction
from .query import Query
from .expression import RelationExpression
from .errors import (
    CardinalityError,
    GraphError,
    OrmGraphError,
    QueryBuildError,
    RelationError,
    RelationExpressionError,
    ValidationError,
)
