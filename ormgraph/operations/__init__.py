"""Operations a Query runs when executed."""

from .base import OperationState, QueryOperation
from .delete import DeleteOperation
from .eager import EagerFetchOperation, fetch_relations, load_related
from .insert import InsertOperation
from .insert_graph import InsertGraphOperation
from .update import UpdateOperation

__all__ = [
    "OperationState",
    "QueryOperation",
    "DeleteOperation",
    "EagerFetchOperation",
    "InsertOperation",
    "InsertGraphOperation",
    "UpdateOperation",
    "fetch_relations",
    "load_related",
]
