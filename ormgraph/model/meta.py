"""Metaclass for Model: reads table, identity and connection settings from class keywords."""

from pydantic._internal._model_construction import ModelMetaclass


def _inherited(bases, attribute: str):
    for base in bases:
        value = getattr(base, attribute, None)
        if value:
            return value
    return None


class ModelMeta(ModelMetaclass):
    """Metaclass for Model.

    Class keywords:
        table_name: SQL table (defaults to the lowercased class name).
        id_columns: identity column name, or tuple of names for a composite key
            (inherited, defaults to "id").
        connection_name: name given to connect() (inherited, defaults to "default").
    """

    def __new__(mcs, name, bases, namespace,
                table_name: str = None,
                id_columns: str | tuple[str, ...] = None,
                connection_name: str = None,
                **kwargs):
        result = super().__new__(mcs, name, bases, namespace, **kwargs)
        if isinstance(id_columns, str):
            id_columns = (id_columns,)
        result._TABLE_NAME = table_name or name.lower()
        result._ID_COLUMNS = tuple(id_columns or _inherited(bases, "_ID_COLUMNS") or ("id",))
        result._CONNECTION_NAME = connection_name or _inherited(bases, "_CONNECTION_NAME") or "default"
        # lazily built by get_relations()
        result._relations = None
        result._BOUND_FROM = None
        result._bound_classes = {}
        return result
