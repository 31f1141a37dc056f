"""Model base: pydantic entities mapped to a table, with declared relations."""

from __future__ import annotations

import logging
from typing import Any, Callable, ClassVar, Iterable, Optional, Sequence

import pydantic
from pydantic import BaseModel, PrivateAttr

from ..errors import RelationError, ValidationError
from .meta import ModelMeta

logger = logging.getLogger(__name__)


def _validation_error(error: pydantic.ValidationError, field: Optional[str] = None) -> dict[str, str]:
    """Flatten a pydantic error into a field -> message mapping."""
    data: dict[str, str] = {}
    for detail in error.errors():
        key = ".".join(str(part) for part in detail.get("loc", ())) or field or "model"
        data.setdefault(key, detail.get("msg", "invalid value"))
    return data


class Model(BaseModel, metaclass=ModelMeta):
    """Base class for entities.

    Declared fields are the table's columns. Relation properties, declared in
    ``RELATION_MAPPINGS``, are carried as pydantic extras, like join-table
    extra columns read through a many-to-many relation.
    """

    model_config = {"arbitrary_types_allowed": True, "extra": "allow"}

    RELATION_MAPPINGS: ClassVar[dict[str, dict[str, Any]]] = {}
    """Relation name -> mapping (``relation``, ``model_class``, ``join``, optional ``modify``)."""

    NAMED_FILTERS: ClassVar[dict[str, Callable[..., Any]]] = {}
    """Filter name -> callable(query) -> query, usable by relation ``modify`` and eager expressions."""

    _omitted_columns: set[str] = PrivateAttr(default_factory=set)

    # table & connection

    @classmethod
    def get_table_name(cls) -> str:
        return cls._TABLE_NAME

    @classmethod
    def get_id_columns(cls) -> tuple[str, ...]:
        return cls._ID_COLUMNS

    @classmethod
    def get_full_id_columns(cls) -> tuple[str, ...]:
        table = cls.get_table_name()
        return tuple(f"{table}.{column}" for column in cls.get_id_columns())

    @classmethod
    def get_connection(cls):
        from ..connection import get_connection  # pylint: disable=import-outside-toplevel
        return get_connection(cls._CONNECTION_NAME)

    @classmethod
    def bind(cls, connection_name: str) -> type[Model]:
        """Return a subclass of this model using another connection.

        Relations of the bound class point to bound related classes. Bound
        classes are cached, so binding twice returns the same class.
        """
        root = cls.__dict__.get("_BOUND_FROM") or cls
        if connection_name == root._CONNECTION_NAME:
            return root
        bound = root._bound_classes.get(connection_name)
        if bound is None:
            bound = type(root)(
                root.__name__,
                (root,),
                {"__module__": root.__module__},
                table_name=root.get_table_name(),
                id_columns=root.get_id_columns(),
                connection_name=connection_name,
            )
            bound._BOUND_FROM = root
            root._bound_classes[connection_name] = bound
        return bound

    # relations

    @classmethod
    def get_relation_mappings(cls) -> dict[str, dict[str, Any]]:
        return dict(cls.RELATION_MAPPINGS)

    @classmethod
    def get_relations(cls) -> dict[str, Any]:
        """Relation descriptors by name, built on first access."""
        relations = cls.__dict__.get("_relations")
        if relations is None:
            from ..relations import build_relation  # pylint: disable=import-outside-toplevel
            root = cls.__dict__.get("_BOUND_FROM")
            if root is not None:
                relations = {
                    name: relation.bind(cls, relation.related_model.bind(cls._CONNECTION_NAME))
                    for name, relation in root.get_relations().items()
                }
            else:
                relations = {
                    name: build_relation(name, cls, mapping)
                    for name, mapping in cls.get_relation_mappings().items()
                }
            cls._relations = relations
        return relations

    @classmethod
    def get_relation(cls, name: str):
        try:
            return cls.get_relations()[name]
        except KeyError as error:
            raise RelationError(f"A model class {cls.__name__} doesn't have relation {name}") from error

    # queries

    @classmethod
    def query(cls):
        """Return a Query for this model."""
        from ..query import Query  # pylint: disable=import-outside-toplevel
        return Query(model=cls)

    def related_query(self, relation_name: str):
        """Return a Query over the rows related to this instance through relation_name."""
        from ..query import Query  # pylint: disable=import-outside-toplevel
        relation = type(self).get_relation(relation_name)
        return Query(model=relation.related_model, relation=relation, owner=self)

    @classmethod
    def load_related(cls, models: Sequence[Model] | Model, expression, filters: Optional[dict] = None):
        """Eagerly load the relations described by expression onto already loaded models."""
        from ..operations.eager import load_related  # pylint: disable=import-outside-toplevel
        return load_related(cls, models, expression, filters)

    # validation & construction

    @classmethod
    def validate_json(cls, data: dict[str, Any], patch: bool = False) -> Model:
        """Validate data and return an instance.

        With patch=True only the given keys are validated, and required fields
        may be missing.

        Raises:
            ValidationError: with a field -> message mapping.
        """
        if not patch:
            try:
                return cls.model_validate(data)
            except pydantic.ValidationError as error:
                raise ValidationError(_validation_error(error)) from error
        instance = cls.model_construct()
        errors: dict[str, str] = {}
        for key, value in data.items():
            if key not in cls.model_fields:
                setattr(instance, key, value)
                continue
            try:
                cls.__pydantic_validator__.validate_assignment(instance, key, value)
            except pydantic.ValidationError as error:
                errors.update(_validation_error(error, field=key))
            else:
                instance.__pydantic_fields_set__.add(key)
        if errors:
            raise ValidationError(errors)
        return instance

    @classmethod
    def from_json(cls, data: dict[str, Any] | Model, patch: bool = False) -> Model:
        """Build a validated instance, relation properties included (recursively)."""
        if isinstance(data, cls):
            return data
        if isinstance(data, Model):
            data = data.to_json()
        if not isinstance(data, dict):
            raise ValidationError({"model": f"expected an object for {cls.__name__}, got {type(data).__name__}"})
        relations = cls.get_relations()
        instance = cls.validate_json({k: v for k, v in data.items() if k not in relations}, patch=patch)
        for name, value in data.items():
            relation = relations.get(name)
            if relation is None:
                continue
            related_model = relation.related_model
            if value is None:
                setattr(instance, name, None)
            elif isinstance(value, (list, tuple)):
                setattr(instance, name, [related_model.from_json(item, patch=patch) for item in value])
            else:
                setattr(instance, name, related_model.from_json(value, patch=patch))
        return instance

    @classmethod
    def from_database_row(cls, row: dict[str, Any]) -> Model:
        """Instance from a fetched row, without validation."""
        return cls.model_construct(**row)

    # values

    def _get_value(self, column: str) -> Any:
        if column in self.__dict__:
            return self.__dict__[column]
        return (self.__pydantic_extra__ or {}).get(column)

    def values(self, columns: Iterable[str]) -> tuple:
        """Values of the given columns, None where unset."""
        return tuple(self._get_value(column) for column in columns)

    def id_values(self) -> tuple:
        return self.values(type(self).get_id_columns())

    def set_values(self, values: dict[str, Any]) -> Model:
        for column, value in values.items():
            setattr(self, column, value)
        return self

    def omit_from_database_json(self, *columns: str) -> None:
        """Exclude columns from database_json() (e.g. join-table extras)."""
        self._omitted_columns.update(columns)

    def database_json(self) -> dict[str, Any]:
        """Column values to persist: explicitly set fields and extras, minus relations and omitted columns."""
        cls = type(self)
        relations = cls.get_relations()
        data = {name: self.__dict__[name] for name in cls.model_fields
                if name in self.model_fields_set and name in self.__dict__}
        for name, value in (self.__pydantic_extra__ or {}).items():
            if name not in relations and not name.startswith("#"):
                data[name] = value
        for name in self._omitted_columns:
            data.pop(name, None)
        return data

    def to_json(self) -> dict[str, Any]:
        """Plain data of this instance, with loaded relations converted recursively."""
        data = {name: self.__dict__[name] for name in type(self).model_fields if name in self.__dict__}
        for name, value in (self.__pydantic_extra__ or {}).items():
            if isinstance(value, Model):
                value = value.to_json()
            elif isinstance(value, list):
                value = [item.to_json() if isinstance(item, Model) else item for item in value]
            data[name] = value
        return data
