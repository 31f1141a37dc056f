"""Tests for ormgraph.relations: building descriptors from RELATION_MAPPINGS."""

from typing import Optional

import pydantic
import pytest

from ormgraph import Model
from ormgraph.errors import RelationError
from ormgraph.relations import (
    BelongsToOneRelation,
    HasManyRelation,
    ManyToManyRelation,
    parse_mapping,
    parse_reference,
)
from tests.helpers import Animal, Book, Movie, Person, Shelf


class TestDescriptors:

    def test_has_many(self):
        relation = Person.get_relation("pets")
        assert isinstance(relation, HasManyRelation)
        assert relation.kind == "has_many"
        assert not relation.is_one_to_one
        assert relation.owner_model is Person
        assert relation.related_model is Animal
        assert relation.owner_columns == ("id",)
        assert relation.related_columns == ("owner_id",)
        assert relation.full_owner_columns == ("person.id",)
        assert relation.full_related_columns == ("animal.owner_id",)

    def test_belongs_to_one(self):
        relation = Person.get_relation("parent")
        assert isinstance(relation, BelongsToOneRelation)
        assert relation.kind == "belongs_to_one"
        assert relation.is_one_to_one
        assert relation.owner_columns == ("parent_id",)
        assert relation.related_columns == ("id",)

    def test_join_written_from_the_related_side(self):
        relation = Animal.get_relation("owner")
        assert relation.owner_columns == ("owner_id",)
        assert relation.related_columns == ("id",)
        assert relation.related_model is Person

    def test_many_to_many(self):
        relation = Movie.get_relation("actors")
        assert isinstance(relation, ManyToManyRelation)
        assert relation.kind == "many_to_many"
        assert relation.join_table == "person_movie"
        assert relation.join_table_owner_columns == ("movie_id",)
        assert relation.join_table_related_columns == ("person_id",)
        assert relation.join_table_extra_columns == ("character_name",)
        assert relation.full_join_table_owner_columns == ("person_movie.movie_id",)
        assert relation.hidden_owner_columns == ("ormgraph_join_owner_0",)

    def test_composite(self):
        books = Shelf.get_relation("books")
        assert books.owner_columns == ("store_id", "code")
        assert books.related_columns == ("store_id", "shelf_code")
        shelf = Book.get_relation("shelf")
        assert shelf.full_owner_columns == ("book.store_id", "book.shelf_code")
        assert shelf.full_related_columns == ("shelf.store_id", "shelf.code")

    def test_relations_are_built_once(self):
        assert Person.get_relations() is Person.get_relations()
        assert Person.get_relation("pets") is Person.get_relation("pets")

    def test_full_columns_are_cached(self):
        relation = Person.get_relation("movies")
        assert relation.full_join_table_related_columns is relation.full_join_table_related_columns

    def test_descriptors_are_frozen(self):
        with pytest.raises(pydantic.ValidationError):
            Person.get_relation("pets").name = "animals"

    def test_unknown_relation(self):
        with pytest.raises(RelationError, match="A model class Person doesn't have relation cars"):
            Person.get_relation("cars")

    def test_repr(self):
        assert repr(Person.get_relation("pets")) == "<HasManyRelation Person.pets -> Animal>"

    def test_modify_by_name(self):
        assert Person.get_relation("dogs").modify == "dogs"


class TestParseHelpers:

    def test_parse_reference(self):
        assert parse_reference("person.id", "join.from") == ("person", ("id",))
        assert parse_reference(["shelf.store_id", "shelf.code"], "join.to") == ("shelf", ("store_id", "code"))

    def test_parse_reference_without_table(self):
        with pytest.raises(RelationError, match="join.from must have format table.column"):
            parse_reference("id", "join.from")

    def test_parse_reference_mixed_tables(self):
        with pytest.raises(RelationError, match="must all belong to the same table"):
            parse_reference(["a.x", "b.y"], "join.to")

    def test_parse_mapping_kinds(self):
        mapping = parse_mapping({
            "relation": "has_one",
            "model_class": "Animal",
            "join": {"from": "person.id", "to": "animal.owner_id"},
        })
        assert mapping.relation == "has_one"
        assert mapping.join.from_ == "person.id"

    @pytest.mark.parametrize("mapping", [
        {"relation": "has_few", "model_class": "Animal", "join": {"from": "person.id", "to": "animal.owner_id"}},
        {"relation": "has_many", "model_class": "Animal"},
        {"relation": "many_to_many", "model_class": "Movie", "join": {"from": "person.id", "to": "movie.id"}},
    ])
    def test_parse_mapping_invalid(self, mapping):
        with pytest.raises(RelationError, match="invalid relation mapping"):
            parse_mapping(mapping)


class MappingOwner(Model, table_name="mapping_owner"):
    id: Optional[int] = None
    label: Optional[str] = None
    target_id: Optional[int] = None

    RELATION_MAPPINGS = {
        "wrong_table": {
            "relation": "has_many",
            "model_class": "MappingTarget",
            "join": {"from": "elsewhere.id", "to": "mapping_target.owner_id"},
        },
        "wrong_related_table": {
            "relation": "has_many",
            "model_class": "MappingTarget",
            "join": {"from": "mapping_owner.id", "to": "animal.owner_id"},
        },
        "column_count": {
            "relation": "has_many",
            "model_class": "MappingTarget",
            "join": {"from": ["mapping_owner.id", "mapping_owner.label"], "to": "mapping_target.owner_id"},
        },
        "label": {
            "relation": "belongs_to_one",
            "model_class": "MappingTarget",
            "join": {"from": "mapping_owner.target_id", "to": "mapping_target.id"},
        },
        "two_join_tables": {
            "relation": "many_to_many",
            "model_class": "MappingTarget",
            "join": {
                "from": "mapping_owner.id",
                "through": {"from": "link_a.owner_id", "to": "link_b.target_id"},
                "to": "mapping_target.id",
            },
        },
        "missing_class": {
            "relation": "has_many",
            "model_class": "NoSuchMappingModel",
            "join": {"from": "mapping_owner.id", "to": "no_such.owner_id"},
        },
        "target": {
            "relation": "belongs_to_one",
            "model_class": lambda: MappingTarget,
            "join": {"from": "mapping_owner.target_id", "to": "mapping_target.id"},
        },
    }


class MappingTarget(Model, table_name="mapping_target"):
    id: Optional[int] = None
    owner_id: Optional[int] = None


class TestInvalidMappings:

    def _build(self, name):
        from ormgraph.relations import build_relation
        return build_relation(name, MappingOwner, MappingOwner.RELATION_MAPPINGS[name])

    def test_join_must_refer_to_owner_table(self):
        with pytest.raises(RelationError, match="must refer to table `mapping_owner`"):
            self._build("wrong_table")

    def test_join_must_refer_to_related_table(self):
        with pytest.raises(RelationError, match="join refers to table `animal`, but MappingTarget uses table `mapping_target`"):
            self._build("wrong_related_table")

    def test_column_counts_must_match(self):
        with pytest.raises(RelationError, match="column counts differ"):
            self._build("column_count")

    def test_name_must_not_collide_with_a_column(self):
        with pytest.raises(RelationError, match="relation name collides with a column"):
            self._build("label")

    def test_through_must_name_one_join_table(self):
        with pytest.raises(RelationError, match="same join table"):
            self._build("two_join_tables")

    def test_unknown_model_class(self):
        with pytest.raises(RelationError, match="No subclass of `Model` found with name `NoSuchMappingModel`"):
            self._build("missing_class")

    def test_model_class_factory(self):
        assert self._build("target").related_model is MappingTarget

    def test_errors_surface_on_first_access(self):
        with pytest.raises(RelationError):
            MappingOwner.get_relations()
