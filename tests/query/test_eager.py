"""Tests for eager loading: Query.eager, modify_eager, allow_eager and Model.load_related."""

import pytest

from ormgraph.errors import RelationExpressionError
from tests.helpers import Animal, Book, Movie, Person, Shelf, insert_rows, seed


@pytest.fixture
def db(setup_db):
    seed(setup_db)
    return setup_db


def names(rows):
    return [row.name for row in rows]


def by_id(rows):
    return sorted(rows, key=lambda row: row.id)


class TestQueryCount:

    def test_no_owner_no_branch_query(self, db, query_log):
        assert Person.query().where(name="Nobody").eager("children.pets").execute() == []
        assert query_log.count() == 1

    def test_one_owner(self, db, query_log):
        jennifer = Person.query().find_by_id(1).eager("children.pets").execute()
        assert query_log.count() == 3
        assert names(by_id(jennifer.children)) == ["Arnold", "Sylvester"]
        arnold, sylvester = by_id(jennifer.children)
        assert names(arnold.pets) == ["Rex"]
        assert sylvester.pets == []

    def test_many_owners(self, db, query_log):
        people = Person.query().order_by("id").eager("children.pets").execute()
        assert query_log.count() == 3
        assert [len(person.children) for person in people] == [2, 1, 0, 0]
        assert names(people[1].children[0].pets) == []

    def test_siblings_each_get_one_query(self, db, query_log):
        people = Person.query().order_by("id").eager("[pets, movies, parent]").execute()
        assert query_log.count() == 4
        assert names(people[0].pets) == ["Doggo", "Kitty"]
        assert people[0].parent is None
        assert people[3].parent.name == "Arnold"

    def test_owner_without_key_gets_empty_value(self, db, query_log):
        stray = Animal.query().find_by_id(4).eager("owner").execute()
        assert stray.owner is None
        assert query_log.count() == 1


class TestAttach:

    def test_has_many_keeps_related_order_per_owner(self, setup_db):
        insert_rows(setup_db, "person", {"id": 1, "name": "One"}, {"id": 2, "name": "Two"})
        insert_rows(
            setup_db, "animal",
            {"id": 1, "name": "a", "owner_id": 1},
            {"id": 2, "name": "b", "owner_id": 2},
            {"id": 3, "name": "c", "owner_id": 2},
        )
        one, two = Person.query().order_by("id").eager("pets(orderByName)").execute()
        assert names(one.pets) == ["a"]
        assert names(two.pets) == ["b", "c"]
        assert all(isinstance(pet, Animal) for pet in two.pets)

    def test_belongs_to_one(self, db):
        animals = Animal.query().order_by("id").eager("owner").execute()
        assert [animal.owner.name if animal.owner else None for animal in animals] == [
            "Jennifer", "Jennifer", "Arnold", None
        ]

    def test_many_to_many_with_extras(self, db):
        jennifer = Person.query().find_by_id(1).eager("movies").execute()
        movies = by_id(jennifer.movies)
        assert [(movie.title, movie.character_name) for movie in movies] == [
            ("Terminator", "Sarah"), ("Alien", "Ripley")
        ]
        assert "ormgraph_join_owner_0" not in movies[0].__pydantic_extra__
        assert movies[0].database_json() == {"id": 1, "title": "Terminator"}

    def test_many_to_many_inverse(self, db):
        movies = Movie.query().order_by("id").eager("actors").execute()
        assert [sorted(names(movie.actors)) for movie in movies] == [
            ["Arnold", "Jennifer"], ["Sylvester"], ["Jennifer"]
        ]

    def test_relation_modify_applies(self, db):
        jennifer = Person.query().find_by_id(1).eager("[pets, dogs]").execute()
        assert names(jennifer.dogs) == ["Doggo"]
        assert len(jennifer.pets) == 2

    def test_composite_keys(self, setup_db):
        insert_rows(setup_db, "shelf", {"store_id": 1, "code": "A"}, {"store_id": 2, "code": "A"})
        insert_rows(
            setup_db, "book",
            {"id": 1, "title": "Dune", "store_id": 1, "shelf_code": "A"},
            {"id": 2, "title": "Emma", "store_id": 2, "shelf_code": "A"},
            {"id": 3, "title": "Ulysses", "store_id": 2, "shelf_code": "A"},
            {"id": 4, "title": "Lost", "store_id": 2, "shelf_code": None},
        )
        shelves = Shelf.query().order_by("store_id").eager("books").execute()
        assert [[book.title for book in by_id(shelf.books)] for shelf in shelves] == [["Dune"], ["Emma", "Ulysses"]]
        books = Book.query().order_by("id").eager("shelf").execute()
        assert [book.shelf.id_values() if book.shelf else None for book in books] == [
            (1, "A"), (2, "A"), (2, "A"), None
        ]

    def test_related_query_with_eager(self, db):
        jennifer = Person.query().find_by_id(1).execute()
        children = jennifer.related_query("children").order_by("id").eager("pets").execute()
        assert [names(child.pets) for child in children] == [["Rex"], []]
        assert jennifer.children == children


class TestFilters:

    def test_filter_argument(self, db):
        query = Person.query().find_by_id(1).eager("pets(onlyCats)", {"onlyCats": lambda q: q.where(species="cat")})
        assert names(query.execute().pets) == ["Kitty"]

    def test_named_filter_of_related_model(self, db):
        assert names(Person.query().find_by_id(1).eager("pets(dogs)").execute().pets) == ["Doggo"]

    def test_filters_are_chained(self, db):
        jennifer = Person.query().find_by_id(1).eager(
            "children(adults, byName).pets", {"byName": lambda q: q.order_by("-name")}
        ).execute()
        assert names(jennifer.children) == ["Arnold"]

    def test_modify_eager(self, db):
        query = Person.query().find_by_id(1).eager("pets").modify_eager("pets", lambda q: q.where(species="cat"))
        assert names(query.execute().pets) == ["Kitty"]

    def test_modify_eager_creates_nodes(self, db):
        jennifer = Person.query().find_by_id(1).modify_eager("children.pets", lambda q: q.where(species="dog")).execute()
        arnold = next(child for child in jennifer.children if child.id == 2)
        assert names(arnold.pets) == ["Rex"]

    def test_unknown_filter(self, db, query_log):
        with pytest.raises(RelationExpressionError, match='could not find filter "missing" for relation "pets"'):
            Person.query().eager("pets(missing)").execute()
        assert query_log.count() == 1


class TestExpressions:

    def test_unknown_relation_fails_before_branch_queries(self, db, query_log):
        with pytest.raises(RelationExpressionError, match='unknown relation "toys"') as error:
            Person.query().eager("[pets, toys]").execute()
        assert error.value.data == {"eager": 'unknown relation "toys" in an eager expression'}
        assert query_log.count() == 1

    def test_merged_expressions(self, db):
        jennifer = Person.query().find_by_id(1).eager("pets").eager("movies").execute()
        assert len(jennifer.pets) == 2 and len(jennifer.movies) == 2

    def test_wildcard(self, db, query_log):
        jennifer = Person.query().find_by_id(1).eager("*").execute()
        assert jennifer.parent is None
        assert jennifer.favorite_pet.name == "Kitty"
        assert len(jennifer.children) == 2
        assert names(jennifer.dogs) == ["Doggo"]
        assert len(jennifer.movies) == 2
        # the parent branch has no key to look up
        assert query_log.count() == 6

    def test_unbounded_recursion(self, db, query_log):
        jennifer = Person.query().find_by_id(1).eager("children^").execute()
        arnold = next(child for child in jennifer.children if child.id == 2)
        assert names(arnold.children) == ["Bruce"]
        assert arnold.children[0].children == []
        assert query_log.count() == 4

    def test_plus_recursion(self, db):
        bruce = Person.query().find_by_id(4).eager("+parent").execute()
        assert bruce.parent.name == "Arnold"
        assert bruce.parent.parent.name == "Jennifer"
        assert bruce.parent.parent.parent is None

    def test_bounded_recursion(self, db, query_log):
        jennifer = Person.query().find_by_id(1).eager("children^2").execute()
        arnold = next(child for child in jennifer.children if child.id == 2)
        bruce = arnold.children[0]
        assert bruce.name == "Bruce"
        assert "children" not in bruce.__pydantic_extra__
        assert query_log.count() == 3

    def test_recursion_with_nested_relation(self, db):
        jennifer = Person.query().find_by_id(1).eager("children^.pets").execute()
        assert "pets" not in jennifer.__pydantic_extra__
        arnold = next(child for child in jennifer.children if child.id == 2)
        assert names(arnold.pets) == ["Rex"]
        assert arnold.children[0].pets == []


class TestAllowEager:

    def test_allowed(self, db):
        query = Person.query().allow_eager("[pets, children.[pets, movies]]").find_by_id(1)
        jennifer = query.eager("children.pets").execute()
        assert len(jennifer.children) == 2

    def test_rejected_before_any_query(self, db, query_log):
        query = Person.query().allow_eager("[pets, children]").eager("children.movies")
        with pytest.raises(RelationExpressionError, match="eager expression not allowed") as error:
            query.execute()
        assert "eager" in error.value.data
        assert query_log.count() == 0

    def test_filters_must_be_allowed(self, db):
        with pytest.raises(RelationExpressionError, match="eager expression not allowed"):
            Person.query().allow_eager("pets").eager("pets(dogs)").execute()
        assert Person.query().allow_eager("pets(dogs)").eager("pets(dogs)").execute()

    def test_wildcard_allows_anything_at_its_level(self, db):
        jennifer = Person.query().allow_eager("*").find_by_id(1).eager("[pets, movies]").execute()
        assert len(jennifer.movies) == 2


class TestLoadRelated:

    def test_load_onto_fetched_models(self, db, query_log):
        people = Person.query().order_by("id").execute()
        query_log.clear()
        assert Person.load_related(people, "[pets(dogs), parent]") is people
        assert [names(person.pets) for person in people] == [["Doggo"], ["Rex"], [], []]
        assert people[1].parent.name == "Jennifer"
        assert query_log.count() == 2

    def test_load_onto_single_model(self, db):
        arnold = Person.query().find_by_id(2).execute()
        Person.load_related(arnold, "pets(mine)", {"mine": lambda q: q.where(name="Rex")})
        assert names(arnold.pets) == ["Rex"]

    def test_load_nothing(self, db, query_log):
        assert Person.load_related([], "pets") == []
        assert query_log.count() == 0
