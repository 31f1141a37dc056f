"""Models shared by the tests, mapped on the schema created by the setup_db fixture."""

from typing import Optional

from ormgraph import Model


class Person(Model):
    id: Optional[int] = None
    name: str
    age: Optional[int] = None
    parent_id: Optional[int] = None
    favorite_pet_id: Optional[int] = None

    RELATION_MAPPINGS = {
        "parent": {
            "relation": "belongs_to_one",
            "model_class": "Person",
            "join": {"from": "person.parent_id", "to": "person.id"},
        },
        "children": {
            "relation": "has_many",
            "model_class": "Person",
            "join": {"from": "person.id", "to": "person.parent_id"},
        },
        "pets": {
            "relation": "has_many",
            "model_class": "Animal",
            "join": {"from": "person.id", "to": "animal.owner_id"},
        },
        "dogs": {
            "relation": "has_many",
            "model_class": "Animal",
            "join": {"from": "person.id", "to": "animal.owner_id"},
            "modify": "dogs",
        },
        "favorite_pet": {
            "relation": "belongs_to_one",
            "model_class": "Animal",
            "join": {"from": "person.favorite_pet_id", "to": "animal.id"},
        },
        "movies": {
            "relation": "many_to_many",
            "model_class": "Movie",
            "join": {
                "from": "person.id",
                "through": {
                    "from": "person_movie.person_id",
                    "to": "person_movie.movie_id",
                    "extra": ["character_name"],
                },
                "to": "movie.id",
            },
        },
    }

    NAMED_FILTERS = {
        "adults": lambda query: query.where(age__gte=18),
    }


class Animal(Model):
    id: Optional[int] = None
    name: str
    species: Optional[str] = None
    owner_id: Optional[int] = None

    RELATION_MAPPINGS = {
        # written from the person side on purpose: the owner side is detected
        "owner": {
            "relation": "belongs_to_one",
            "model_class": "Person",
            "join": {"from": "person.id", "to": "animal.owner_id"},
        },
    }

    NAMED_FILTERS = {
        "dogs": lambda query: query.where(species="dog"),
        "orderByName": lambda query: query.order_by("name"),
    }


class Movie(Model):
    id: Optional[int] = None
    title: str

    RELATION_MAPPINGS = {
        "actors": {
            "relation": "many_to_many",
            "model_class": "Person",
            "join": {
                "from": "movie.id",
                "through": {
                    "from": "person_movie.movie_id",
                    "to": "person_movie.person_id",
                    "extra": ["character_name"],
                },
                "to": "person.id",
            },
        },
    }


class Shelf(Model, id_columns=("store_id", "code")):
    store_id: int
    code: str
    label: Optional[str] = None

    RELATION_MAPPINGS = {
        "books": {
            "relation": "has_many",
            "model_class": "Book",
            "join": {"from": ["shelf.store_id", "shelf.code"], "to": ["book.store_id", "book.shelf_code"]},
        },
    }


class Book(Model):
    id: Optional[int] = None
    title: str
    store_id: Optional[int] = None
    shelf_code: Optional[str] = None

    RELATION_MAPPINGS = {
        "shelf": {
            "relation": "belongs_to_one",
            "model_class": "Shelf",
            "join": {"from": ["book.store_id", "book.shelf_code"], "to": ["shelf.store_id", "shelf.code"]},
        },
    }


def insert_rows(connection, table: str, *rows: dict) -> None:
    """Insert plain rows with raw SQL, bypassing the query pipeline."""
    for row in rows:
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        connection.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))


def seed(connection) -> None:
    """A small family with pets and movies.

    - Jennifer (1) has children Arnold (2) and Sylvester (3); Arnold has a child Bruce (4);
    - pets: Doggo (1, dog, Jennifer), Kitty (2, cat, Jennifer), Rex (3, dog, Arnold), Stray (4, no owner);
    - Jennifer's favorite pet is Kitty;
    - movies: Terminator (1), Rambo (2), Alien (3);
      Jennifer plays Sarah in 1 and Ripley in 3, Arnold plays T-800 in 1, Sylvester plays John in 2.
    """
    insert_rows(
        connection, "person",
        {"id": 1, "name": "Jennifer", "age": 45},
        {"id": 2, "name": "Arnold", "age": 20, "parent_id": 1},
        {"id": 3, "name": "Sylvester", "age": 17, "parent_id": 1},
        {"id": 4, "name": "Bruce", "age": 2, "parent_id": 2},
    )
    insert_rows(
        connection, "animal",
        {"id": 1, "name": "Doggo", "species": "dog", "owner_id": 1},
        {"id": 2, "name": "Kitty", "species": "cat", "owner_id": 1},
        {"id": 3, "name": "Rex", "species": "dog", "owner_id": 2},
        {"id": 4, "name": "Stray", "species": "cat"},
    )
    connection.execute("UPDATE person SET favorite_pet_id = 2 WHERE id = 1")
    insert_rows(
        connection, "movie",
        {"id": 1, "title": "Terminator"},
        {"id": 2, "title": "Rambo"},
        {"id": 3, "title": "Alien"},
    )
    insert_rows(
        connection, "person_movie",
        {"person_id": 1, "movie_id": 1, "character_name": "Sarah"},
        {"person_id": 1, "movie_id": 3, "character_name": "Ripley"},
        {"person_id": 2, "movie_id": 1, "character_name": "T-800"},
        {"person_id": 3, "movie_id": 2, "character_name": "John"},
    )


def count_rows(connection, table: str) -> int:
    return connection.execute(f"SELECT COUNT(*) FROM {table}")[0][0]
