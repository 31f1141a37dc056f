import logging

import pytest

from ormgraph.connection import connect

SCHEMA = (
    """
    CREATE TABLE person (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        age INTEGER,
        parent_id INTEGER REFERENCES person(id),
        favorite_pet_id INTEGER REFERENCES animal(id)
    )
    """,
    """
    CREATE TABLE animal (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        species TEXT,
        owner_id INTEGER REFERENCES person(id) ON DELETE SET NULL
    )
    """,
    """
    CREATE TABLE movie (
        id INTEGER PRIMARY KEY,
        title TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE person_movie (
        person_id INTEGER NOT NULL REFERENCES person(id) ON DELETE CASCADE,
        movie_id INTEGER NOT NULL REFERENCES movie(id) ON DELETE CASCADE,
        character_name TEXT,
        PRIMARY KEY (person_id, movie_id)
    )
    """,
    """
    CREATE TABLE shelf (
        store_id INTEGER NOT NULL,
        code TEXT NOT NULL,
        label TEXT,
        PRIMARY KEY (store_id, code)
    )
    """,
    """
    CREATE TABLE book (
        id INTEGER PRIMARY KEY,
        title TEXT NOT NULL,
        store_id INTEGER,
        shelf_code TEXT
    )
    """,
)


@pytest.fixture(scope="function")
def setup_db(tmp_path):
    """Fresh SQLite file database with the test schema, registered as the default connection."""
    connection = connect(f"sqlite:///{tmp_path / 'test.sqlite3'}")
    for statement in SCHEMA:
        connection.execute(statement)
    yield connection
    connection.close()


class QueryLog:
    """SQL statements logged by ormgraph.connection while a test runs."""

    def __init__(self, caplog):
        self._caplog = caplog

    def clear(self):
        self._caplog.clear()

    @property
    def statements(self) -> list[str]:
        return [
            record.getMessage()
            for record in self._caplog.records
            if record.name == "ormgraph.connection" and record.levelno == logging.DEBUG
        ]

    def count(self, prefix: str = "SELECT") -> int:
        return sum(1 for statement in self.statements if statement.startswith(prefix))


@pytest.fixture(scope="function")
def query_log(caplog):
    caplog.set_level(logging.DEBUG, logger="ormgraph")
    return QueryLog(caplog)
