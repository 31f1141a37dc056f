"""Tests for ormgraph.utils.concurrency.run_all."""

import threading
import time

import pytest

from ormgraph.connection import Connection
from ormgraph.utils.concurrency import run_all


@pytest.fixture
def pool_connection(tmp_path):
    connection = Connection(f"sqlite:///{tmp_path / 'pool.sqlite3'}", name="pool", max_workers=4)
    yield connection
    connection.close()


def test_results_in_submission_order(pool_connection):
    def task(index, delay):
        def run():
            time.sleep(delay)
            return index
        return run

    tasks = [task(0, 0.05), task(1, 0.0), task(2, 0.02)]
    assert run_all(tasks, pool_connection) == [0, 1, 2]


def test_tasks_run_on_worker_threads(pool_connection):
    main = threading.get_ident()
    idents = run_all([threading.get_ident, threading.get_ident], pool_connection)
    assert all(ident != main for ident in idents)


def test_single_task_runs_inline(pool_connection):
    assert run_all([threading.get_ident], pool_connection) == [threading.get_ident()]


def test_runs_inline_with_one_worker(tmp_path):
    connection = Connection(f"sqlite:///{tmp_path / 'one.sqlite3'}", max_workers=1)
    main = threading.get_ident()
    assert run_all([threading.get_ident, threading.get_ident], connection) == [main, main]
    connection.close()


def test_runs_inline_inside_transaction(pool_connection):
    main = threading.get_ident()
    with pool_connection.transaction():
        assert run_all([threading.get_ident, threading.get_ident], pool_connection) == [main, main]


def test_nested_calls_from_workers_run_inline(pool_connection):
    def nested():
        outer = threading.get_ident()
        inner = run_all([threading.get_ident, threading.get_ident], pool_connection)
        return inner == [outer, outer]

    assert run_all([nested, nested], pool_connection) == [True, True]


def test_waits_for_all_and_raises_first_failure(pool_connection):
    finished = []

    def slow():
        time.sleep(0.05)
        finished.append("slow")
        return "slow"

    def fail(message):
        def run():
            raise RuntimeError(message)
        return run

    with pytest.raises(RuntimeError, match="first"):
        run_all([fail("first"), slow, fail("second")], pool_connection)
    assert finished == ["slow"]


def test_empty(pool_connection):
    assert run_all([], pool_connection) == []
