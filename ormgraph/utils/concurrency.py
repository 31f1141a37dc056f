"""Fan-out / fan-in of independent read queries on a connection's worker pool."""

import logging
import threading
from concurrent.futures import wait
from typing import Any, Callable, Sequence

logger = logging.getLogger(__name__)

_worker = threading.local()


def _run_in_worker(task: Callable[[], Any]) -> Any:
    _worker.active = True
    try:
        return task()
    finally:
        _worker.active = False


def run_all(tasks: Sequence[Callable[[], Any]], connection) -> list[Any]:
    """Run tasks and return their results in submission order.

    Tasks go to the connection's ThreadPoolExecutor, except when that cannot
    help or would be wrong: a single task, a pool of one worker, an open
    transaction on the calling thread (workers use their own connections and
    would not see its rows), or a call made from a pool worker.

    All tasks are waited for; the first failure in submission order is then
    raised.
    """
    tasks = list(tasks)
    inline = (
        len(tasks) <= 1
        or connection.max_workers <= 1
        or connection.in_transaction
        or getattr(_worker, "active", False)
    )
    if inline:
        return [task() for task in tasks]
    logger.debug("Running %d queries on %s workers", len(tasks), connection.name)
    futures = [connection.executor.submit(_run_in_worker, task) for task in tasks]
    wait(futures)
    return [future.result() for future in futures]
