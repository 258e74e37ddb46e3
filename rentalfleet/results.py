import time
from threading import Condition, Lock
from typing import Dict, List, Optional, Set

from .errors import JobTimeout
from .logs import get_logger
from .models import AggregatedResult

logger = get_logger("RESULTS")


class IdCounter:
    """Fetch-and-increment starting at ``start``; values are never reused."""

    def __init__(self, start: int = 0):
        self._next = start
        self._lock = Lock()

    def next(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    def peek(self) -> int:
        with self._lock:
            return self._next


class ResultTable:
    """
    Completed fan-out results keyed by job id.

    The aggregator publishes, and the one session that allocated the job id
    takes the entry out again. Waiters share a single condition, so every
    publish wakes all of them and each re-checks for its own job id.

    A waiter that times out abandons its job id; a result published for it
    afterwards is dropped instead of stored.
    """

    def __init__(self):
        self._results: Dict[int, AggregatedResult] = {}
        self._abandoned: Set[int] = set()
        self._condition = Condition()

    def __len__(self):
        with self._condition:
            return len(self._results)

    def __contains__(self, job_id: int):
        with self._condition:
            return job_id in self._results

    def pending(self) -> List[int]:
        with self._condition:
            return sorted(self._results)

    def abandoned(self) -> List[int]:
        with self._condition:
            return sorted(self._abandoned)

    def publish(self, result: AggregatedResult) -> bool:
        """Store ``result`` and wake the waiters; False if its waiter already gave up."""
        with self._condition:
            if result.map_id in self._abandoned:
                self._abandoned.discard(result.map_id)
                logger.warning(f"Dropped result of job {result.map_id}, its waiter timed out")
                return False
            if result.map_id in self._results:
                raise ValueError(f"job {result.map_id} already has an unclaimed result")
            self._results[result.map_id] = result
            self._condition.notify_all()
            return True

    def take(self, job_id: int, timeout: Optional[float] = None) -> AggregatedResult:
        """Block until ``job_id`` is published, then remove and return it."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while job_id not in self._results:
                if deadline is None:
                    self._condition.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._abandoned.add(job_id)
                    raise JobTimeout(job_id, timeout)
                self._condition.wait(remaining)
            return self._results.pop(job_id)
