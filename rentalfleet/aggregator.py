from collections import deque
from threading import Lock, Thread
from typing import Dict, List, Optional

from . import config
from .errors import FleetError, MalformedMessage, UnknownWorker
from .logs import get_logger
from .models import AggregatedResult, MessageType, PartialResult, parse_kind
from .protocol import recv_message
from .queries import FAN_OUT
from .results import ResultTable

logger = get_logger("AGGREGATOR")


class Aggregator:
    """
    Buffers partial results per job id until every worker in the roster has
    reported, then reduces them and publishes the merged result.

    Jobs never complete on a timeout: a worker that never answers leaves its
    job open forever. Only the last ``closed_history`` finished job ids are
    remembered for dropping late partials.
    """

    def __init__(self, results: ResultTable, worker_count: int, closed_history: int = config.CLOSED_JOB_HISTORY):
        if closed_history < 1:
            raise ValueError(f"closed_history must be at least 1, got {closed_history}")
        self.results = results
        self.worker_count = worker_count
        self._open: Dict[int, Dict[int, PartialResult]] = {}
        self._closed = set()
        self._closed_order = deque(maxlen=closed_history)
        self._lock = Lock()

    def open_jobs(self) -> Dict[int, List[int]]:
        """Job id -> indices of the workers that have reported so far."""
        with self._lock:
            return {map_id: sorted(received) for map_id, received in self._open.items()}

    def accept(self, header: str, partial: PartialResult) -> Optional[AggregatedResult]:
        """Merge one partial; returns the published result if it completed the job."""
        query = FAN_OUT.get(parse_kind(header))
        if query is None:
            raise MalformedMessage(f"{header} is not a fan-out request kind")
        if not 0 <= partial.worker_id < self.worker_count:
            raise UnknownWorker(partial.worker_id, self.worker_count)
        query.check(partial)

        with self._lock:
            if partial.map_id in self._closed:
                logger.warning(f"Late partial for finished job {partial.map_id} from worker {partial.worker_id} ignored")
                return None
            received = self._open.setdefault(partial.map_id, {})
            if partial.worker_id in received:
                logger.warning(f"Duplicate partial for job {partial.map_id} from worker {partial.worker_id} ignored")
                return None
            received[partial.worker_id] = partial
            logger.debug(f"Job {partial.map_id}: {len(received)}/{self.worker_count} partials")
            if len(received) < self.worker_count:
                return None
            del self._open[partial.map_id]
            self._close(partial.map_id)

        partials = [received[worker_id] for worker_id in sorted(received)]
        result = AggregatedResult(map_id=partial.map_id, header=header, result=query.reduce_func(partials))
        if self.results.publish(result):
            logger.info(f"Job {partial.map_id} ({header}) complete")
        return result

    def _close(self, map_id: int):
        if len(self._closed_order) == self._closed_order.maxlen:
            self._closed.discard(self._closed_order[0])
        self._closed_order.append(map_id)
        self._closed.add(map_id)


class AggregatorSession(Thread):
    """Reads partial results relayed by the collector for the life of the process."""

    def __init__(self, sock, aggregator: Aggregator):
        self.sock = sock
        self.aggregator = aggregator
        super().__init__(name="aggregator-session", daemon=True)

    def run(self):
        logger.info("Aggregator session started")
        try:
            while True:
                try:
                    envelope = recv_message(self.sock)
                    if envelope.type != MessageType.PARTIAL:
                        raise MalformedMessage(f"expected a partial, got {envelope.type.value}")
                    self.aggregator.accept(envelope.header, PartialResult.from_body(envelope.body))
                except (MalformedMessage, UnknownWorker) as e:
                    logger.warning(f"Dropped message from collector: {e}")
        except (OSError, FleetError) as e:
            logger.error(f"Collector link lost, open jobs will not complete: {e}")
        finally:
            self.sock.close()
