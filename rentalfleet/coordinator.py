from typing import Any, Dict, Iterable, Optional

from . import config
from .aggregator import Aggregator
from .links import WorkerLink
from .logs import get_logger
from .models import AggregatedResult, Envelope, GuestAccount, RequestKind, WorkerInfo
from .partition import Partitioner, partition
from .results import IdCounter, ResultTable
from .store import GuestAccountStore

logger = get_logger("COORDINATOR")


class Coordinator:
    """
    Process-wide state shared by every client session and the aggregator
    session: the worker roster, the id counters, the result table and the
    guest account store.

    The roster is fixed at construction and read without locking.
    """

    def __init__(self, roster: Iterable[WorkerInfo], accounts: Optional[GuestAccountStore] = None,
                 partitioner: Partitioner = partition, job_timeout: Optional[float] = config.JOB_TIMEOUT,
                 link_timeout: Optional[float] = None):
        self.roster = tuple(roster)
        if not self.roster:
            raise ValueError("a coordinator needs at least one worker")
        self.links = [WorkerLink(index, info, link_timeout) for index, info in enumerate(self.roster)]
        self.partitioner = partitioner
        self.job_timeout = job_timeout
        self.results = ResultTable()
        self.aggregator = Aggregator(self.results, len(self.roster))
        self.accounts = accounts if accounts is not None else GuestAccountStore()

        self._entity_ids = IdCounter()
        self._job_ids = IdCounter()
        self._booking_ids = IdCounter()

    def next_entity_id(self) -> int:
        return self._entity_ids.next()

    def next_job_id(self) -> int:
        return self._job_ids.next()

    def next_booking_id(self) -> int:
        return self._booking_ids.next()

    def worker_for(self, entity_id: int) -> int:
        return self.partitioner(entity_id, len(self.roster))

    def route_to_one(self, entity_id: int, message: Envelope, expect_reply: bool = False) -> Optional[Envelope]:
        """
        Send ``message`` to the worker owning ``entity_id``. Returns the
        worker's reply when ``expect_reply`` is set; None otherwise or when
        the worker cannot be reached.
        """
        link = self.links[self.worker_for(entity_id)]
        if expect_reply:
            return link.call(message)
        link.send(message)
        return None

    def broadcast(self, message: Envelope) -> int:
        """Send ``message`` to every worker; returns how many accepted it."""
        return sum(1 for link in self.links if link.send(message))

    def submit_job(self, job_id: int) -> AggregatedResult:
        return self.results.take(job_id, self.job_timeout)

    def run_job(self, kind: RequestKind, body: Dict[str, Any]) -> AggregatedResult:
        """Broadcast a fan-out request under a fresh job id and wait for its merged result."""
        job_id = self.next_job_id()
        message = Envelope.request(kind, dict(body, mapId=job_id))
        delivered = self.broadcast(message)
        if delivered < len(self.links):
            logger.warning(f"Job {job_id} ({kind.value}) reached {delivered}/{len(self.links)} workers "
                           f"and will not complete")
        else:
            logger.info(f"Job {job_id} ({kind.value}) sent to {delivered} workers")
        return self.submit_job(job_id)

    def add_guest(self, email: str, password: str, name: str = "", phone: str = ""):
        self.accounts.save(GuestAccount(email=email, password=password, name=name, phone=phone))

    def snapshot(self) -> Dict[str, Any]:
        return {
            "workers": [{"index": link.index, "address": link.info.address, "port": link.info.port}
                        for link in self.links],
            "counters": {
                "entityId": self._entity_ids.peek(),
                "jobId": self._job_ids.peek(),
                "bookingId": self._booking_ids.peek(),
            },
            "openJobs": {str(map_id): workers for map_id, workers in self.aggregator.open_jobs().items()},
            "unclaimedResults": self.results.pending(),
        }
