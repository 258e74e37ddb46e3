import threading

import pytest

from fakes import GUEST_EMAIL, GUEST_PASSWORD
from rentalfleet.collector import Collector
from rentalfleet.models import GuestAccount
from rentalfleet.server import CoordinatorServer
from rentalfleet.store import GuestAccountStore
from rentalfleet.worker import WorkerServer

HOST = "127.0.0.1"


class Fleet:
    """Coordinator, collector and workers on loopback ports, each on daemon threads."""

    def __init__(self, worker_count: int, job_timeout: float = 5.0):
        accounts = GuestAccountStore()
        accounts.save(GuestAccount(email=GUEST_EMAIL, password=GUEST_PASSWORD, name="Guest"))
        self.server = CoordinatorServer(worker_count, HOST, 0, accounts=accounts, job_timeout=job_timeout)
        self.address = self.server.address
        threading.Thread(target=self.server.serve_forever, daemon=True).start()

        self.collector = Collector(HOST, 0)
        self.workers = []
        for _ in range(worker_count):
            worker = WorkerServer(HOST, 0, (HOST, self.collector.port))
            worker.register(self.address)
            threading.Thread(target=worker.serve_forever, daemon=True).start()
            self.workers.append(worker)

        self.collector.connect(self.address)
        threading.Thread(target=self.collector.serve_forever, daemon=True).start()
        assert self.server.ready.wait(5), "coordinator did not finish start-up"
        self.coordinator = self.server.coordinator

    def close(self):
        self.server.close()
        self.collector.close()
        for worker in self.workers:
            worker.close()


@pytest.fixture
def fleet():
    fleet = Fleet(worker_count=2)
    yield fleet
    fleet.close()
