import argparse
import socket
from threading import Event
from typing import List, Optional

from . import config
from .aggregator import AggregatorSession
from .coordinator import Coordinator
from .errors import MalformedMessage
from .logs import get_logger
from .models import GuestAccount, WorkerInfo
from .protocol import read_line, send_line
from .session import ClientSession
from .store import GuestAccountStore

logger = get_logger("COORDINATOR")


class CoordinatorServer:
    """
    The coordinator process's listening socket.

    Start-up is strictly ordered: the first ``worker_count`` successful
    registrations form the roster, the next connection is the collector, and
    only after that are client connections accepted.
    """

    def __init__(self, worker_count: int, host: str, port: int, accounts: Optional[GuestAccountStore] = None,
                 job_timeout: Optional[float] = config.JOB_TIMEOUT):
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")
        self.worker_count = worker_count
        self.accounts = accounts if accounts is not None else GuestAccountStore()
        self.job_timeout = job_timeout
        self.listener = socket.create_server((host, port), backlog=config.LISTEN_BACKLOG)
        self.address = self.listener.getsockname()[:2]
        self.coordinator: Optional[Coordinator] = None
        self.aggregator_session: Optional[AggregatorSession] = None
        self.ready = Event()

    def accept_roster(self) -> List[WorkerInfo]:
        roster = []
        logger.info(f"Waiting for {self.worker_count} workers on {self.address[0]}:{self.address[1]}")
        while len(roster) < self.worker_count:
            conn, addr = self.listener.accept()
            with conn:
                try:
                    port = int(read_line(conn))
                    if not 0 < port < 65536:
                        raise ValueError(f"port {port} out of range")
                    send_line(conn, str(len(roster)))
                except (OSError, MalformedMessage, ValueError) as e:
                    logger.error(f"Failed to register worker {addr[0]}:{addr[1]}: {e}")
                    continue
            roster.append(WorkerInfo(address=addr[0], port=port))
            logger.info(f"Worker {len(roster) - 1} registered at {addr[0]}:{port}")
        return roster

    def accept_aggregator(self) -> AggregatorSession:
        conn, addr = self.listener.accept()
        logger.info(f"Collector connected from {addr[0]}:{addr[1]}")
        session = AggregatorSession(conn, self.coordinator.aggregator)
        session.start()
        return session

    def bootstrap(self) -> Coordinator:
        roster = self.accept_roster()
        self.coordinator = Coordinator(roster, accounts=self.accounts, job_timeout=self.job_timeout)
        self.aggregator_session = self.accept_aggregator()
        self.ready.set()
        return self.coordinator

    def serve_forever(self):
        if self.coordinator is None:
            self.bootstrap()
        logger.info("Accepting clients")
        while True:
            try:
                conn, addr = self.listener.accept()
            except OSError:
                break
            ClientSession(conn, self.coordinator, peer=f"{addr[0]}:{addr[1]}").start()

    def close(self):
        self.listener.close()


def parse_guest(value: str) -> GuestAccount:
    email, sep, password = value.partition(":")
    if not sep or not email or not password:
        raise argparse.ArgumentTypeError(f"expected EMAIL:PASSWORD, got {value!r}")
    return GuestAccount(email=email, password=password)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Rental fleet coordinator")
    parser.add_argument("workers", type=int, help="number of workers to wait for")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=config.COORDINATOR_PORT)
    parser.add_argument("--status-port", type=int, default=None,
                        help="serve GET /status on this port")
    parser.add_argument("--job-timeout", type=float, default=config.JOB_TIMEOUT,
                        help="seconds to wait for a fan-out job (default: forever)")
    parser.add_argument("--guest", type=parse_guest, action="append", default=[],
                        help="guest account as EMAIL:PASSWORD, repeatable")
    args = parser.parse_args(argv)

    accounts = GuestAccountStore()
    for guest in args.guest:
        accounts.save(guest)

    server = CoordinatorServer(args.workers, args.host, args.port, accounts=accounts, job_timeout=args.job_timeout)
    try:
        coordinator = server.bootstrap()
        if args.status_port is not None:
            from .status import serve_status
            serve_status(coordinator, args.host, args.status_port)
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()


if __name__ == "__main__":
    main()
