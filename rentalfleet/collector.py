"""
The aggregator process-role.

Workers push each partial result to the collector on a fresh connection;
the collector relays every partial frame, unchanged, over the single
connection it keeps to the coordinator, where the aggregator session
merges them.
"""
import argparse
import socket
from threading import Lock, Thread
from typing import Optional, Tuple

from . import config
from .errors import ConnectionClosed, MalformedMessage
from .logs import get_logger
from .models import MessageType
from .protocol import decode, recv_frame, send_frame

logger = get_logger("COLLECTOR")


class Collector:

    def __init__(self, host: str, port: int):
        self.listener = socket.create_server((host, port), backlog=config.LISTEN_BACKLOG)
        self.port = self.listener.getsockname()[1]
        self.upstream: Optional[socket.socket] = None
        self._upstream_lock = Lock()

    def connect(self, coordinator: Tuple[str, int]):
        self.upstream = socket.create_connection(coordinator)
        logger.info(f"Connected to coordinator at {coordinator[0]}:{coordinator[1]}, listening on {self.port}")

    def serve_forever(self):
        while True:
            try:
                conn, addr = self.listener.accept()
            except OSError:
                break
            Thread(target=self.relay, args=(conn, addr), daemon=True).start()

    def relay(self, conn, addr):
        with conn:
            while True:
                try:
                    frame = recv_frame(conn)
                except ConnectionClosed:
                    return
                except OSError as e:
                    logger.error(f"Lost worker connection {addr}: {e}")
                    return
                try:
                    envelope = decode(frame)
                    if envelope.type != MessageType.PARTIAL:
                        raise MalformedMessage(f"expected a partial, got {envelope.type.value}")
                except MalformedMessage as e:
                    logger.warning(f"Dropped frame from {addr}: {e}")
                    continue
                logger.debug(f"Relaying {envelope.header} partial from {addr}")
                if not self.forward(frame):
                    return

    def forward(self, frame: bytes) -> bool:
        try:
            with self._upstream_lock:
                send_frame(self.upstream, frame)
            return True
        except OSError as e:
            logger.error(f"Coordinator link failed, shutting down: {e}")
            self.close()
            return False

    def close(self):
        self.listener.close()
        if self.upstream is not None:
            self.upstream.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Rental fleet result collector")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=config.COLLECTOR_PORT)
    parser.add_argument("--coordinator-host", default=config.HOST)
    parser.add_argument("--coordinator-port", type=int, default=config.COORDINATOR_PORT)
    args = parser.parse_args(argv)

    collector = Collector(args.host, args.port)
    collector.connect((args.coordinator_host, args.coordinator_port))
    try:
        collector.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        collector.close()


if __name__ == "__main__":
    main()
