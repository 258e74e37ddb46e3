import socket
from typing import Any, Dict, Optional, Tuple

from .models import Envelope, RequestKind
from .protocol import recv_message, send_message


class FleetClient:
    """Blocking client holding one connection to the coordinator."""

    def __init__(self, address: Tuple[str, int], timeout: Optional[float] = None):
        self.sock = socket.create_connection(address, timeout=timeout)

    def request(self, kind: RequestKind, body: Optional[Dict[str, Any]] = None) -> Envelope:
        send_message(self.sock, Envelope.request(kind, body))
        return recv_message(self.sock)

    def send(self, envelope: Envelope) -> Envelope:
        send_message(self.sock, envelope)
        return recv_message(self.sock)

    def close(self):
        try:
            send_message(self.sock, Envelope.request(RequestKind.CLOSE_CONNECTION))
        finally:
            self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
