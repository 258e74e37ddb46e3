import socket
from typing import Optional

from .errors import MalformedMessage
from .logs import get_logger
from .models import Envelope, WorkerInfo
from .protocol import recv_message, send_message

logger = get_logger("LINKS")


class WorkerLink:
    """
    One outbound connection to one worker, opened per message.

    Transport failures are logged and reported as a falsy return value;
    they never propagate to the caller.
    """

    def __init__(self, index: int, info: WorkerInfo, timeout: Optional[float] = None):
        self.index = index
        self.info = info
        self.timeout = timeout

    def __repr__(self):
        return f"WorkerLink({self.index}, {self.info.address}:{self.info.port})"

    def _connect(self):
        return socket.create_connection((self.info.address, self.info.port), timeout=self.timeout)

    def send(self, envelope: Envelope) -> bool:
        try:
            with self._connect() as sock:
                send_message(sock, envelope)
            logger.debug(f"Sent {envelope.header} to worker {self.index}")
            return True
        except OSError as e:
            logger.error(f"Failed to send {envelope.header} to worker {self.index} at {self.info}: {e}")
            return False

    def call(self, envelope: Envelope) -> Optional[Envelope]:
        try:
            with self._connect() as sock:
                send_message(sock, envelope)
                reply = recv_message(sock)
            logger.debug(f"Worker {self.index} answered {envelope.header} with {reply.type.value}")
            return reply
        except (OSError, MalformedMessage) as e:
            logger.error(f"Call {envelope.header} to worker {self.index} at {self.info} failed: {e}")
            return None
