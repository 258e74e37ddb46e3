"""
Wire framing shared by every link in the fleet.

A message is a 4-byte big-endian length followed by that many bytes of
UTF-8 JSON holding one ``Envelope``. Worker registration is the only
exchange that uses newline-terminated text lines instead.
"""
import struct

from .errors import ConnectionClosed, MalformedMessage
from .models import Envelope

LENGTH = struct.Struct(">I")
MAX_FRAME = 16 * 1024 * 1024
MAX_LINE = 64


def recv_exact(sock, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(min(remaining, 65536))
        if not chunk:
            raise ConnectionClosed(f"peer closed with {remaining} of {size} bytes unread")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def send_frame(sock, payload: bytes):
    if len(payload) > MAX_FRAME:
        raise ValueError(f"frame of {len(payload)} bytes exceeds {MAX_FRAME}")
    sock.sendall(LENGTH.pack(len(payload)) + payload)


def recv_frame(sock) -> bytes:
    (size,) = LENGTH.unpack(recv_exact(sock, LENGTH.size))
    if size > MAX_FRAME:
        # the stream cannot be resynchronised after this
        raise ConnectionError(f"announced frame of {size} bytes exceeds {MAX_FRAME}")
    return recv_exact(sock, size)


def encode(envelope: Envelope) -> bytes:
    return envelope.model_dump_json().encode("utf-8")


def decode(payload: bytes) -> Envelope:
    try:
        return Envelope.model_validate_json(payload)
    except ValueError as e:
        raise MalformedMessage(f"undecodable envelope: {e}") from e


def send_message(sock, envelope: Envelope):
    send_frame(sock, encode(envelope))


def recv_message(sock) -> Envelope:
    """Read one envelope. The frame is consumed even when it is malformed."""
    return decode(recv_frame(sock))


def send_line(sock, text: str):
    sock.sendall(f"{text}\n".encode("utf-8"))


def read_line(sock) -> str:
    data = bytearray()
    while True:
        byte = sock.recv(1)
        if not byte:
            raise ConnectionClosed("peer closed before end of line")
        if byte == b"\n":
            return data.decode("utf-8").strip()
        data += byte
        if len(data) > MAX_LINE:
            raise MalformedMessage(f"line longer than {MAX_LINE} bytes")
