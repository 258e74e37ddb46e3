import socket
import struct

import pytest

from rentalfleet.errors import ConnectionClosed, MalformedMessage
from rentalfleet.models import Envelope, MessageType, RequestKind
from rentalfleet.protocol import read_line, recv_message, send_frame, send_line, send_message


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    yield left, right
    left.close()
    right.close()


def test_envelope_over_a_stream(pair):
    left, right = pair
    send_message(left, Envelope.request(RequestKind.NEW_BOOKING, {"rentalId": 3, "startDate": "01/10/2023"}))
    send_message(left, Envelope.request(RequestKind.CLOSE_CONNECTION))

    first = recv_message(right)
    assert first.type is MessageType.REQUEST
    assert first.kind() is RequestKind.NEW_BOOKING
    assert first.body == {"rentalId": 3, "startDate": "01/10/2023"}
    assert recv_message(right).kind() is RequestKind.CLOSE_CONNECTION


def test_wire_shape(pair):
    left, right = pair
    send_message(left, Envelope.request(RequestKind.GET_RENTALS, {"filters": {}}))
    (size,) = struct.unpack(">I", right.recv(4))
    payload = right.recv(size)
    assert payload.startswith(b'{"type":"request","header":"GET_RENTALS"')


def test_malformed_frame_leaves_stream_usable(pair):
    left, right = pair
    send_frame(left, b"{not json")
    send_frame(left, b'{"type": "request"}')
    send_message(left, Envelope.request(RequestKind.GET_BOOKINGS))

    with pytest.raises(MalformedMessage):
        recv_message(right)
    with pytest.raises(MalformedMessage):
        recv_message(right)
    assert recv_message(right).kind() is RequestKind.GET_BOOKINGS


def test_closed_mid_frame(pair):
    left, right = pair
    left.sendall(struct.pack(">I", 100) + b"short")
    left.close()
    with pytest.raises(ConnectionClosed):
        recv_message(right)


def test_handshake_lines(pair):
    left, right = pair
    send_line(left, "9001")
    assert read_line(right) == "9001"
    left.close()
    with pytest.raises(ConnectionClosed):
        read_line(right)
