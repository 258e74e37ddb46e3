from unittest import mock

import pytest

from rentalfleet.errors import MalformedMessage
from rentalfleet.models import Envelope, MessageType, RequestKind, parse_date
from rentalfleet.worker import WorkerNode


def request(kind, **body):
    return Envelope.request(kind, body)


@pytest.fixture
def node():
    node = WorkerNode(1, collector=None)
    node.push_partial = mock.Mock()
    node.handle(request(RequestKind.NEW_RENTAL, rentalId=2, name="Cozy Rental", location="Crete",
                        nightlyRate=80.0, capacity=2))
    node.handle(request(RequestKind.NEW_RENTAL, rentalId=5, name="Lux Resort", location="Paros",
                        nightlyRate=250.0, capacity=6, reviewCount=2, reviewSum=10))
    node.handle(request(RequestKind.UPDATE_AVAILABILITY, rentalId=2, startDate="01/01/2023", endDate="31/12/2023"))
    return node


def book(node, booking_id, rental_id, start, end):
    return node.handle(request(RequestKind.NEW_BOOKING, bookingId=booking_id, guestEmail="guest@example.com",
                               rentalId=rental_id, startDate=start, endDate=end))


def test_update_availability_unknown_rental(node):
    reply = node.handle(request(RequestKind.UPDATE_AVAILABILITY, rentalId=99, startDate="01/01/2023",
                                endDate="02/01/2023"))
    assert reply.body == {"status": "NOT_FOUND"}


def test_booking_marks_days_booked(node):
    reply = book(node, 0, 2, "01/10/2023", "05/10/2023")
    assert reply.type is MessageType.RESPONSE
    assert reply.body["status"] == "OK"
    assert reply.body["rentalName"] == "Cozy Rental"
    assert reply.body["location"] == "Crete"
    assert reply.body["totalCost"] == 320.0

    availability = node.store.rentals[2].availability
    assert not availability.query(*map(parse_date, ("02/10/2023", "03/10/2023")))
    assert availability.query(*map(parse_date, ("06/10/2023", "07/10/2023")))


def test_overlapping_booking_refused(node):
    book(node, 0, 2, "01/10/2023", "05/10/2023")
    assert book(node, 1, 2, "04/10/2023", "08/10/2023").body == {"status": "UNAVAILABLE"}
    assert book(node, 2, 5, "04/10/2023", "08/10/2023").body == {"status": "UNAVAILABLE"}
    assert book(node, 3, 7, "04/10/2023", "08/10/2023").body == {"status": "NOT_FOUND"}
    assert set(node.store.bookings) == {0}


def test_booking_needs_an_id(node):
    with pytest.raises(MalformedMessage):
        node.handle(request(RequestKind.NEW_BOOKING, guestEmail="guest@example.com", rentalId=2,
                            startDate="01/10/2023", endDate="02/10/2023"))


def test_rating_has_no_reply(node):
    assert node.handle(request(RequestKind.NEW_RATING, guestEmail="guest@example.com", bookingId=0,
                               rentalId=5, rating=2)) is None
    assert node.store.rentals[5].rating.stars == 4.0


def test_get_rentals_pushes_partial(node):
    assert node.handle(request(RequestKind.GET_RENTALS, mapId=4,
                               filters={"startDate": "10/10/2023", "endDate": "12/10/2023"})) is None
    kind, partial = node.push_partial.call_args.args
    assert kind is RequestKind.GET_RENTALS
    assert partial.map_id == 4
    assert partial.worker_id == 1
    assert [summary["rentalId"] for summary in partial.result] == [2]


def test_get_rentals_filters(node):
    node.handle(request(RequestKind.GET_RENTALS, mapId=0, filters={"location": "paros"}))
    assert [s["rentalId"] for s in node.push_partial.call_args.args[1].result] == [5]
    node.handle(request(RequestKind.GET_RENTALS, mapId=1, filters={"capacity": 3, "maxPrice": 200}))
    assert node.push_partial.call_args.args[1].result == []
    node.handle(request(RequestKind.GET_RENTALS, mapId=2, filters={"minStars": 4.5}))
    assert [s["stars"] for s in node.push_partial.call_args.args[1].result] == [5.0]


def test_get_bookings_counts_per_location(node):
    book(node, 0, 2, "01/10/2023", "05/10/2023")
    book(node, 1, 2, "20/10/2023", "22/10/2023")
    node.handle(request(RequestKind.GET_BOOKINGS, mapId=3, startDate="01/10/2023", endDate="10/10/2023"))
    assert node.push_partial.call_args.args[1].result == {"Crete": 1}


def test_fan_out_needs_a_map_id(node):
    with pytest.raises(MalformedMessage):
        node.handle(request(RequestKind.GET_BOOKINGS, startDate="01/10/2023", endDate="10/10/2023"))
    node.push_partial.assert_not_called()


def test_coordinator_only_kinds_rejected(node):
    with pytest.raises(MalformedMessage):
        node.handle(request(RequestKind.GET_BOOKINGS_WITH_NO_RATINGS, guestEmail="g", guestPassword="p"))


def test_push_partial_failure_is_logged_not_raised():
    node = WorkerNode(0, collector=("127.0.0.1", 1))
    node.handle(request(RequestKind.GET_RENTALS, mapId=0))
