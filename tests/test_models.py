from datetime import date

import pytest

from rentalfleet.errors import MalformedMessage
from rentalfleet.models import (Booking, BookingRequest, Envelope, NewRentalRequest, RatingAggregate, RentalFilter,
                                RequestKind, parse_date)


def booking(start, end):
    return Booking(booking_id=1, guest_email="g@example.com", rental_id=0, start_date=start, end_date=end)


def test_dates_use_day_month_year():
    assert parse_date("01/10/2023") == date(2023, 10, 1)
    request = BookingRequest.from_body({
        "guestEmail": "g@example.com", "rentalId": 3, "startDate": "01/10/2023", "endDate": "05/10/2023",
    })
    assert request.start_date == date(2023, 10, 1)
    assert request.to_body()["endDate"] == "05/10/2023"


def test_missing_field_is_malformed():
    with pytest.raises(MalformedMessage):
        BookingRequest.from_body({"guestEmail": "g@example.com", "startDate": "01/10/2023", "endDate": "05/10/2023"})


def test_reversed_dates_are_malformed():
    with pytest.raises(MalformedMessage):
        BookingRequest.from_body({
            "guestEmail": "g@example.com", "rentalId": 3, "startDate": "05/10/2023", "endDate": "01/10/2023",
        })


def test_filter_dates_come_in_pairs():
    with pytest.raises(MalformedMessage):
        RentalFilter.from_body({"startDate": "05/10/2023"})


def test_unknown_header_is_malformed():
    with pytest.raises(MalformedMessage):
        Envelope(header="new-rental").kind()
    assert Envelope.request(RequestKind.GET_RENTALS).kind() is RequestKind.GET_RENTALS


def test_rating_aggregate():
    rating = RatingAggregate()
    assert rating.stars == 0
    rating.add(5)
    rating.add(2)
    assert rating.count == 2
    assert rating.stars == 3.5


def test_new_rental_carries_existing_reviews():
    rental = NewRentalRequest.from_body({
        "rentalId": 4, "name": "Lux Resort", "location": "Paros", "nightlyRate": 220.0, "capacity": 4,
        "reviewCount": 2, "reviewSum": 9,
    }).to_rental()
    assert rental.rating.stars == 4.5
    assert rental.summary()["rentalId"] == 4
    assert "availability" not in rental.summary()


def test_new_rental_needs_an_id_at_the_worker():
    request = NewRentalRequest.from_body({"name": "Flat", "location": "Athens", "nightlyRate": 50, "capacity": 2})
    with pytest.raises(MalformedMessage):
        request.to_rental()


def test_booking_cost_counts_nights():
    assert booking(date(2023, 9, 28), date(2023, 10, 2)).total_cost(100.0) == 400.0


# Overlap uses the closed-interval intersection test. Earlier branch-based
# logic reported bookings entirely before or after a window as overlapping;
# that behaviour is corrected here rather than reproduced.
@pytest.mark.parametrize("start, end, expected", [
    (date(2023, 10, 1), date(2023, 10, 5), True),    # same range
    (date(2023, 10, 3), date(2023, 10, 4), True),    # inside the window
    (date(2023, 9, 20), date(2023, 10, 20), True),   # spans the window
    (date(2023, 9, 28), date(2023, 10, 1), True),    # ends on the first day
    (date(2023, 10, 5), date(2023, 10, 9), True),    # starts on the last day
    (date(2023, 9, 1), date(2023, 9, 30), False),    # entirely before
    (date(2023, 10, 6), date(2023, 10, 9), False),   # entirely after
])
def test_occurs_during_is_interval_intersection(start, end, expected):
    assert booking(start, end).occurs_during(date(2023, 10, 1), date(2023, 10, 5)) is expected


@pytest.mark.parametrize("value", ["1/10/2023", "01/1/2023", "01/10/23", "2023-10-01", "01/10/2023 "])
def test_dates_need_two_digit_day_and_month(value):
    with pytest.raises(ValueError):
        parse_date(value)
    with pytest.raises(MalformedMessage):
        BookingRequest.from_body({"guestEmail": "g@example.com", "rentalId": 3, "startDate": value,
                                  "endDate": "05/10/2023"})
