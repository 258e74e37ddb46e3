"""
Map and reduce halves of the fan-out request kinds.

Every worker runs the kind's ``map_func`` over the rentals and bookings it
owns; the aggregator checks each partial against ``result_type`` and runs
``reduce_func`` over one partial per worker.
"""
from collections import Counter
from typing import Any, Callable, Dict, List, NamedTuple, Type

from pydantic import StrictInt, TypeAdapter

from .errors import MalformedMessage
from .models import (Booking, BookingsQuery, PartialResult, Rental, RentalsQuery, RentalSummary, RequestBody,
                     RequestKind)


def map_rentals(rentals: Dict[int, Rental], bookings: Dict[int, Booking], body) -> List[Dict[str, Any]]:
    """Summaries of the rentals matching the query's filters."""
    query = RentalsQuery.from_body(body)
    return [rental.summary() for rental in rentals.values() if query.filters.matches(rental)]


def reduce_rentals(partials: List[PartialResult]) -> List[Dict[str, Any]]:
    merged = []
    for partial in partials:
        merged.extend(partial.result or [])
    merged.sort(key=lambda summary: summary["rentalId"])
    return merged


def map_bookings(rentals: Dict[int, Rental], bookings: Dict[int, Booking], body) -> Dict[str, int]:
    """Bookings overlapping the query window, counted per rental location."""
    query = BookingsQuery.from_body(body)
    counts = Counter()
    for booking in bookings.values():
        rental = rentals.get(booking.rental_id)
        if rental is not None and booking.occurs_during(query.start_date, query.end_date):
            counts[rental.location] += 1
    return dict(counts)


def reduce_bookings(partials: List[PartialResult]) -> Dict[str, int]:
    totals = Counter()
    for partial in partials:
        totals.update(partial.result or {})
    return dict(sorted(totals.items()))


class FanOutQuery(NamedTuple):
    body_model: Type[RequestBody]
    map_func: Callable
    reduce_func: Callable
    # key of the merged result in the reply body sent to the client
    field: str
    result_type: TypeAdapter

    def check(self, partial: PartialResult):
        """Raise MalformedMessage unless ``reduce_func`` can take this partial."""
        if partial.result is None:
            return
        try:
            self.result_type.validate_python(partial.result)
        except ValueError as e:
            raise MalformedMessage(f"job {partial.map_id}: bad partial from worker {partial.worker_id}: {e}") from e


FAN_OUT = {
    RequestKind.GET_RENTALS: FanOutQuery(
        RentalsQuery, map_rentals, reduce_rentals, "rentals", TypeAdapter(List[RentalSummary])),
    RequestKind.GET_BOOKINGS: FanOutQuery(
        BookingsQuery, map_bookings, reduce_bookings, "bookingsByLocation", TypeAdapter(Dict[str, StrictInt])),
}
