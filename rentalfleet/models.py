import re
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, StrictInt, model_validator
from pydantic.alias_generators import to_camel

from . import config
from .availability import Availability
from .errors import MalformedMessage


def parse_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        if not re.fullmatch(config.DATE_PATTERN, value):
            raise ValueError(f"expected dd/mm/yyyy, got {value!r}")
        return datetime.strptime(value, config.DATE_FORMAT).date()
    raise ValueError(f"not a date: {value!r}")


def format_date(value: date) -> str:
    return value.strftime(config.DATE_FORMAT)


WireDate = Annotated[date, BeforeValidator(parse_date), PlainSerializer(format_date, return_type=str)]


class RequestKind(str, Enum):
    GET_RENTALS = "GET_RENTALS"
    NEW_BOOKING = "NEW_BOOKING"
    GET_BOOKINGS_WITH_NO_RATINGS = "GET_BOOKINGS_WITH_NO_RATINGS"
    NEW_RATING = "NEW_RATING"
    NEW_RENTAL = "NEW_RENTAL"
    UPDATE_AVAILABILITY = "UPDATE_AVAILABILITY"
    GET_BOOKINGS = "GET_BOOKINGS"
    CLOSE_CONNECTION = "CLOSE_CONNECTION"


def parse_kind(header: str) -> RequestKind:
    try:
        return RequestKind(header)
    except ValueError:
        raise MalformedMessage(f"unknown request kind {header!r}") from None


class MessageType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    PARTIAL = "partial"
    ERROR = "error"


class Status(str, Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"
    FAILED = "FAILED"


class Envelope(BaseModel):
    type: MessageType = MessageType.REQUEST
    header: str
    body: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def request(cls, kind: RequestKind, body: Optional[Dict[str, Any]] = None):
        return cls(type=MessageType.REQUEST, header=kind.value, body=body or {})

    @classmethod
    def response(cls, header: str, body: Optional[Dict[str, Any]] = None):
        return cls(type=MessageType.RESPONSE, header=header, body=body or {})

    @classmethod
    def error(cls, header: str, reason: str):
        return cls(type=MessageType.ERROR, header=header, body={"error": reason})

    def kind(self) -> RequestKind:
        return parse_kind(self.header)


class WireModel(BaseModel):
    """Body payload with camelCase names on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_body(cls, body: Dict[str, Any]):
        try:
            return cls.model_validate(body)
        except ValueError as e:
            # pydantic's ValidationError is a ValueError
            raise MalformedMessage(f"invalid {cls.__name__}: {e}") from e

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DateRange(WireModel):
    start_date: WireDate
    end_date: WireDate

    @model_validator(mode="after")
    def _ordered(self):
        if self.start_date > self.end_date:
            raise ValueError("startDate is after endDate")
        return self


# --- Fleet ---

class WorkerInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    port: int


class PartialResult(WireModel):
    map_id: int
    worker_id: int
    result: Any = None


class AggregatedResult(BaseModel):
    map_id: int
    header: str
    result: Any = None


# --- Domain ---

class RatingAggregate(BaseModel):
    count: int = 0
    total: int = 0

    @property
    def stars(self) -> float:
        return 0 if self.count == 0 else self.total / self.count

    def add(self, rating: int):
        self.count += 1
        self.total += rating


class Rental(WireModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    rental_id: int
    name: str
    location: str
    nightly_rate: float
    capacity: int
    host_email: Optional[str] = None
    image_path: Optional[str] = None
    rating: RatingAggregate = Field(default_factory=RatingAggregate)
    availability: Availability = Field(default_factory=Availability, exclude=True)

    def summary(self) -> Dict[str, Any]:
        body = self.model_dump(mode="json", by_alias=True, exclude={"rating"})
        body["stars"] = self.rating.stars
        body["reviewCount"] = self.rating.count
        return body


class RentalSummary(WireModel):
    """A ``Rental.summary()`` as it comes back from a worker; only the id is checked."""
    model_config = ConfigDict(extra="allow", populate_by_name=False)

    rental_id: StrictInt


class Booking(WireModel):
    booking_id: int
    guest_email: str
    rental_id: int
    start_date: WireDate
    end_date: WireDate

    @property
    def nights(self) -> int:
        return (self.end_date - self.start_date).days

    def total_cost(self, nightly_rate: float) -> float:
        return nightly_rate * self.nights

    def occurs_during(self, start: date, end: date) -> bool:
        """Closed-interval overlap with [start, end]."""
        return self.start_date <= end and start <= self.end_date


class BookingReference(WireModel):
    """What a guest account keeps about one of its bookings."""
    booking_id: int
    rental_id: int
    rental_name: str
    location: str
    start_date: WireDate
    end_date: WireDate


class GuestAccount(BaseModel):
    email: str
    password: str
    name: str = ""
    phone: str = ""
    unrated_bookings: List[BookingReference] = Field(default_factory=list)


# --- Request bodies ---

class RequestBody(WireModel):
    request_id: Optional[int] = None


class NewRentalRequest(RequestBody):
    rental_id: Optional[int] = None
    name: str
    location: str
    nightly_rate: float = Field(ge=0)
    capacity: int = Field(ge=1)
    review_count: int = Field(default=0, ge=0)
    review_sum: int = Field(default=0, ge=0)
    image_path: Optional[str] = None
    host_email: Optional[str] = None

    def to_rental(self) -> Rental:
        if self.rental_id is None:
            raise MalformedMessage("NEW_RENTAL reached a worker without a rentalId")
        return Rental(
            rental_id=self.rental_id,
            name=self.name,
            location=self.location,
            nightly_rate=self.nightly_rate,
            capacity=self.capacity,
            host_email=self.host_email,
            image_path=self.image_path,
            rating=RatingAggregate(count=self.review_count, total=self.review_sum),
        )


class AvailabilityRequest(RequestBody, DateRange):
    rental_id: int


class BookingRequest(RequestBody, DateRange):
    guest_email: str
    rental_id: int
    booking_id: Optional[int] = None


class GuestQuery(RequestBody):
    guest_email: str
    guest_password: str


class RatingRequest(RequestBody):
    guest_email: str
    booking_id: int
    rental_id: int
    rating: int = Field(ge=1, le=5)


class RentalFilter(WireModel):
    location: Optional[str] = None
    start_date: Optional[WireDate] = None
    end_date: Optional[WireDate] = None
    capacity: Optional[int] = None
    max_price: Optional[float] = None
    min_stars: Optional[float] = None

    @model_validator(mode="after")
    def _dates_together(self):
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("startDate and endDate must be given together")
        if self.start_date is not None and self.start_date > self.end_date:
            raise ValueError("startDate is after endDate")
        return self

    def matches(self, rental: Rental) -> bool:
        if self.location is not None and rental.location.lower() != self.location.lower():
            return False
        if self.capacity is not None and rental.capacity < self.capacity:
            return False
        if self.max_price is not None and rental.nightly_rate > self.max_price:
            return False
        if self.min_stars is not None and rental.rating.stars < self.min_stars:
            return False
        if self.start_date is not None and not rental.availability.query(self.start_date, self.end_date):
            return False
        return True


class RentalsQuery(RequestBody):
    map_id: Optional[int] = None
    filters: RentalFilter = Field(default_factory=RentalFilter)


class BookingsQuery(RequestBody, DateRange):
    map_id: Optional[int] = None


class BookingConfirmation(WireModel):
    """A worker's answer to NEW_BOOKING."""
    status: Status
    booking_id: Optional[int] = None
    rental_name: Optional[str] = None
    location: Optional[str] = None
    total_cost: Optional[float] = None
