import logging
from threading import Thread
from typing import Any, Dict, Optional

from .coordinator import Coordinator
from .errors import JobTimeout, MalformedMessage
from .logs import get_logger
from .models import (AvailabilityRequest, BookingConfirmation, BookingReference, BookingRequest, Envelope,
                     GuestQuery, MessageType, NewRentalRequest, RatingRequest, RequestKind, Status)
from .protocol import recv_message, send_message
from .queries import FAN_OUT


class PeerLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['peer']}] {msg}", kwargs


class ClientSession(Thread):
    """
    Serves one client connection until it asks to close or the connection fails.

    Each request gets exactly one reply except CLOSE_CONNECTION. A request
    that cannot be understood is answered with an error envelope and the
    session carries on; a failed read or write ends it.
    """

    def __init__(self, sock, coordinator: Coordinator, peer=None):
        self.sock = sock
        self.coordinator = coordinator
        self.peer = peer or "client"
        self.logger = PeerLogger(get_logger("SESSION"), {"peer": self.peer})
        self.handlers = {
            RequestKind.GET_RENTALS: self.fan_out,
            RequestKind.GET_BOOKINGS: self.fan_out,
            RequestKind.NEW_BOOKING: self.new_booking,
            RequestKind.GET_BOOKINGS_WITH_NO_RATINGS: self.unrated_bookings,
            RequestKind.NEW_RATING: self.new_rating,
            RequestKind.NEW_RENTAL: self.new_rental,
            RequestKind.UPDATE_AVAILABILITY: self.update_availability,
        }
        super().__init__(name=f"session-{self.peer}", daemon=True)

    def run(self):
        self.logger.info("Client connected")
        try:
            while self.serve_one():
                pass
        except OSError as e:
            self.logger.warning(f"Connection lost: {e}")
        finally:
            self.sock.close()
            self.logger.info("Session closed")

    def serve_one(self) -> bool:
        """Handle one request; False once the client has asked to close."""
        header = "UNKNOWN"
        try:
            envelope = recv_message(self.sock)
            header = envelope.header
            kind = envelope.kind()
            self.logger.debug(f"Request {kind.value}: {envelope.body}")
            if kind is RequestKind.CLOSE_CONNECTION:
                self.logger.info("Client asked to close the connection")
                return False
            reply = Envelope.response(header, self.handlers[kind](kind, envelope.body))
        except MalformedMessage as e:
            self.logger.warning(f"Malformed {header} request: {e}")
            reply = Envelope.error(header, str(e))
        except JobTimeout as e:
            self.logger.error(str(e))
            reply = Envelope.error(header, str(e))
        send_message(self.sock, reply)
        return True

    def answered(self, reply: Optional[Envelope]) -> bool:
        """A worker reply that carries a result rather than a transport or worker error."""
        if reply is not None and reply.type is MessageType.ERROR:
            self.logger.warning(f"Worker rejected {reply.header}: {reply.body.get('error')}")
        return reply is not None and reply.type is MessageType.RESPONSE

    # --- Direct requests ---

    def new_rental(self, kind: RequestKind, body) -> Dict[str, Any]:
        request = NewRentalRequest.from_body(body)
        request.rental_id = self.coordinator.next_entity_id()
        reply = self.coordinator.route_to_one(request.rental_id, Envelope.request(kind, request.to_body()),
                                              expect_reply=True)
        if not self.answered(reply):
            return {"status": Status.FAILED.value, "rentalId": request.rental_id}
        return {"status": reply.body.get("status", Status.FAILED.value), "rentalId": request.rental_id}

    def update_availability(self, kind: RequestKind, body) -> Dict[str, Any]:
        request = AvailabilityRequest.from_body(body)
        reply = self.coordinator.route_to_one(request.rental_id, Envelope.request(kind, request.to_body()),
                                              expect_reply=True)
        if not self.answered(reply):
            return {"status": Status.FAILED.value}
        return {"status": reply.body.get("status", Status.FAILED.value)}

    def new_booking(self, kind: RequestKind, body) -> Dict[str, Any]:
        request = BookingRequest.from_body(body)
        if self.coordinator.accounts.find(request.guest_email) is None:
            return {"status": Status.NOT_FOUND.value}

        request.booking_id = self.coordinator.next_booking_id()
        reply = self.coordinator.route_to_one(request.rental_id, Envelope.request(kind, request.to_body()),
                                              expect_reply=True)
        if not self.answered(reply):
            return {"status": Status.FAILED.value}
        confirmation = BookingConfirmation.from_body(reply.body)
        if confirmation.status is not Status.OK:
            return {"status": confirmation.status.value}

        self.coordinator.accounts.add_booking(request.guest_email, BookingReference(
            booking_id=request.booking_id,
            rental_id=request.rental_id,
            rental_name=confirmation.rental_name or "",
            location=confirmation.location or "",
            start_date=request.start_date,
            end_date=request.end_date,
        ))
        self.logger.info(f"Booking {request.booking_id} of rental {request.rental_id} for {request.guest_email}")
        return {"status": Status.OK.value, "bookingId": request.booking_id, "totalCost": confirmation.total_cost}

    def unrated_bookings(self, kind: RequestKind, body) -> Dict[str, Any]:
        query = GuestQuery.from_body(body)
        bookings = self.coordinator.accounts.unrated_bookings(query.guest_email, query.guest_password)
        if bookings is None:
            return {"status": Status.NOT_FOUND.value, "bookings": []}
        return {"status": Status.OK.value, "bookings": [booking.to_body() for booking in bookings]}

    def new_rating(self, kind: RequestKind, body) -> Dict[str, Any]:
        request = RatingRequest.from_body(body)
        reference = self.coordinator.accounts.rate_booking(request.guest_email, request.booking_id)
        if reference is None:
            return {"status": Status.NOT_FOUND.value}
        # the booking, not the client, decides which rental is rated
        request.rental_id = reference.rental_id
        self.coordinator.route_to_one(reference.rental_id, Envelope.request(kind, request.to_body()))
        return {"status": Status.OK.value}

    # --- Fan-out requests ---

    def fan_out(self, kind: RequestKind, body) -> Dict[str, Any]:
        query = FAN_OUT[kind]
        request = query.body_model.from_body(body)
        result = self.coordinator.run_job(kind, request.to_body())
        return {"status": Status.OK.value, "mapId": result.map_id, query.field: result.result}
