import argparse
import socket
from threading import RLock, Thread
from typing import Dict, Optional, Tuple

from . import config
from .errors import MalformedMessage
from .logs import get_logger
from .models import (AvailabilityRequest, Booking, BookingConfirmation, BookingRequest, Envelope, MessageType,
                     NewRentalRequest, PartialResult, RatingRequest, Rental, RequestKind, Status)
from .protocol import read_line, recv_message, send_line, send_message
from .queries import FAN_OUT


class RentalStore:
    """Rentals this worker owns and the bookings made against them."""

    def __init__(self):
        self.rentals: Dict[int, Rental] = {}
        self.bookings: Dict[int, Booking] = {}
        self.lock = RLock()


class WorkerNode:
    """
    Request handling for one worker.

    Direct requests are answered with a reply envelope. Fan-out requests
    produce no reply; their partial result is pushed to the collector,
    tagged with the job id and this worker's roster index.
    """

    def __init__(self, index: int, collector: Optional[Tuple[str, int]], store: Optional[RentalStore] = None):
        self.index = index
        self.collector = collector
        self.store = store if store is not None else RentalStore()
        self.logger = get_logger(f"WORKER-{index}", "Worker")
        self.handlers = {
            RequestKind.NEW_RENTAL: self.new_rental,
            RequestKind.UPDATE_AVAILABILITY: self.update_availability,
            RequestKind.NEW_BOOKING: self.new_booking,
            RequestKind.NEW_RATING: self.new_rating,
        }

    def handle(self, envelope: Envelope) -> Optional[Envelope]:
        kind = envelope.kind()
        if kind in FAN_OUT:
            self.run_map(kind, envelope.body)
            return None
        handler = self.handlers.get(kind)
        if handler is None:
            raise MalformedMessage(f"{kind.value} is not a worker request")
        return handler(kind, envelope.body)

    def new_rental(self, kind: RequestKind, body) -> Envelope:
        rental = NewRentalRequest.from_body(body).to_rental()
        with self.store.lock:
            self.store.rentals[rental.rental_id] = rental
        self.logger.info(f"Stored rental {rental.rental_id} ({rental.name}, {rental.location})")
        return Envelope.response(kind.value, {"status": Status.OK.value, "rentalId": rental.rental_id})

    def update_availability(self, kind: RequestKind, body) -> Envelope:
        request = AvailabilityRequest.from_body(body)
        with self.store.lock:
            rental = self.store.rentals.get(request.rental_id)
            if rental is None:
                return Envelope.response(kind.value, {"status": Status.NOT_FOUND.value})
            rental.availability.toggle_range(request.start_date, request.end_date)
        self.logger.info(f"Toggled availability of rental {request.rental_id} "
                         f"from {request.start_date} to {request.end_date}")
        return Envelope.response(kind.value, {"status": Status.OK.value})

    def new_booking(self, kind: RequestKind, body) -> Envelope:
        request = BookingRequest.from_body(body)
        if request.booking_id is None:
            raise MalformedMessage("NEW_BOOKING reached a worker without a bookingId")

        with self.store.lock:
            rental = self.store.rentals.get(request.rental_id)
            if rental is None:
                confirmation = BookingConfirmation(status=Status.NOT_FOUND)
            elif not rental.availability.query(request.start_date, request.end_date):
                confirmation = BookingConfirmation(status=Status.UNAVAILABLE)
            else:
                rental.availability.toggle_range(request.start_date, request.end_date)
                booking = Booking(
                    booking_id=request.booking_id,
                    guest_email=request.guest_email,
                    rental_id=request.rental_id,
                    start_date=request.start_date,
                    end_date=request.end_date,
                )
                self.store.bookings[booking.booking_id] = booking
                confirmation = BookingConfirmation(
                    status=Status.OK,
                    booking_id=booking.booking_id,
                    rental_name=rental.name,
                    location=rental.location,
                    total_cost=booking.total_cost(rental.nightly_rate),
                )
        self.logger.info(f"Booking {request.booking_id} of rental {request.rental_id}: {confirmation.status.value}")
        return Envelope.response(kind.value, confirmation.to_body())

    def new_rating(self, kind: RequestKind, body) -> None:
        request = RatingRequest.from_body(body)
        with self.store.lock:
            rental = self.store.rentals.get(request.rental_id)
            if rental is None:
                self.logger.warning(f"Rating for unknown rental {request.rental_id} dropped")
                return None
            rental.rating.add(request.rating)
        self.logger.info(f"Rental {request.rental_id} rated {request.rating}")
        return None

    def run_map(self, kind: RequestKind, body):
        query = FAN_OUT[kind]
        request = query.body_model.from_body(body)
        if request.map_id is None:
            raise MalformedMessage(f"{kind.value} reached a worker without a mapId")
        with self.store.lock:
            result = query.map_func(self.store.rentals, self.store.bookings, body)
        self.push_partial(kind, PartialResult(map_id=request.map_id, worker_id=self.index, result=result))

    def push_partial(self, kind: RequestKind, partial: PartialResult):
        envelope = Envelope(type=MessageType.PARTIAL, header=kind.value, body=partial.to_body())
        try:
            with socket.create_connection(self.collector) as sock:
                send_message(sock, envelope)
            self.logger.info(f"Partial for job {partial.map_id} sent to collector")
        except OSError as e:
            self.logger.error(f"Failed to send partial for job {partial.map_id} to {self.collector}: {e}")


def register(coordinator: Tuple[str, int], port: int) -> int:
    """Announce our listening port to the coordinator; returns our roster index."""
    with socket.create_connection(coordinator) as sock:
        send_line(sock, str(port))
        return int(read_line(sock))


class WorkerServer:
    """Accepts one request per connection, each served on its own thread."""

    def __init__(self, host: str, port: int, collector: Tuple[str, int]):
        self.listener = socket.create_server((host, port), backlog=config.LISTEN_BACKLOG)
        self.port = self.listener.getsockname()[1]
        self.collector = collector
        self.node: Optional[WorkerNode] = None

    def register(self, coordinator: Tuple[str, int]) -> int:
        index = register(coordinator, self.port)
        self.node = WorkerNode(index, self.collector)
        self.node.logger.info(f"Registered with coordinator at {coordinator[0]}:{coordinator[1]}, listening on {self.port}")
        return index

    def serve_forever(self):
        while True:
            try:
                conn, addr = self.listener.accept()
            except OSError:
                break
            Thread(target=self.handle_connection, args=(conn,), daemon=True).start()

    def handle_connection(self, conn):
        with conn:
            header = "UNKNOWN"
            try:
                envelope = recv_message(conn)
                header = envelope.header
                reply = self.node.handle(envelope)
            except MalformedMessage as e:
                self.node.logger.warning(f"Malformed {header} request: {e}")
                reply = Envelope.error(header, str(e))
            except OSError as e:
                self.node.logger.error(f"Connection failed: {e}")
                return
            if reply is not None:
                try:
                    send_message(conn, reply)
                except OSError as e:
                    self.node.logger.error(f"Failed to reply to {header}: {e}")

    def close(self):
        self.listener.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Rental fleet worker")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=config.WORKER_PORT)
    parser.add_argument("--coordinator-host", default=config.HOST)
    parser.add_argument("--coordinator-port", type=int, default=config.COORDINATOR_PORT)
    parser.add_argument("--collector-host", default=config.HOST)
    parser.add_argument("--collector-port", type=int, default=config.COLLECTOR_PORT)
    args = parser.parse_args(argv)

    server = WorkerServer(args.host, args.port, (args.collector_host, args.collector_port))
    server.register((args.coordinator_host, args.coordinator_port))
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()


if __name__ == "__main__":
    main()
