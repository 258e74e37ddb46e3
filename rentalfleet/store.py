from threading import Lock
from typing import Dict, List, Optional

from .models import BookingReference, GuestAccount


class GuestAccountStore:
    """
    In-memory guest accounts keyed by email.

    Callers go through find/save and the booking helpers; accounts handed
    out by ``find`` are copies, so the unrated-booking lists are only
    changed here.
    """

    def __init__(self):
        self._accounts: Dict[str, GuestAccount] = {}
        self._lock = Lock()

    def save(self, account: GuestAccount):
        with self._lock:
            self._accounts[account.email] = account.model_copy(deep=True)

    def find(self, email: str, password: Optional[str] = None) -> Optional[GuestAccount]:
        with self._lock:
            account = self._accounts.get(email)
            if account is None or (password is not None and account.password != password):
                return None
            return account.model_copy(deep=True)

    def unrated_bookings(self, email: str, password: Optional[str] = None) -> Optional[List[BookingReference]]:
        account = self.find(email, password)
        return None if account is None else account.unrated_bookings

    def add_booking(self, email: str, reference: BookingReference) -> bool:
        with self._lock:
            account = self._accounts.get(email)
            if account is None:
                return False
            account.unrated_bookings.append(reference)
            return True

    def rate_booking(self, email: str, booking_id: int) -> Optional[BookingReference]:
        """Take a booking off the guest's unrated list, returning it if it was there."""
        with self._lock:
            account = self._accounts.get(email)
            if account is None:
                return None
            for position, reference in enumerate(account.unrated_bookings):
                if reference.booking_id == booking_id:
                    return account.unrated_bookings.pop(position)
            return None
