"""
Cancellation and administrative clean-up of bookings.

Cancelling removes the booking; bookings are never flagged as cancelled.
"""
from datetime import datetime
from typing import Optional

from .intervals import utc_now
from .models import LEGACY_BOOKING_ID, Room, User, new_booking_id
from .results import Accepted, Rejected, RejectReason, Result
from .store import remove_booking


def try_cancel(room: Room, booking_id: str, requester: User, is_admin: bool) -> Result[Room]:
    """
    Cancel ``booking_id`` on behalf of ``requester``.

    Parameters
    ----------
    room : Room
        Room holding the booking.
    booking_id : str
        Booking to cancel.
    requester : User
        Identity asking for the cancellation.
    is_admin : bool
        Admins may cancel any booking; everybody else only their own.

    Returns
    -------
    Result[Room]
        The room without the booking, or ``not_found`` / ``not_authorized``.
        The legacy booking is never cancellable here, see
        ``clear_legacy_booking``.
    """
    if booking_id == LEGACY_BOOKING_ID and room.legacy_booking is not None:
        return Rejected(
            RejectReason.NOT_AUTHORIZED,
            "Legacy bookings can only be cleared by an administrator.",
        )

    booking = room.find_booking(booking_id)
    if booking is None:
        return Rejected(RejectReason.NOT_FOUND, "Booking not found.")

    is_owner = booking.booked_by is not None and booking.booked_by.id == requester.id
    if not (is_admin or is_owner):
        return Rejected(
            RejectReason.NOT_AUTHORIZED,
            "Only the booking owner can cancel this booking.",
        )

    return remove_booking(room, booking_id)


def clear_legacy_booking(room: Room, is_admin: bool) -> Result[Room]:
    """Drop the room's legacy single-booking fields (admins only)."""
    if not is_admin:
        return Rejected(RejectReason.NOT_AUTHORIZED, "Only admins can clear legacy bookings.")
    if room.legacy_booking is None:
        return Rejected(RejectReason.NOT_FOUND, "Room has no legacy booking.")
    return Accepted(room.model_copy(update={"legacy_booking": None}))


def promote_legacy_booking(
    room: Room,
    is_admin: bool,
    now: Optional[datetime] = None,
) -> Result[Room]:
    """
    Turn the legacy booking into a real booking with a fresh id (admins only).

    The legacy booking already took part in every conflict check, so promoting
    it cannot introduce an overlap.
    """
    if not is_admin:
        return Rejected(RejectReason.NOT_AUTHORIZED, "Only admins can promote legacy bookings.")
    legacy = room.legacy_booking
    if legacy is None:
        return Rejected(RejectReason.NOT_FOUND, "Room has no legacy booking.")

    promoted = legacy.model_copy(update={"id": new_booking_id(now or utc_now())})
    return Accepted(
        room.model_copy(
            update={"bookings": room.bookings + (promoted,), "legacy_booking": None}
        )
    )
