"""
Entity-level mutations of rooms and their booking sets.

These functions are pure: they take values owned by the caller and return new
values, never modifying their input. ``booking_core.serialized_store`` wraps
them for concurrent use.
"""
from typing import List, Sequence

from .models import Booking, Room
from .results import Accepted, Rejected, RejectReason, Result


def add_booking(room: Room, booking: Booking) -> Room:
    """
    Return a copy of ``room`` with ``booking`` appended.

    ``booking`` must already have passed admission. A duplicate id is a
    programming error and raises ``ValueError``.
    """
    if room.find_booking(booking.id) is not None:
        raise ValueError(f"Room {room.id} already has booking {booking.id}")
    return room.model_copy(update={"bookings": room.bookings + (booking,)})


def remove_booking(room: Room, booking_id: str) -> Result[Room]:
    """Return a copy of ``room`` without ``booking_id``, or ``not_found``."""
    remaining = tuple(b for b in room.bookings if b.id != booking_id)
    if len(remaining) == len(room.bookings):
        return Rejected(RejectReason.NOT_FOUND, "Booking not found.")
    return Accepted(room.model_copy(update={"bookings": remaining}))


def delete_room(rooms: Sequence[Room], room_id: str) -> Result[List[Room]]:
    """Return ``rooms`` without ``room_id`` (bookings included), or ``not_found``."""
    remaining = [r for r in rooms if r.id != room_id]
    if len(remaining) == len(rooms):
        return Rejected(RejectReason.NOT_FOUND, "Room not found.")
    return Accepted(remaining)
