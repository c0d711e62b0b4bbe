"""
Status derivation: what a room looks like at a given instant.

Everything here is a pure function of a room's bookings and ``now``; callers
re-run it against a ticking clock instead of storing the result.
"""
from datetime import datetime, timedelta
from typing import Iterable, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict

from .models import Booking, Room, RoomStatus, User

UPCOMING_WINDOW = timedelta(minutes=30)

FREE_TITLE = "Free for bookings"


class DerivedStatus(NamedTuple):
    status: RoomStatus
    active: Optional[Booking]
    next: Optional[Booking]


class RoomView(BaseModel):
    """
    Display state of a room, as published to the presentation layer.

    Attributes
    ----------
    room_id : str
        Room identifier.
    name : str
        Room name.
    floor : str
        Floor label.
    description : str
        Room description.
    status : RoomStatus
        Derived status.
    title : str
        Active booking title, else the upcoming booking title, else
        "Free for bookings".
    start_time, end_time : Optional[datetime]
        Time range of the displayed booking, if any.
    booked_by : Optional[User]
        Owner of the displayed booking, if any.
    active_booking_id : Optional[str]
        Booking in progress.
    next_booking_id : Optional[str]
        Earliest future booking, even outside the upcoming window.
    next_start_time : Optional[datetime]
        Start of ``next_booking_id``.
    """
    model_config = ConfigDict(frozen=True)

    room_id: str
    name: str
    floor: str = ""
    description: str = ""
    status: RoomStatus
    title: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    booked_by: Optional[User] = None
    active_booking_id: Optional[str] = None
    next_booking_id: Optional[str] = None
    next_start_time: Optional[datetime] = None


def derive_status(
    bookings: Iterable[Booking],
    now: datetime,
    upcoming_window: timedelta = UPCOMING_WINDOW,
) -> DerivedStatus:
    """
    Compute a room's status, active booking and next booking at ``now``.

    Parameters
    ----------
    bookings : Iterable[Booking]
        All bookings of the room, legacy booking included.
    now : datetime
        Evaluation instant (aware).
    upcoming_window : timedelta
        Lookahead within which a future booking makes the room "Upcoming".
        The boundary is inclusive.

    Returns
    -------
    DerivedStatus
        ``(status, active, next)``. ``next`` is the earliest booking starting
        after ``now`` (ties: earliest ``created_at``, then ``id``), whether or
        not it is inside the window.
    """
    active = None
    upcoming = None
    for booking in bookings:
        if booking.start_time <= now < booking.end_time:
            # at most one by the no-overlap invariant; stay deterministic anyway
            if active is None or booking.sort_key() < active.sort_key():
                active = booking
        elif booking.start_time > now:
            if upcoming is None or booking.sort_key() < upcoming.sort_key():
                upcoming = booking

    if active is not None:
        status = RoomStatus.OCCUPIED
    elif upcoming is not None and upcoming.start_time - now <= upcoming_window:
        status = RoomStatus.UPCOMING
    else:
        status = RoomStatus.AVAILABLE

    return DerivedStatus(status=status, active=active, next=upcoming)


def _title_for(booking: Booking, fallback: str) -> str:
    if booking.description:
        return booking.description
    if booking.booked_by is not None and booking.booked_by.display_name:
        return booking.booked_by.display_name
    return fallback


def derive_room_view(
    room: Room,
    now: datetime,
    upcoming_window: timedelta = UPCOMING_WINDOW,
) -> RoomView:
    """Derive the display state of ``room`` at ``now``."""
    derived = derive_status(room.all_bookings(), now, upcoming_window)

    shown = None
    title = FREE_TITLE
    if derived.active is not None:
        shown = derived.active
        title = _title_for(shown, "Booked")
    elif derived.status == RoomStatus.UPCOMING:
        shown = derived.next
        title = _title_for(shown, "Upcoming")

    return RoomView(
        room_id=room.id,
        name=room.name,
        floor=room.floor,
        description=room.description,
        status=derived.status,
        title=title,
        start_time=shown.start_time if shown else None,
        end_time=shown.end_time if shown else None,
        booked_by=shown.booked_by if shown else None,
        active_booking_id=derived.active.id if derived.active else None,
        next_booking_id=derived.next.id if derived.next else None,
        next_start_time=derived.next.start_time if derived.next else None,
    )


def next_transition_at(
    bookings: Iterable[Booking],
    now: datetime,
    upcoming_window: timedelta = UPCOMING_WINDOW,
) -> Optional[datetime]:
    """
    Earliest instant after ``now`` at which the derived view may change.

    A booking can change the view when it enters the upcoming window, when it
    starts and when it ends. Returns None when no such instant remains.
    """
    earliest = None
    for booking in bookings:
        for instant in (booking.start_time - upcoming_window, booking.start_time, booking.end_time):
            if instant > now and (earliest is None or instant < earliest):
                earliest = instant
    return earliest


def format_time_left(end: datetime, now: datetime) -> str:
    """Remaining time of an occupied room, e.g. ``"1h 5m 3s"`` or ``"Time's up!"``."""
    remaining = int((end - now).total_seconds())
    if remaining <= 0:
        return "Time's up!"
    hours, rest = divmod(remaining, 3600)
    minutes, seconds = divmod(rest, 60)
    prefix = f"{hours}h " if hours > 0 else ""
    return f"{prefix}{minutes}m {seconds}s"
