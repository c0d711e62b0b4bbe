import os
import random
import sys
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from booking_core.models import LEGACY_BOOKING_ID, Booking, Room, RoomStatus, User
from booking_core.status import (
    FREE_TITLE,
    derive_room_view,
    derive_status,
    format_time_left,
    next_transition_at,
)

T = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
ALICE = User(id="u1", display_name="Alice Reyes")


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


def booking(booking_id: str, start_min: float, end_min: float, **kwargs) -> Booking:
    kwargs.setdefault("created_at", T - timedelta(days=1))
    return Booking(
        id=booking_id,
        start_time=T + minutes(start_min),
        end_time=T + minutes(end_min),
        **kwargs,
    )


def test_empty_room_is_available():
    derived = derive_status([], T)
    assert derived.status == RoomStatus.AVAILABLE
    assert derived.active is None
    assert derived.next is None


def test_booking_soon_is_upcoming_then_occupied():
    b = booking("b1", 10, 70)
    assert derive_status([b], T).status == RoomStatus.UPCOMING
    at_start = derive_status([b], T + minutes(10))
    assert at_start.status == RoomStatus.OCCUPIED
    assert at_start.active == b


def test_upcoming_window_boundary_is_inclusive():
    b = booking("b1", 30, 90)
    assert derive_status([b], T).status == RoomStatus.UPCOMING

    later = Booking(
        id="b2",
        start_time=T + minutes(30) + timedelta(seconds=1),
        end_time=T + minutes(90),
        created_at=T,
    )
    derived = derive_status([later], T)
    assert derived.status == RoomStatus.AVAILABLE
    # still reported as next, just outside the window
    assert derived.next == later


def test_booking_ending_now_is_not_active():
    ended = booking("b1", -60, 0)
    assert derive_status([ended], T).status == RoomStatus.AVAILABLE
    assert derive_status([ended], T).active is None

    soon = booking("b2", 20, 40)
    derived = derive_status([ended, soon], T)
    assert derived.status == RoomStatus.UPCOMING
    assert derived.next == soon


def test_next_ties_break_on_created_at_then_id():
    early = booking("z", 60, 90, created_at=T - minutes(10))
    late = booking("a", 60, 90, created_at=T - minutes(5))
    assert derive_status([late, early], T).next == early

    same_a = booking("a", 60, 90, created_at=T)
    same_b = booking("b", 60, 90, created_at=T)
    assert derive_status([same_b, same_a], T).next == same_a


def test_derivation_is_independent_of_order_and_history():
    rng = random.Random(42)
    bookings = []
    cursor = -300
    for i in range(20):
        cursor += rng.randint(0, 60)
        length = rng.randint(5, 240)
        bookings.append(booking(f"b{i}", cursor, cursor + length))
        cursor += length

    for _ in range(50):
        now = T + minutes(rng.randint(-400, 3000))
        expected = derive_status(bookings, now)
        shuffled = bookings[:]
        rng.shuffle(shuffled)
        assert derive_status(shuffled, now) == expected
        assert derive_status(bookings, now) == expected


def test_view_title_prefers_description_then_booker():
    with_text = Room(id="1", name="Room 101", bookings=(booking("b1", -10, 50, description="Standup"),))
    view = derive_room_view(with_text, T)
    assert view.status == RoomStatus.OCCUPIED
    assert view.title == "Standup"
    assert view.end_time == T + minutes(50)

    by_owner = Room(id="2", name="Room 201", bookings=(booking("b2", 5, 50, booked_by=ALICE),))
    assert derive_room_view(by_owner, T).title == "Alice Reyes"

    anonymous = Room(id="3", name="Room 301", bookings=(booking("b3", -5, 50),))
    assert derive_room_view(anonymous, T).title == "Booked"

    anonymous_soon = Room(id="4", name="Room 401", bookings=(booking("b4", 5, 50),))
    assert derive_room_view(anonymous_soon, T).title == "Upcoming"


def test_view_outside_window_is_free_but_reports_next():
    room = Room(id="1", name="Room 101", bookings=(booking("b1", 120, 180, description="Review"),))
    view = derive_room_view(room, T)
    assert view.status == RoomStatus.AVAILABLE
    assert view.title == FREE_TITLE
    assert view.start_time is None
    assert view.next_booking_id == "b1"
    assert view.next_start_time == T + minutes(120)


def test_legacy_booking_counts_for_status():
    legacy = booking(LEGACY_BOOKING_ID, -30, 30, description="Old meeting")
    room = Room(id="1", name="Room 101", legacy_booking=legacy)
    view = derive_room_view(room, T)
    assert view.status == RoomStatus.OCCUPIED
    assert view.active_booking_id == LEGACY_BOOKING_ID


def test_next_transition_at():
    b = booking("b1", 60, 120)
    assert next_transition_at([b], T) == T + minutes(30)
    assert next_transition_at([b], T + minutes(30)) == T + minutes(60)
    assert next_transition_at([b], T + minutes(60)) == T + minutes(120)
    assert next_transition_at([b], T + minutes(120)) is None
    assert next_transition_at([], T) is None


def test_format_time_left():
    assert format_time_left(T + timedelta(hours=1, minutes=5, seconds=3), T) == "1h 5m 3s"
    assert format_time_left(T + timedelta(minutes=5, seconds=3), T) == "5m 3s"
    assert format_time_left(T, T) == "Time's up!"
    assert format_time_left(T - minutes(1), T) == "Time's up!"
