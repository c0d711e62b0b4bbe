"""
Persistence boundary of the rooms service.

Rooms are stored as one JSON snapshot in the camelCase shape written by the
mobile client. Older clients stored a single booking as bare
``startTime``/``endTime``/``eventTitle``/``bookedBy`` fields on the room; such
rooms are materialised with a legacy booking here, and nowhere else.
"""
import json
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from booking_core.intervals import ensure_aware, overlaps
from booking_core.models import LEGACY_BOOKING_ID, Booking, Room, User
from booking_core.results import CorruptStateError

from .models import Snapshot

logger = logging.getLogger(__name__)

ROOMS_KEY = "rooms_v1"

SAMPLE_ROOM_COUNT = 8


class _Stored(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("id", mode="before", check_fields=False)
    @classmethod
    def _id_as_str(cls, v: Any) -> Any:
        # ids were numbers in some client versions
        return str(v) if isinstance(v, int) else v


class StoredUser(_Stored):
    id: str
    username: str = ""


class StoredBooking(_Stored):
    id: str
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    description: Optional[str] = ""
    booked_by: Optional[StoredUser] = Field(default=None, alias="bookedBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class StoredRoom(_Stored):
    id: str
    name: str
    floor: Optional[str] = ""
    description: Optional[str] = ""
    bookings: List[StoredBooking] = Field(default_factory=list)
    # legacy single-booking fields
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    event_title: Optional[str] = Field(default=None, alias="eventTitle")
    booked_by: Optional[StoredUser] = Field(default=None, alias="bookedBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


def _user_from_stored(stored: Optional[StoredUser]) -> Optional[User]:
    if stored is None:
        return None
    return User(id=stored.id, display_name=stored.username)


def _user_to_stored(user: Optional[User]) -> Optional[StoredUser]:
    if user is None:
        return None
    return StoredUser(id=user.id, username=user.display_name)


def _mirrors_booking(stored: StoredRoom, bookings: Tuple[Booking, ...]) -> bool:
    start = ensure_aware(stored.start_time)
    end = ensure_aware(stored.end_time)
    return any(b.start_time == start and b.end_time == end for b in bookings)


def check_room_invariants(rooms: List[Room]) -> None:
    """
    Reject a data set that breaks the store invariants.

    Raises
    ------
    CorruptStateError
        If a room id repeats, or two bookings of one room overlap (the legacy
        booking included).
    """
    seen = set()
    for room in rooms:
        if room.id in seen:
            raise CorruptStateError(f"Room id {room.id} appears more than once")
        seen.add(room.id)

        bookings = sorted(room.all_bookings(), key=lambda b: b.sort_key())
        for i, a in enumerate(bookings):
            for b in bookings[i + 1:]:
                if overlaps(a.start_time, a.end_time, b.start_time, b.end_time):
                    raise CorruptStateError(
                        f"Bookings {a.id} and {b.id} of room {room.id} overlap"
                    )


def room_from_stored(stored: StoredRoom) -> Room:
    """
    Convert a stored room to a core ``Room``.

    Newer clients wrote the bare fields as display mirrors of an entry in
    ``bookings``; bare fields that mirror no entry are a legacy booking.
    """
    bookings = tuple(
        Booking(
            id=b.id,
            start_time=b.start_time,
            end_time=b.end_time,
            description=b.description or "",
            booked_by=_user_from_stored(b.booked_by),
            created_at=b.created_at or b.start_time,
        )
        for b in stored.bookings
    )

    legacy = None
    if (
        stored.start_time is not None
        and stored.end_time is not None
        and not _mirrors_booking(stored, bookings)
    ):
        legacy = Booking(
            id=LEGACY_BOOKING_ID,
            start_time=stored.start_time,
            end_time=stored.end_time,
            description=stored.event_title or "",
            booked_by=_user_from_stored(stored.booked_by),
            created_at=stored.created_at or stored.start_time,
        )

    return Room(
        id=stored.id,
        name=stored.name,
        floor=stored.floor or "",
        description=stored.description or "",
        bookings=bookings,
        legacy_booking=legacy,
    )


def room_to_stored(room: Room) -> StoredRoom:
    """Convert a core ``Room`` back to the stored shape."""
    legacy = room.legacy_booking
    return StoredRoom(
        id=room.id,
        name=room.name,
        floor=room.floor,
        description=room.description,
        bookings=[
            StoredBooking(
                id=b.id,
                start_time=b.start_time,
                end_time=b.end_time,
                description=b.description,
                booked_by=_user_to_stored(b.booked_by),
                created_at=b.created_at,
            )
            for b in room.bookings
        ],
        start_time=legacy.start_time if legacy else None,
        end_time=legacy.end_time if legacy else None,
        event_title=legacy.description if legacy else None,
        booked_by=_user_to_stored(legacy.booked_by) if legacy else None,
        created_at=legacy.created_at if legacy else None,
    )


def decode_rooms(payload: str) -> List[Room]:
    """
    Parse a JSON snapshot into rooms.

    Raises
    ------
    CorruptStateError
        If the payload is not valid JSON, not a list of rooms, or violates a
        room/booking invariant.
    """
    try:
        raw = json.loads(payload)
        if not isinstance(raw, list):
            raise CorruptStateError("Rooms snapshot is not a list")
        rooms = [room_from_stored(StoredRoom.model_validate(item)) for item in raw]
    except (json.JSONDecodeError, ValidationError, ValueError) as exc:
        raise CorruptStateError(f"Rooms snapshot is corrupt: {exc}") from exc
    check_room_invariants(rooms)
    return rooms


def encode_rooms(rooms: List[Room]) -> str:
    data = [
        room_to_stored(r).model_dump(mode="json", by_alias=True, exclude_none=True)
        for r in rooms
    ]
    return json.dumps(data)


class SnapshotStore:
    """
    Key/value snapshot store for the room list, backed by SQLAlchemy.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory for database sessions.
    key : str
        Snapshot key.
    """

    def __init__(self, session_factory: sessionmaker, key: str = ROOMS_KEY):
        self.session_factory = session_factory
        self.key = key

    def load(self) -> Optional[List[Room]]:
        """
        Load the stored rooms.

        Returns
        -------
        Optional[List[Room]]
            The rooms, or None if nothing was saved yet.

        Raises
        ------
        CorruptStateError
            If the stored payload cannot be parsed.
        """
        db = self.session_factory()
        try:
            row = db.get(Snapshot, self.key)
            payload = row.payload if row is not None else None
        finally:
            db.close()

        if payload is None:
            return None
        return decode_rooms(payload)

    def save(self, rooms: List[Room]) -> None:
        """
        Save the rooms, fire-and-forget.

        Failures are logged and swallowed: the in-memory store stays
        authoritative for the lifetime of the process.
        """
        payload = encode_rooms(rooms)
        db = self.session_factory()
        try:
            row = db.get(Snapshot, self.key)
            if row is None:
                db.add(Snapshot(key=self.key, payload=payload))
            else:
                row.payload = payload
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Saving rooms snapshot %s failed", self.key)
        finally:
            db.close()


def default_floor_for(room_name: str) -> str:
    """
    Guess a floor label from the room number, e.g. ``"Room 301"`` -> ``"3th floor"``.

    Names without a number are treated as room 100.
    """
    digits = ""
    for ch in room_name:
        if ch.isdigit():
            digits += ch
        elif digits:
            break
    number = int(digits) if digits else 100
    return f"{max(1, number // 100)}th floor"


def generate_sample_rooms() -> List[Room]:
    """The rooms a fresh installation starts with: Room 101 ... Room 801."""
    rooms = []
    for i in range(1, SAMPLE_ROOM_COUNT + 1):
        name = f"Room {i * 100 + 1}"
        rooms.append(Room(id=str(i), name=name, floor=default_floor_for(name)))
    return rooms


def load_rooms_or_seed(snapshots: SnapshotStore) -> List[Room]:
    """
    Load rooms, falling back to the sample rooms when none are usable.

    An empty or missing snapshot seeds the sample rooms and saves them; a
    corrupt snapshot is logged and replaced the same way.
    """
    try:
        rooms = snapshots.load()
    except CorruptStateError as exc:
        logger.warning("Discarding corrupt rooms snapshot: %s", exc)
        rooms = None

    if rooms:
        logger.info("Loaded %d room(s) from snapshot %s", len(rooms), snapshots.key)
        return rooms

    rooms = generate_sample_rooms()
    snapshots.save(rooms)
    logger.info("Seeded %d sample room(s)", len(rooms))
    return rooms
