import itertools
from datetime import datetime
from enum import Enum as PyEnum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .intervals import ensure_aware, utc_now

# Id carried by the booking materialised from a room's bare legacy fields.
LEGACY_BOOKING_ID = "__legacy__"

_booking_sequence = itertools.count(1)


def new_booking_id(now: Optional[datetime] = None) -> str:
    """
    Generate a time-based booking id that is unique within the process.

    Parameters
    ----------
    now : Optional[datetime]
        Creation instant; defaults to the current UTC time.

    Returns
    -------
    str
        ``"<epoch millis>-<sequence>"``, e.g. ``"1718000000000-12"``.
    """
    moment = now or utc_now()
    return f"{int(moment.timestamp() * 1000)}-{next(_booking_sequence)}"


class RoomStatus(str, PyEnum):
    """
    Derived status of a room at a given instant.

    Values
    ------
    Available
        No active booking and nothing starting within the upcoming window.
    Upcoming
        A booking starts within the upcoming window.
    Occupied
        A booking is in progress.
    """
    AVAILABLE = "Available"
    UPCOMING = "Upcoming"
    OCCUPIED = "Occupied"


class User(BaseModel):
    """
    Identity of a requester or booking owner.

    Only ``id`` takes part in ownership checks; ``display_name`` is for display.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str = ""


class Booking(BaseModel):
    """
    A reservation of a room over ``[start_time, end_time)``.

    Attributes
    ----------
    id : str
        Unique booking identifier, never reused.
    start_time : datetime
        Start of the reservation (aware).
    end_time : datetime
        End of the reservation (aware), strictly after ``start_time``.
    description : str
        Free text shown as the room's title while the booking is displayed.
    booked_by : Optional[User]
        Owner of the booking. Legacy bookings may have no owner.
    created_at : datetime
        Creation timestamp, used to break ties between equal start times.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    start_time: datetime
    end_time: datetime
    description: str = ""
    booked_by: Optional[User] = None
    created_at: datetime

    @field_validator("start_time", "end_time", "created_at")
    @classmethod
    def _make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @model_validator(mode="after")
    def _check_interval(self):
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Booking {self.id}: start_time must be before end_time"
            )
        return self

    @property
    def is_legacy(self) -> bool:
        return self.id == LEGACY_BOOKING_ID

    def sort_key(self) -> Tuple[datetime, datetime, str]:
        return (self.start_time, self.created_at, self.id)


class Room(BaseModel):
    """
    A bookable room and its reservations.

    The room's authoritative state is ``bookings`` (plus ``legacy_booking`` for
    data written by older clients). Status and display fields are derived, see
    ``booking_core.status``.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    floor: str = ""
    description: str = ""
    bookings: Tuple[Booking, ...] = Field(default_factory=tuple)
    legacy_booking: Optional[Booking] = None

    @field_validator("bookings")
    @classmethod
    def _unique_booking_ids(cls, v: Tuple[Booking, ...]) -> Tuple[Booking, ...]:
        seen = set()
        for booking in v:
            if booking.id in seen:
                raise ValueError(f"Duplicate booking id {booking.id}")
            seen.add(booking.id)
        return v

    @field_validator("legacy_booking")
    @classmethod
    def _legacy_uses_sentinel(cls, v: Optional[Booking]) -> Optional[Booking]:
        if v is not None and not v.is_legacy:
            raise ValueError("legacy_booking must use the legacy sentinel id")
        return v

    def all_bookings(self) -> List[Booking]:
        """Real bookings plus the materialised legacy booking, if any."""
        found = list(self.bookings)
        if self.legacy_booking is not None:
            found.append(self.legacy_booking)
        return found

    def find_booking(self, booking_id: str) -> Optional[Booking]:
        for booking in self.bookings:
            if booking.id == booking_id:
                return booking
        return None
