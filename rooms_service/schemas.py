from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from booking_core.models import RoomStatus


class UserRead(BaseModel):
    id: str
    display_name: str = ""

    model_config = ConfigDict(from_attributes=True)


class RoomCreate(BaseModel):
    """
    Schema for creating a new room.

    When ``floor`` is omitted it is derived from the room number in the name,
    e.g. "Room 301" is placed on the "3th floor".
    """
    name: str = Field(..., min_length=1)
    floor: Optional[str] = None
    description: str = ""


class RoomUpdate(BaseModel):
    """
    Schema for partial updates to a room.

    All fields are optional and only provided values will be updated.
    """
    name: Optional[str] = Field(default=None, min_length=1)
    floor: Optional[str] = None
    description: Optional[str] = None


class BookingRead(BaseModel):
    """Schema returned for a single booking."""
    id: str
    start_time: datetime
    end_time: datetime
    description: str
    booked_by: Optional[UserRead] = None
    created_at: datetime
    is_legacy: bool = False

    model_config = ConfigDict(from_attributes=True)


class RoomRead(BaseModel):
    """
    Schema returned when reading room data.

    Carries the derived status and display fields at the time of the request.
    ``time_left`` is only set while the room is occupied.
    """
    id: str
    name: str
    floor: str
    description: str
    status: RoomStatus
    title: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    booked_by: Optional[UserRead] = None
    active_booking_id: Optional[str] = None
    next_booking_id: Optional[str] = None
    next_start_time: Optional[datetime] = None
    time_left: Optional[str] = None


class RoomDetail(RoomRead):
    """A room view together with all of its bookings, sorted by start time."""
    bookings: List[BookingRead] = Field(default_factory=list)


class BookingCreate(BaseModel):
    """
    Schema for booking a room with full datetimes.

    Naive datetimes are interpreted as UTC. With ``fit_before_next`` the end
    is moved back to the start of the next booking instead of conflicting.
    """
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    description: str = ""
    fit_before_next: bool = False


class ClockBookingCreate(BaseModel):
    """
    Schema for booking a room with 12-hour clock-face input, e.g. "9:30" "PM".

    An end time at or before the start time is taken to be on the next day.
    """
    day: date
    start_time: str
    start_meridiem: str
    end_time: str
    end_meridiem: str
    description: str = ""


class InstantBookingCreate(BaseModel):
    description: Optional[str] = None


class BookingOutcome(BaseModel):
    """Result of a successful booking: the booking and the room's new view."""
    booking: BookingRead
    room: RoomRead
    adjusted: bool = False


class MyBooking(BaseModel):
    room_id: str
    room_name: str
    booking: BookingRead
