import os
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from booking_core.admission import (
    INSTANT_BOOKING_DESCRIPTION,
    BookingProposal,
    fit_before_next,
    instant_proposal,
    proposal_from_clock_input,
)
from booking_core.intervals import utc_now
from booking_core.models import Room, RoomStatus
from booking_core.results import Rejected, RejectReason
from booking_core.scheduler import AutoReleaseScheduler
from booking_core.serialized_store import BookingStore
from booking_core.status import derive_room_view, format_time_left
from common.cache import ROOM_VIEWS_PREFIX, delete_prefix, get_cached_json, set_cached_json
from common.logging_config import configure_logging

from . import schemas
from .auth import Identity, get_current_identity, require_admin
from .database import Base, SessionLocal, engine
from .persistence import (
    SnapshotStore,
    default_floor_for,
    generate_sample_rooms,
    load_rooms_or_seed,
)
from .rate_limiter import booking_rate_limiter, reset_rate_limits

SERVICE_NAME = "rooms"

logger = configure_logging(SERVICE_NAME)

_timezone_name = os.getenv("ROOMS_TIMEZONE", "UTC")
ROOMS_TIMEZONE = timezone.utc if _timezone_name.upper() == "UTC" else ZoneInfo(_timezone_name)
MAX_BOOKING_HOURS = float(os.getenv("MAX_BOOKING_HOURS", "4"))
UPCOMING_WINDOW = timedelta(minutes=float(os.getenv("UPCOMING_WINDOW_MINUTES", "30")))
AUTO_RELEASE_PERIOD_SECONDS = float(os.getenv("AUTO_RELEASE_PERIOD_SECONDS", "1"))

ROOM_LIST_CACHE_TTL_SECONDS = 1

REJECTION_STATUS = {
    RejectReason.INVALID_TIME: status.HTTP_400_BAD_REQUEST,
    RejectReason.TOO_LONG: status.HTTP_400_BAD_REQUEST,
    RejectReason.CONFLICT: status.HTTP_409_CONFLICT,
    RejectReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectReason.NOT_AUTHORIZED: status.HTTP_403_FORBIDDEN,
}

Base.metadata.create_all(bind=engine)

snapshots = SnapshotStore(SessionLocal)
store = BookingStore(load_rooms_or_seed(snapshots), max_hours=MAX_BOOKING_HOURS)
scheduler = AutoReleaseScheduler(
    store,
    period_seconds=AUTO_RELEASE_PERIOD_SECONDS,
    upcoming_window=UPCOMING_WINDOW,
)

_save_lock = threading.Lock()


def persist_rooms(room_ids: List[str]) -> None:
    # read the rooms under the lock so the last writer always saves the newest state
    with _save_lock:
        snapshots.save(store.rooms())


def invalidate_room_views(_changed=None) -> None:
    delete_prefix(ROOM_VIEWS_PREFIX)


store.subscribe_changes(persist_rooms)
store.subscribe_changes(invalidate_room_views)
scheduler.subscribe(invalidate_room_views)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler.refresh_all()
    scheduler.start()
    yield
    scheduler.stop()


app = FastAPI(title="Rooms Service", version="1.0.0", lifespan=lifespan)

router_v1 = APIRouter(prefix="/api/v1")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": 500,
            "detail": "Internal server error",
        },
    )


@app.get("/")
def root():
    """
    Health-check endpoint for the Rooms service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running", "rooms": len(store.room_ids())}


def get_now() -> datetime:
    """Evaluation instant of a request; overridden in tests to pin the clock."""
    return utc_now()


def reset_state() -> None:
    """Restore the sample rooms and forget published views and rate limits."""
    store.replace_all(generate_sample_rooms())
    scheduler.reset()
    reset_rate_limits()


# ---------- helpers ----------


def raise_for_rejection(rejected: Rejected) -> None:
    """
    Translate a rejected operation into an HTTP error.

    Raises
    ------
    HTTPException
        Always; the status code follows the rejection reason and ``detail``
        carries the reason, message and any duration or conflicting window.
    """
    detail = {"reason": rejected.reason.value, "message": rejected.message}
    if rejected.duration_hours is not None:
        detail["duration_hours"] = round(rejected.duration_hours, 2)
    if rejected.conflicting is not None:
        detail["conflicting"] = {
            "id": rejected.conflicting.id,
            "start_time": rejected.conflicting.start_time.isoformat(),
            "end_time": rejected.conflicting.end_time.isoformat(),
        }
    raise HTTPException(status_code=REJECTION_STATUS[rejected.reason], detail=detail)


def get_room_or_404(room_id: str) -> Room:
    room = store.get_room(room_id)
    if room is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"reason": RejectReason.NOT_FOUND.value, "message": "Room not found."},
        )
    return room


def room_read(room: Room, now: datetime) -> schemas.RoomRead:
    view = derive_room_view(room, now, UPCOMING_WINDOW)
    time_left = None
    if view.status == RoomStatus.OCCUPIED:
        time_left = format_time_left(view.end_time, now)
    return schemas.RoomRead(
        id=view.room_id,
        **view.model_dump(exclude={"room_id"}),
        time_left=time_left,
    )


def room_detail(room: Room, now: datetime) -> schemas.RoomDetail:
    bookings = sorted(room.all_bookings(), key=lambda b: b.sort_key())
    return schemas.RoomDetail(
        **room_read(room, now).model_dump(),
        bookings=[schemas.BookingRead.model_validate(b) for b in bookings],
    )


def book_room(
    room_id: str,
    proposal: BookingProposal,
    identity: Identity,
    now: datetime,
    shorten: bool,
) -> schemas.BookingOutcome:
    adjusted = False
    if shorten:
        proposal, adjusted = fit_before_next(get_room_or_404(room_id), proposal)

    result = store.book(room_id, proposal, identity.user, now=now)
    if isinstance(result, Rejected):
        raise_for_rejection(result)

    return schemas.BookingOutcome(
        booking=schemas.BookingRead.model_validate(result.value),
        room=room_read(get_room_or_404(room_id), now),
        adjusted=adjusted,
    )


# ---------- Rooms ----------


@router_v1.get("/rooms", response_model=List[schemas.RoomRead])
def list_rooms(
    query: Optional[str] = Query(default=None),
    room_status: Optional[RoomStatus] = Query(default=None, alias="status"),
    now: datetime = Depends(get_now),
    _: Identity = Depends(get_current_identity),
):
    """
    List all rooms with their status at the time of the request.

    Parameters
    ----------
    query : Optional[str]
        Case-insensitive substring matched against room name, floor and the
        displayed title.
    room_status : Optional[RoomStatus]
        Only return rooms in this status.

    Returns
    -------
    List[RoomRead]
        Matching room views in store order.
    """
    cache_key = f"{ROOM_VIEWS_PREFIX}{query or ''}:{room_status.value if room_status else ''}"
    cached = get_cached_json(cache_key)
    if cached is not None:
        return cached

    needle = (query or "").strip().lower()
    views = []
    for room in store.rooms():
        view = room_read(room, now)
        if room_status is not None and view.status != room_status:
            continue
        if needle and not any(needle in field.lower() for field in (view.name, view.floor, view.title)):
            continue
        views.append(view)

    data = [v.model_dump(mode="json") for v in views]
    set_cached_json(cache_key, data, ttl_seconds=ROOM_LIST_CACHE_TTL_SECONDS)
    return data


@router_v1.get("/rooms/{room_id}", response_model=schemas.RoomDetail)
def get_room(
    room_id: str,
    now: datetime = Depends(get_now),
    _: Identity = Depends(get_current_identity),
):
    """
    Retrieve a single room with its status and all bookings.

    Raises
    ------
    HTTPException
        404 if the room does not exist.
    """
    return room_detail(get_room_or_404(room_id), now)


@router_v1.post("/rooms", response_model=schemas.RoomRead, status_code=status.HTTP_201_CREATED)
def create_room(
    room_in: schemas.RoomCreate,
    now: datetime = Depends(get_now),
    _: Identity = Depends(require_admin),
):
    """
    Create a new room (admins only).

    The floor defaults to one derived from the room number in the name.
    """
    floor = room_in.floor if room_in.floor else default_floor_for(room_in.name)
    room = store.create_room(
        name=room_in.name.strip(),
        floor=floor,
        description=room_in.description,
    )
    return room_read(room, now)


@router_v1.put("/rooms/{room_id}", response_model=schemas.RoomRead)
def update_room(
    room_id: str,
    update_data: schemas.RoomUpdate,
    now: datetime = Depends(get_now),
    _: Identity = Depends(require_admin),
):
    """Update name, floor or description of a room (admins only)."""
    result = store.update_room(
        room_id,
        name=update_data.name,
        floor=update_data.floor,
        description=update_data.description,
    )
    if isinstance(result, Rejected):
        raise_for_rejection(result)
    return room_read(result.value, now)


@router_v1.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_room(
    room_id: str,
    _: Identity = Depends(require_admin),
):
    """
    Delete a room together with all of its bookings (admins only).

    Raises
    ------
    HTTPException
        404 if the room does not exist.
    """
    result = store.delete_room(room_id)
    if isinstance(result, Rejected):
        raise_for_rejection(result)
    return


# ---------- Bookings ----------


@router_v1.post(
    "/rooms/{room_id}/bookings",
    response_model=schemas.BookingOutcome,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_booking(
    room_id: str,
    booking_in: schemas.BookingCreate,
    now: datetime = Depends(get_now),
    identity: Identity = Depends(get_current_identity),
):
    """
    Book a room for the caller.

    Behavior
    --------
    - Rejects missing or inverted times (400, ``invalid_time``).
    - Rejects bookings longer than the maximum duration (400, ``too_long``).
    - Rejects overlaps with any booking of the room (409, ``conflict``).
    - With ``fit_before_next`` the end is first moved back to the start of the
      next booking.
    """
    proposal = BookingProposal(booking_in.start_time, booking_in.end_time, booking_in.description)
    return book_room(room_id, proposal, identity, now, shorten=booking_in.fit_before_next)


@router_v1.post(
    "/rooms/{room_id}/bookings/clock",
    response_model=schemas.BookingOutcome,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_clock_booking(
    room_id: str,
    booking_in: schemas.ClockBookingCreate,
    now: datetime = Depends(get_now),
    identity: Identity = Depends(get_current_identity),
):
    """
    Book a room from a date and 12-hour clock-face times in the rooms' timezone.

    "10:00 PM" to "1:00 AM" is booked across midnight.
    """
    proposal = proposal_from_clock_input(
        booking_in.day,
        booking_in.start_time,
        booking_in.start_meridiem,
        booking_in.end_time,
        booking_in.end_meridiem,
        booking_in.description,
        tz=ROOMS_TIMEZONE,
    )
    return book_room(room_id, proposal, identity, now, shorten=False)


@router_v1.post(
    "/rooms/{room_id}/bookings/instant",
    response_model=schemas.BookingOutcome,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_instant_booking(
    room_id: str,
    booking_in: Optional[schemas.InstantBookingCreate] = None,
    now: datetime = Depends(get_now),
    identity: Identity = Depends(get_current_identity),
):
    """Use a room right now for an hour, or until its next booking starts."""
    description = INSTANT_BOOKING_DESCRIPTION
    if booking_in is not None and booking_in.description:
        description = booking_in.description
    proposal = instant_proposal(now, description=description)
    return book_room(room_id, proposal, identity, now, shorten=True)


@router_v1.delete(
    "/rooms/{room_id}/bookings/{booking_id}",
    response_model=schemas.RoomRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def cancel_booking(
    room_id: str,
    booking_id: str,
    now: datetime = Depends(get_now),
    identity: Identity = Depends(get_current_identity),
):
    """
    Cancel a booking. Owners may cancel their own bookings, admins any.

    Returns
    -------
    RoomRead
        The room's view after the cancellation.
    """
    result = store.cancel(room_id, booking_id, identity.user, identity.is_admin)
    if isinstance(result, Rejected):
        raise_for_rejection(result)
    return room_read(result.value, now)


@router_v1.delete("/rooms/{room_id}/legacy-booking", response_model=schemas.RoomRead)
def clear_legacy_booking(
    room_id: str,
    now: datetime = Depends(get_now),
    identity: Identity = Depends(require_admin),
):
    """Remove the single booking stored by older clients (admins only)."""
    result = store.clear_legacy(room_id, identity.is_admin)
    if isinstance(result, Rejected):
        raise_for_rejection(result)
    return room_read(result.value, now)


@router_v1.post("/rooms/{room_id}/legacy-booking/promote", response_model=schemas.RoomDetail)
def promote_legacy_booking(
    room_id: str,
    now: datetime = Depends(get_now),
    identity: Identity = Depends(require_admin),
):
    """Turn the legacy booking into a regular, cancellable booking (admins only)."""
    result = store.promote_legacy(room_id, identity.is_admin, now=now)
    if isinstance(result, Rejected):
        raise_for_rejection(result)
    return room_detail(result.value, now)


@router_v1.get("/bookings/me", response_model=List[schemas.MyBooking])
def my_bookings(identity: Identity = Depends(get_current_identity)):
    """All bookings of the caller across rooms, earliest first."""
    return [
        schemas.MyBooking(
            room_id=room.id,
            room_name=room.name,
            booking=schemas.BookingRead.model_validate(booking),
        )
        for room, booking in store.bookings_for(identity.user.id)
    ]


app.include_router(router_v1)
