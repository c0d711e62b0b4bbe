"""
Booking admission: validate a proposed booking and build the new record.

``try_book`` is the single source of truth for conflict rules. Convenience
adjustments such as shortening a booking to fit before the next meeting happen
before it is called, see ``fit_before_next``.
"""
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple

from .intervals import (
    combine_local,
    duration_hours,
    ensure_aware,
    normalize_overnight,
    overlaps,
    to_24_hour,
    utc_now,
)
from .models import Booking, Room, User, new_booking_id
from .results import Accepted, Rejected, RejectReason, Result

logger = logging.getLogger(__name__)

MAX_BOOKING_HOURS = 4.0

INSTANT_BOOKING_DURATION = timedelta(hours=1)
INSTANT_BOOKING_DESCRIPTION = "Instant Booking"


@dataclass(frozen=True)
class BookingProposal:
    """
    A booking request before validation.

    ``start_time``/``end_time`` are None when the user's input could not be
    parsed; admission then rejects the proposal as ``invalid_time``.
    """
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    description: str = ""


def try_book(
    room: Room,
    proposal: BookingProposal,
    requester: User,
    now: Optional[datetime] = None,
    max_hours: float = MAX_BOOKING_HOURS,
) -> Result[Booking]:
    """
    Validate ``proposal`` against ``room`` and build the booking on success.

    Rules are checked in order and the first failure wins:

    1. both times present and ``start < end`` (``invalid_time``);
    2. duration at most ``max_hours`` (``too_long``);
    3. no overlap with any existing booking, legacy included (``conflict``).

    Parameters
    ----------
    room : Room
        Room the booking is for.
    proposal : BookingProposal
        Requested interval and description.
    requester : User
        Identity recorded as the booking owner.
    now : Optional[datetime]
        Creation instant; defaults to the current UTC time.
    max_hours : float
        Maximum booking duration in hours.

    Returns
    -------
    Result[Booking]
        ``Accepted`` with the new booking, or ``Rejected``. The room itself is
        not modified; inserting the booking is the caller's job.
    """
    if proposal.start_time is None or proposal.end_time is None:
        return Rejected(
            RejectReason.INVALID_TIME,
            "Please enter a valid start and end time.",
        )

    start = ensure_aware(proposal.start_time)
    end = ensure_aware(proposal.end_time)
    if start >= end:
        return Rejected(
            RejectReason.INVALID_TIME,
            "End time must be after start time.",
        )

    hours = duration_hours(start, end)
    if hours > max_hours:
        return Rejected(
            RejectReason.TOO_LONG,
            f"Max duration is {max_hours:g} hours (requested {hours:.2f}).",
            duration_hours=hours,
        )

    for existing in room.all_bookings():
        if overlaps(start, end, existing.start_time, existing.end_time):
            return Rejected(
                RejectReason.CONFLICT,
                "This time slot overlaps with an existing booking.",
                conflicting=existing,
            )

    created_at = now or utc_now()
    booking = Booking(
        id=new_booking_id(created_at),
        start_time=start,
        end_time=end,
        description=proposal.description.strip(),
        booked_by=requester,
        created_at=created_at,
    )
    logger.debug("Admitted booking %s for room %s", booking.id, room.id)
    return Accepted(booking)


def proposal_from_clock_input(
    day: date,
    start_text: Optional[str],
    start_meridiem: Optional[str],
    end_text: Optional[str],
    end_meridiem: Optional[str],
    description: str = "",
    tz: tzinfo = timezone.utc,
) -> BookingProposal:
    """
    Build a proposal from a date and two 12-hour clock-face times.

    An end time that is not after the start is taken to be on the next day,
    so "10:00 PM" to "1:00 AM" spans midnight. Unparseable times produce a
    proposal without times, which admission rejects as ``invalid_time``.
    """
    start_24 = to_24_hour(start_text, start_meridiem)
    end_24 = to_24_hour(end_text, end_meridiem)
    if start_24 is None or end_24 is None:
        return BookingProposal(None, None, description)

    start = combine_local(day, start_24, tz)
    end = normalize_overnight(start, combine_local(day, end_24, tz))
    return BookingProposal(start, end, description)


def instant_proposal(
    now: datetime,
    duration: timedelta = INSTANT_BOOKING_DURATION,
    description: str = INSTANT_BOOKING_DESCRIPTION,
) -> BookingProposal:
    """Proposal for using a room right away."""
    return BookingProposal(now, now + duration, description)


def fit_before_next(room: Room, proposal: BookingProposal) -> Tuple[BookingProposal, bool]:
    """
    Shorten ``proposal`` so it ends when the next booking of ``room`` starts.

    Only bookings starting after the proposal's start are considered; overlaps
    with a booking already running at that point are left for admission to
    reject.

    Returns
    -------
    Tuple[BookingProposal, bool]
        The (possibly shortened) proposal and whether it was adjusted.
    """
    if proposal.start_time is None or proposal.end_time is None:
        return proposal, False

    start = ensure_aware(proposal.start_time)
    end = ensure_aware(proposal.end_time)
    following = [b for b in room.all_bookings() if b.start_time > start]
    if not following:
        return proposal, False

    next_start = min(following, key=lambda b: b.sort_key()).start_time
    if end <= next_start:
        return proposal, False
    return replace(proposal, end_time=next_start), True
