"""
Outcome types returned by the booking controllers.

Business-rule violations are expected results, not crashes, so controllers
return either ``Accepted`` or ``Rejected`` and never raise for them.
"""
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Generic, Optional, TypeVar, Union

from .models import Booking

T = TypeVar("T")


class RejectReason(str, PyEnum):
    """
    Why a booking, cancellation or deletion was refused.

    Values
    ------
    invalid_time
        Unparseable input or a non-positive duration.
    too_long
        The booking exceeds the maximum duration.
    conflict
        The booking overlaps an existing booking of the room.
    not_found
        The room or booking does not exist (e.g. stale client state).
    not_authorized
        The requester may not perform the operation.
    """
    INVALID_TIME = "invalid_time"
    TOO_LONG = "too_long"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    NOT_AUTHORIZED = "not_authorized"


@dataclass(frozen=True)
class Accepted(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    """
    A refused operation.

    Attributes
    ----------
    reason : RejectReason
        Machine-readable cause.
    message : str
        Human-readable explanation suitable for a user prompt.
    duration_hours : Optional[float]
        Requested duration, set for ``too_long``.
    conflicting : Optional[Booking]
        The first overlapping booking found, set for ``conflict``.
    """
    reason: RejectReason
    message: str
    duration_hours: Optional[float] = None
    conflicting: Optional[Booking] = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Accepted[T], Rejected]


class CorruptStateError(Exception):
    """Persisted room data could not be parsed into valid rooms."""
