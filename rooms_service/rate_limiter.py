# rooms_service/rate_limiter.py
import os
import time
from typing import Dict, List

from fastapi import Depends, HTTPException, status

from .auth import Identity, get_current_identity

WINDOW_SECONDS = 60
MAX_BOOKINGS_PER_WINDOW = 20

_user_request_log: Dict[str, List[float]] = {}


def booking_rate_limiter(identity: Identity = Depends(get_current_identity)) -> None:
    """
    Rate limit booking and cancellation requests per authenticated user.
    """
    if os.getenv("TESTING") == "1":
        return

    user_id = identity.user.id
    now = time.time()
    window_start = now - WINDOW_SECONDS

    timestamps = [ts for ts in _user_request_log.get(user_id, []) if ts >= window_start]

    if len(timestamps) >= MAX_BOOKINGS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking operations in a short time",
        )

    timestamps.append(now)
    _user_request_log[user_id] = timestamps


def reset_rate_limits() -> None:
    _user_request_log.clear()
