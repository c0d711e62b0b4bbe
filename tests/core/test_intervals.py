import os
import sys
from datetime import date, datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from booking_core.intervals import (
    combine_local,
    duration_hours,
    ensure_aware,
    normalize_overnight,
    overlaps,
    to_24_hour,
)

T = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def test_touching_intervals_do_not_overlap():
    assert not overlaps(T, T + timedelta(hours=1), T + timedelta(hours=1), T + timedelta(hours=2))
    assert not overlaps(T + timedelta(hours=1), T + timedelta(hours=2), T, T + timedelta(hours=1))


def test_partial_and_nested_overlaps():
    assert overlaps(T, T + timedelta(minutes=60), T + timedelta(minutes=30), T + timedelta(minutes=90))
    assert overlaps(T, T + timedelta(hours=3), T + timedelta(hours=1), T + timedelta(hours=2))
    assert overlaps(T + timedelta(hours=1), T + timedelta(hours=2), T, T + timedelta(hours=3))


def test_duration_hours():
    assert duration_hours(T, T + timedelta(minutes=90)) == 1.5
    assert duration_hours(T, T) == 0


def test_normalize_overnight_moves_end_to_next_day():
    start = T.replace(hour=22)
    end = T.replace(hour=1)
    assert normalize_overnight(start, end) == end + timedelta(days=1)
    # equal times are also read as a full day later
    assert normalize_overnight(start, start) == start + timedelta(days=1)


def test_normalize_overnight_keeps_ordered_end():
    end = T + timedelta(hours=2)
    assert normalize_overnight(T, end) == end


@pytest.mark.parametrize(
    "text, meridiem, expected",
    [
        ("9:30", "AM", "09:30"),
        ("09:30", "am", "09:30"),
        ("12:00", "AM", "00:00"),
        ("12:15", "PM", "12:15"),
        ("1:05", "PM", "13:05"),
        ("0230", "PM", "14:30"),
        ("7", "pm", "19:00"),
        (" 11:59 ", "PM", "23:59"),
    ],
)
def test_to_24_hour_accepts_clock_input(text, meridiem, expected):
    assert to_24_hour(text, meridiem) == expected


@pytest.mark.parametrize(
    "text, meridiem",
    [
        ("13:00", "PM"),
        ("9:60", "AM"),
        ("abc", "AM"),
        ("9:30", "XM"),
        ("", "AM"),
        ("9:30", None),
        (None, "PM"),
        ("9:3", "AM"),
    ],
)
def test_to_24_hour_rejects_invalid_input(text, meridiem):
    assert to_24_hour(text, meridiem) is None


def test_ensure_aware_treats_naive_as_utc():
    naive = datetime(2025, 3, 10, 9, 0)
    assert ensure_aware(naive) == T
    assert ensure_aware(T) is T


def test_combine_local_uses_timezone():
    manila = timezone(timedelta(hours=8))
    moment = combine_local(date(2025, 3, 10), "17:00", manila)
    assert moment.tzinfo is manila
    assert moment.astimezone(timezone.utc) == T
