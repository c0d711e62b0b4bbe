import os
import sys
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_rooms_service.db")

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from booking_core.models import LEGACY_BOOKING_ID, Booking, Room, User
from rooms_service import main
from rooms_service.auth import ALGORITHM, SECRET_KEY
from rooms_service.database import Base, engine
from rooms_service.main import app, get_now

NOW = datetime(2030, 5, 6, 9, 0, tzinfo=timezone.utc)

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_state():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    main.reset_state()
    app.dependency_overrides[get_now] = lambda: NOW
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


def make_token(user_id: str, role: str = "regular", display_name: str = "") -> str:
    payload = {
        "sub": user_id,
        "user_id": user_id,
        "display_name": display_name or user_id.title(),
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=15),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def auth(user_id: str = "alice", role: str = "regular") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def iso(minutes: float) -> str:
    return (NOW + timedelta(minutes=minutes)).isoformat()


def parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def book(room_id: str, start_min: float, end_min: float, user: str = "alice", **extra):
    payload = {"start_time": iso(start_min), "end_time": iso(end_min), **extra}
    return client.post(f"/api/v1/rooms/{room_id}/bookings", json=payload, headers=auth(user))


# ---------- listing ----------


def test_root_is_public():
    res = client.get("/")
    assert res.status_code == 200
    assert res.json()["service"] == "rooms"


def test_listing_requires_token():
    res = client.get("/api/v1/rooms")
    assert res.status_code in (401, 403)

    res = client.get("/api/v1/rooms", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401
    assert res.json()["service"] == "rooms"


def test_sample_rooms_are_listed_as_available():
    res = client.get("/api/v1/rooms", headers=auth())
    assert res.status_code == 200
    rooms = res.json()
    assert [r["name"] for r in rooms] == [f"Room {i * 100 + 1}" for i in range(1, 9)]
    assert rooms[2]["floor"] == "3th floor"
    assert all(r["status"] == "Available" for r in rooms)
    assert all(r["title"] == "Free for bookings" for r in rooms)


def test_listing_filters_by_status_and_query():
    book("1", -10, 50, description="Design review")
    book("2", 20, 80)

    occupied = client.get("/api/v1/rooms", params={"status": "Occupied"}, headers=auth()).json()
    assert [r["id"] for r in occupied] == ["1"]

    upcoming = client.get("/api/v1/rooms", params={"status": "Upcoming"}, headers=auth()).json()
    assert [r["id"] for r in upcoming] == ["2"]

    found = client.get("/api/v1/rooms", params={"query": "design"}, headers=auth()).json()
    assert [r["id"] for r in found] == ["1"]

    by_name = client.get("/api/v1/rooms", params={"query": "room 8"}, headers=auth()).json()
    assert [r["id"] for r in by_name] == ["8"]


# ---------- booking ----------


def test_booking_makes_room_occupied():
    res = book("1", -10, 50, description="Standup")
    assert res.status_code == 201
    body = res.json()
    assert body["booking"]["booked_by"] == {"id": "alice", "display_name": "Alice"}
    assert body["room"]["status"] == "Occupied"
    assert body["room"]["title"] == "Standup"
    assert body["room"]["time_left"] == "50m 0s"
    assert body["adjusted"] is False

    detail = client.get("/api/v1/rooms/1", headers=auth("bob")).json()
    assert detail["status"] == "Occupied"
    assert [b["id"] for b in detail["bookings"]] == [body["booking"]["id"]]


def test_booking_within_half_hour_is_upcoming():
    res = book("1", 30, 90)
    assert res.json()["room"]["status"] == "Upcoming"
    res = book("2", 31, 90)
    assert res.json()["room"]["status"] == "Available"
    assert res.json()["room"]["next_start_time"] is not None


def test_overlapping_booking_is_conflict():
    first = book("1", 0, 60).json()["booking"]
    res = book("1", 30, 90, user="bob")
    assert res.status_code == 409
    detail = res.json()["detail"]
    assert detail["reason"] == "conflict"
    assert detail["conflicting"]["id"] == first["id"]


def test_back_to_back_bookings_are_allowed():
    assert book("1", 0, 60).status_code == 201
    assert book("1", 60, 120, user="bob").status_code == 201


def test_too_long_booking_is_rejected():
    res = book("1", 0, 300)
    assert res.status_code == 400
    detail = res.json()["detail"]
    assert detail["reason"] == "too_long"
    assert detail["duration_hours"] == 5.0


def test_inverted_or_missing_times_are_invalid():
    res = book("1", 60, 0)
    assert res.status_code == 400
    assert res.json()["detail"]["reason"] == "invalid_time"

    res = client.post("/api/v1/rooms/1/bookings", json={"end_time": iso(60)}, headers=auth())
    assert res.status_code == 400
    assert res.json()["detail"]["reason"] == "invalid_time"


def test_booking_unknown_room_is_not_found():
    res = book("404", 0, 60)
    assert res.status_code == 404
    assert res.json()["detail"]["reason"] == "not_found"


def test_fit_before_next_shortens_booking():
    book("1", 60, 120, user="bob")
    res = book("1", 0, 90, fit_before_next=True)
    assert res.status_code == 201
    body = res.json()
    assert body["adjusted"] is True
    assert parse(body["booking"]["end_time"]) == NOW + timedelta(minutes=60)


def test_instant_booking_fits_before_next_meeting():
    book("1", 20, 80, user="bob")
    res = client.post("/api/v1/rooms/1/bookings/instant", headers=auth())
    assert res.status_code == 201
    body = res.json()
    assert body["booking"]["description"] == "Instant Booking"
    assert body["adjusted"] is True
    assert parse(body["booking"]["end_time"]) == NOW + timedelta(minutes=20)
    assert body["room"]["status"] == "Occupied"


def test_instant_booking_on_occupied_room_conflicts():
    book("1", -10, 30, user="bob")
    res = client.post("/api/v1/rooms/1/bookings/instant", json={"description": "Huddle"}, headers=auth())
    assert res.status_code == 409


def test_clock_booking_across_midnight():
    payload = {
        "day": "2030-05-06",
        "start_time": "10:00",
        "start_meridiem": "PM",
        "end_time": "1:00",
        "end_meridiem": "AM",
        "description": "Night shift",
    }
    res = client.post("/api/v1/rooms/3/bookings/clock", json=payload, headers=auth())
    assert res.status_code == 201
    booking = res.json()["booking"]
    assert parse(booking["start_time"]) == datetime(2030, 5, 6, 22, 0, tzinfo=timezone.utc)
    assert parse(booking["end_time"]) == datetime(2030, 5, 7, 1, 0, tzinfo=timezone.utc)


def test_clock_booking_with_bad_time_is_invalid():
    payload = {
        "day": "2030-05-06",
        "start_time": "13:00",
        "start_meridiem": "PM",
        "end_time": "2:00",
        "end_meridiem": "PM",
    }
    res = client.post("/api/v1/rooms/3/bookings/clock", json=payload, headers=auth())
    assert res.status_code == 400
    assert res.json()["detail"]["reason"] == "invalid_time"


def test_my_bookings_lists_only_own_bookings():
    book("2", 120, 180)
    book("1", 0, 60)
    book("3", 0, 60, user="bob")

    res = client.get("/api/v1/bookings/me", headers=auth())
    assert res.status_code == 200
    assert [b["room_id"] for b in res.json()] == ["1", "2"]


# ---------- cancellation ----------


def test_only_owner_or_admin_can_cancel():
    booking_id = book("1", -10, 50).json()["booking"]["id"]

    res = client.delete(f"/api/v1/rooms/1/bookings/{booking_id}", headers=auth("bob"))
    assert res.status_code == 403
    assert res.json()["detail"]["reason"] == "not_authorized"

    res = client.delete(f"/api/v1/rooms/1/bookings/{booking_id}", headers=auth("alice"))
    assert res.status_code == 200
    assert res.json()["status"] == "Available"

    res = client.delete(f"/api/v1/rooms/1/bookings/{booking_id}", headers=auth("alice"))
    assert res.status_code == 404


def test_admin_can_cancel_any_booking():
    booking_id = book("1", 0, 60).json()["booking"]["id"]
    res = client.delete(f"/api/v1/rooms/1/bookings/{booking_id}", headers=auth("root", "admin"))
    assert res.status_code == 200


# ---------- legacy bookings ----------


def install_legacy_room():
    legacy = Booking(
        id=LEGACY_BOOKING_ID,
        start_time=NOW - timedelta(minutes=15),
        end_time=NOW + timedelta(minutes=45),
        description="Old app booking",
        booked_by=User(id="alice", display_name="Alice"),
        created_at=NOW - timedelta(days=1),
    )
    main.store.replace_all([Room(id="1", name="Room 101", floor="1th floor", legacy_booking=legacy)])


def test_legacy_booking_shows_and_blocks():
    install_legacy_room()
    detail = client.get("/api/v1/rooms/1", headers=auth()).json()
    assert detail["status"] == "Occupied"
    assert detail["title"] == "Old app booking"
    assert detail["bookings"][0]["is_legacy"] is True

    assert book("1", 0, 30).status_code == 409


def test_legacy_booking_cannot_be_cancelled_but_admin_can_clear():
    install_legacy_room()
    res = client.delete(f"/api/v1/rooms/1/bookings/{LEGACY_BOOKING_ID}", headers=auth("root", "admin"))
    assert res.status_code == 403

    assert client.delete("/api/v1/rooms/1/legacy-booking", headers=auth()).status_code == 403

    res = client.delete("/api/v1/rooms/1/legacy-booking", headers=auth("root", "admin"))
    assert res.status_code == 200
    assert res.json()["status"] == "Available"


def test_admin_can_promote_legacy_booking():
    install_legacy_room()
    res = client.post("/api/v1/rooms/1/legacy-booking/promote", headers=auth("root", "admin"))
    assert res.status_code == 200
    bookings = res.json()["bookings"]
    assert len(bookings) == 1
    assert bookings[0]["is_legacy"] is False

    # the promoted booking belongs to its original owner
    res = client.delete(f"/api/v1/rooms/1/bookings/{bookings[0]['id']}", headers=auth("alice"))
    assert res.status_code == 200


# ---------- room administration ----------


def test_regular_user_cannot_manage_rooms():
    assert client.post("/api/v1/rooms", json={"name": "Room 901"}, headers=auth()).status_code == 403
    assert client.put("/api/v1/rooms/1", json={"name": "x"}, headers=auth()).status_code == 403
    assert client.delete("/api/v1/rooms/1", headers=auth()).status_code == 403


def test_admin_creates_room_with_derived_floor():
    res = client.post("/api/v1/rooms", json={"name": "Room 301B"}, headers=auth("root", "admin"))
    assert res.status_code == 201
    body = res.json()
    assert body["floor"] == "3th floor"
    assert body["status"] == "Available"

    res = client.post(
        "/api/v1/rooms",
        json={"name": "Library", "floor": "Ground", "description": "Quiet"},
        headers=auth("root", "admin"),
    )
    assert res.json()["floor"] == "Ground"
    assert len(client.get("/api/v1/rooms", headers=auth()).json()) == 10


def test_admin_updates_room():
    res = client.put(
        "/api/v1/rooms/2",
        json={"description": "Has projector"},
        headers=auth("root", "admin"),
    )
    assert res.status_code == 200
    assert res.json()["description"] == "Has projector"
    assert res.json()["name"] == "Room 201"

    res = client.put("/api/v1/rooms/99", json={"name": "x"}, headers=auth("root", "admin"))
    assert res.status_code == 404


def test_admin_deletes_room_with_bookings():
    book("4", 0, 60)
    res = client.delete("/api/v1/rooms/4", headers=auth("root", "admin"))
    assert res.status_code == 204

    assert client.get("/api/v1/rooms/4", headers=auth()).status_code == 404
    assert client.delete("/api/v1/rooms/4", headers=auth("root", "admin")).status_code == 404
    assert client.get("/api/v1/bookings/me", headers=auth()).json() == []


# ---------- persistence ----------


def test_mutations_are_saved_to_snapshot():
    booking_id = book("1", 0, 60, description="Saved").json()["booking"]["id"]
    stored = main.snapshots.load()
    room = next(r for r in stored if r.id == "1")
    assert [b.id for b in room.bookings] == [booking_id]
    assert room.bookings[0].description == "Saved"


def test_reset_saves_snapshot_once(monkeypatch):
    saved = []
    monkeypatch.setattr(main.snapshots, "save", saved.append)

    main.reset_state()
    assert len(saved) == 1
    assert [r.name for r in saved[0]] == [f"Room {i * 100 + 1}" for i in range(1, 9)]
