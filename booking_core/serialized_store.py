"""
Serialised owner of the booking store.

``BookingStore`` is the single writer for a set of rooms. Every mutation of a
room runs behind that room's lock, so an admission check and the resulting
insert happen as one indivisible step.
"""
import logging
import threading
import uuid
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .admission import MAX_BOOKING_HOURS, BookingProposal, try_book
from .cancellation import clear_legacy_booking, promote_legacy_booking, try_cancel
from .models import Booking, Room, User
from .results import Accepted, Rejected, RejectReason, Result
from .store import add_booking, delete_room

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]
ChangeListener = Callable[[List[str]], None]


class BookingStore:
    """
    In-memory owner of rooms with per-room serialised mutations.

    Rooms are immutable values: readers always see a consistent snapshot of a
    room, writers swap in a new value while holding the room's lock.

    Parameters
    ----------
    rooms : Iterable[Room]
        Initial rooms.
    max_hours : float
        Maximum booking duration enforced by ``book``.
    """

    def __init__(self, rooms: Iterable[Room] = (), max_hours: float = MAX_BOOKING_HOURS):
        self.max_hours = max_hours
        self._rooms: Dict[str, Room] = {}
        self._room_locks: Dict[str, threading.Lock] = {}
        # guards the two dicts above; never held while waiting on a room lock
        self._registry_lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._change_listeners: List[ChangeListener] = []
        self.replace_all(rooms)

    # ---------- listeners ----------

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener(room_id)`` for every room touched by a successful mutation."""
        self._listeners.append(listener)

    def subscribe_changes(self, listener: ChangeListener) -> None:
        """Call ``listener(room_ids)`` once per successful mutation, however many rooms it touched."""
        self._change_listeners.append(listener)

    def _notify(self, *room_ids: str) -> None:
        for room_id in room_ids:
            for listener in list(self._listeners):
                try:
                    listener(room_id)
                except Exception:
                    logger.exception("Store listener failed for room %s", room_id)
        for change_listener in list(self._change_listeners):
            try:
                change_listener(list(room_ids))
            except Exception:
                logger.exception("Store change listener failed for %d room(s)", len(room_ids))

    # ---------- reads ----------

    def rooms(self) -> List[Room]:
        with self._registry_lock:
            return list(self._rooms.values())

    def room_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._rooms)

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._registry_lock:
            return self._rooms.get(room_id)

    def bookings_for(self, user_id: str) -> List[Tuple[Room, Booking]]:
        """All ``(room, booking)`` pairs owned by ``user_id``, by start time."""
        owned = []
        for room in self.rooms():
            for booking in room.bookings:
                if booking.booked_by is not None and booking.booked_by.id == user_id:
                    owned.append((room, booking))
        owned.sort(key=lambda pair: pair[1].sort_key())
        return owned

    # ---------- room administration ----------

    def replace_all(self, rooms: Iterable[Room]) -> None:
        """
        Swap the whole data set, e.g. after loading or seeding.

        Rooms whose id survives keep their lock, so a writer still running
        against the old value is serialised with writers on the new one and
        retries against the new value.
        """
        rooms = list(rooms)
        with self._registry_lock:
            old_ids = list(self._rooms)
            self._rooms = {r.id: r for r in rooms}
            self._room_locks = {
                r.id: self._room_locks.get(r.id) or threading.Lock() for r in rooms
            }
        changed = list(dict.fromkeys(old_ids + [r.id for r in rooms]))
        self._notify(*changed)

    def create_room(
        self,
        name: str,
        floor: str = "",
        description: str = "",
        room_id: Optional[str] = None,
    ) -> Room:
        room = Room(
            id=room_id or uuid.uuid4().hex,
            name=name,
            floor=floor,
            description=description,
        )
        with self._registry_lock:
            if room.id in self._rooms:
                raise ValueError(f"Room {room.id} already exists")
            self._rooms[room.id] = room
            self._room_locks[room.id] = threading.Lock()
        logger.info("Created room %s (%s)", room.id, room.name)
        self._notify(room.id)
        return room

    def update_room(
        self,
        room_id: str,
        name: Optional[str] = None,
        floor: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Result[Room]:
        changes = {
            key: value
            for key, value in (("name", name), ("floor", floor), ("description", description))
            if value is not None
        }
        return self._mutate(room_id, lambda room: Accepted(room.model_copy(update=changes)))

    def delete_room(self, room_id: str) -> Result[Room]:
        """Remove a room and all of its bookings; returns the deleted room."""
        while True:
            lock = self._lock_for(room_id)
            if lock is None:
                return Rejected(RejectReason.NOT_FOUND, "Room not found.")
            with lock:
                with self._registry_lock:
                    if self._room_locks.get(room_id) is not lock:
                        # the data set was replaced while we waited
                        continue
                    room = self._rooms.get(room_id)
                    result = delete_room(list(self._rooms.values()), room_id)
                    if isinstance(result, Rejected):
                        return result
                    self._rooms = {r.id: r for r in result.value}
                    self._room_locks.pop(room_id, None)
            break
        logger.info("Deleted room %s with %d booking(s)", room_id, len(room.bookings))
        self._notify(room_id)
        return Accepted(room)

    # ---------- bookings ----------

    def book(
        self,
        room_id: str,
        proposal: BookingProposal,
        requester: User,
        now: Optional[datetime] = None,
    ) -> Result[Booking]:
        """Admit ``proposal`` and insert it, atomically with respect to the room."""
        admitted = {}

        def admit(room: Room) -> Result[Room]:
            result = try_book(room, proposal, requester, now=now, max_hours=self.max_hours)
            if isinstance(result, Rejected):
                return result
            admitted["booking"] = result.value
            return Accepted(add_booking(room, result.value))

        outcome = self._mutate(room_id, admit)
        if isinstance(outcome, Rejected):
            logger.info("Booking rejected for room %s: %s", room_id, outcome.reason.value)
            return outcome
        booking = admitted["booking"]
        logger.info("Booked room %s as %s for %s", room_id, booking.id, requester.id)
        return Accepted(booking)

    def cancel(self, room_id: str, booking_id: str, requester: User, is_admin: bool) -> Result[Room]:
        outcome = self._mutate(
            room_id, lambda room: try_cancel(room, booking_id, requester, is_admin)
        )
        if isinstance(outcome, Accepted):
            logger.info("Cancelled booking %s in room %s", booking_id, room_id)
        return outcome

    def clear_legacy(self, room_id: str, is_admin: bool) -> Result[Room]:
        return self._mutate(room_id, lambda room: clear_legacy_booking(room, is_admin))

    def promote_legacy(self, room_id: str, is_admin: bool, now: Optional[datetime] = None) -> Result[Room]:
        return self._mutate(room_id, lambda room: promote_legacy_booking(room, is_admin, now))

    # ---------- internals ----------

    def _lock_for(self, room_id: str) -> Optional[threading.Lock]:
        with self._registry_lock:
            return self._room_locks.get(room_id)

    def _mutate(self, room_id: str, change: Callable[[Room], Result[Room]]) -> Result[Room]:
        """
        Apply ``change`` to the current value of a room under its lock.

        The new value is only written if the room is still the one ``change``
        saw; otherwise ``replace_all`` swapped it in the meantime and
        ``change`` runs again on the current value.
        """
        while True:
            lock = self._lock_for(room_id)
            if lock is None:
                return Rejected(RejectReason.NOT_FOUND, "Room not found.")
            with lock:
                with self._registry_lock:
                    current_lock = self._room_locks.get(room_id)
                    room = self._rooms.get(room_id)
                if current_lock is not lock:
                    # deleted or replaced while we were waiting for the lock
                    continue
                result = change(room)
                if isinstance(result, Rejected):
                    return result
                with self._registry_lock:
                    if self._rooms.get(room_id) is not room:
                        logger.info("Room %s was reloaded during a mutation, retrying", room_id)
                        continue
                    self._rooms[room_id] = result.value
            break
        self._notify(room_id)
        return result
