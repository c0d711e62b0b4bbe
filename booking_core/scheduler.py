"""
Auto-release: republish room views when time alone changes them.

A room's view only changes at a few known instants (a booking entering the
upcoming window, starting, ending) or when the room is mutated. The scheduler
keeps a min-heap of each room's next such instant and re-derives a room only
when it is due or dirty. A coarse period bounds how long the background thread
sleeps between checks.
"""
import heapq
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from .intervals import utc_now
from .serialized_store import BookingStore
from .status import UPCOMING_WINDOW, RoomView, derive_room_view, next_transition_at

logger = logging.getLogger(__name__)

ViewListener = Callable[[RoomView], None]


class AutoReleaseScheduler:
    """
    Re-derives room views over time and publishes only real changes.

    Parameters
    ----------
    store : BookingStore
        Source of rooms. The scheduler subscribes to it to learn about
        mutations; it never mutates bookings itself.
    clock : Callable[[], datetime]
        Source of the current (aware) time.
    period_seconds : float
        Longest sleep between two checks of the background thread.
    upcoming_window : timedelta
        Lookahead of the "Upcoming" status.
    """

    def __init__(
        self,
        store: BookingStore,
        clock: Callable[[], datetime] = utc_now,
        period_seconds: float = 1.0,
        upcoming_window: timedelta = UPCOMING_WINDOW,
    ):
        self.store = store
        self.clock = clock
        self.period_seconds = period_seconds
        self.upcoming_window = upcoming_window

        self._lock = threading.Lock()
        self._published: Dict[str, RoomView] = {}
        self._heap: List[Tuple[datetime, str]] = []
        self._scheduled: Dict[str, datetime] = {}
        self._dirty: Set[str] = set()
        self._listeners: List[ViewListener] = []

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        store.subscribe(self.mark_dirty)

    def subscribe(self, listener: ViewListener) -> None:
        """Call ``listener(view)`` for every published change."""
        self._listeners.append(listener)

    def mark_dirty(self, room_id: str) -> None:
        with self._lock:
            self._dirty.add(room_id)

    def published(self, room_id: str) -> Optional[RoomView]:
        with self._lock:
            return self._published.get(room_id)

    def reset(self) -> None:
        """Forget everything published so far; the next tick republishes all rooms."""
        with self._lock:
            self._published.clear()
            self._heap.clear()
            self._scheduled.clear()
            self._dirty.clear()

    def tick(self, now: Optional[datetime] = None) -> List[RoomView]:
        """
        Re-derive due, dirty and unpublished rooms at ``now``.

        Parameters
        ----------
        now : Optional[datetime]
            Evaluation instant; defaults to ``clock()``.

        Returns
        -------
        List[RoomView]
            Views that differ from what was last published, in room id order.
            Calling ``tick`` again with the same ``now`` returns an empty list.
        """
        now = now or self.clock()
        changes: List[RoomView] = []

        with self._lock:
            due = set(self._dirty)
            self._dirty.clear()

            while self._heap and self._heap[0][0] <= now:
                when, room_id = heapq.heappop(self._heap)
                # skip entries superseded by a later reschedule
                if self._scheduled.get(room_id) == when:
                    del self._scheduled[room_id]
                    due.add(room_id)

            known = set(self.store.room_ids())
            due |= known - set(self._published)

            for room_id in sorted(due):
                room = self.store.get_room(room_id)
                if room is None:
                    self._published.pop(room_id, None)
                    self._scheduled.pop(room_id, None)
                    continue

                view = derive_room_view(room, now, self.upcoming_window)
                self._schedule(room_id, next_transition_at(room.all_bookings(), now, self.upcoming_window))

                if self._published.get(room_id) != view:
                    self._published[room_id] = view
                    changes.append(view)

        for view in changes:
            logger.debug("Room %s is now %s", view.room_id, view.status.value)
            for listener in list(self._listeners):
                try:
                    listener(view)
                except Exception:
                    logger.exception("View listener failed for room %s", view.room_id)
        return changes

    def refresh_all(self, now: Optional[datetime] = None) -> List[RoomView]:
        """Re-derive every room regardless of its schedule."""
        with self._lock:
            self._dirty.update(self.store.room_ids())
        return self.tick(now)

    def _schedule(self, room_id: str, when: Optional[datetime]) -> None:
        if when is None:
            self._scheduled.pop(room_id, None)
            return
        if self._scheduled.get(room_id) == when:
            return
        self._scheduled[room_id] = when
        heapq.heappush(self._heap, (when, room_id))

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        """How long the background thread may sleep before the next check."""
        now = now or self.clock()
        with self._lock:
            if self._dirty:
                return 0.0
            if not self._heap:
                return self.period_seconds
            wait = (self._heap[0][0] - now).total_seconds()
        return max(0.0, min(self.period_seconds, wait))

    # ---------- background thread ----------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="auto-release", daemon=True
        )
        self._thread.start()
        logger.info("Auto-release scheduler started (period %.1fs)", self.period_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Auto-release scheduler stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Auto-release tick failed")
            self._stop_event.wait(self.seconds_until_next() or 0.05)
