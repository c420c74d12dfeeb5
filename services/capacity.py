"""
Slot Capacity Index.

Counts active bookings per (activity, date, time slot) triple and admits new
ones through ``try_reserve``. Each triple has its own re-entrant lock, so work
on different triples never waits on each other; the store's conditional
increment keeps the check-and-add atomic even across processes.
"""

import logging
import threading
from collections import Counter
from contextlib import ExitStack, contextmanager

from services.store import BookingStore, SlotKey

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Lazily created re-entrant lock per key, dropped when nobody holds it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # key -> [RLock, users]

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


class SlotCapacityIndex:
    def __init__(self, store: BookingStore):
        self._store = store
        self._locks = KeyedLocks()

    @contextmanager
    def locked(self, *keys):
        # fixed acquisition order so two reschedules crossing the same pair
        # of slots cannot deadlock
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self._locks.hold(key))
            yield

    def current_count(self, activity_id, date, time_slot) -> int:
        return self._store.counter_value(SlotKey(activity_id, date, time_slot))

    def try_reserve(self, activity_id, date, time_slot, capacity: int) -> bool:
        key = SlotKey(activity_id, date, time_slot)
        with self.locked(key):
            reserved = self._store.increment_if_below(key, capacity)
        if not reserved:
            logger.debug("Slot %s full (capacity %s)", key, capacity)
        return reserved

    def release(self, activity_id, date, time_slot) -> bool:
        key = SlotKey(activity_id, date, time_slot)
        with self.locked(key):
            released = self._store.decrement(key)
        if not released:
            logger.warning("Release on empty slot counter %s ignored", key)
        return released

    def rebuild(self) -> dict:
        """Recompute every counter from booking history.

        Returns ``{key: (old, new)}`` for each counter that was corrected.
        """
        expected = Counter(r.key for r in self._store.list_all() if r.is_active)
        current = self._store.counters()
        corrections = {}
        for key in sorted(set(expected) | set(current), key=repr):
            if expected.get(key, 0) == current.get(key, 0):
                continue
            with self.locked(key), self._store.transaction():
                # recount under the lock; the snapshot above may be stale
                old = self._store.counter_value(key)
                new = sum(
                    1 for r in self._store.list_by_activity(key.activity_id, key.date)
                    if r.time_slot == key.time_slot and r.is_active
                )
                if old != new:
                    self._store.set_counter(key, new)
                    corrections[key] = (old, new)
        if corrections:
            logger.warning("Rebuilt %d slot counters", len(corrections))
        return corrections
