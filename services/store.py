"""
Booking Store: records keyed by id plus one atomic counter per slot triple.

The engine only talks to the abstract ``BookingStore``; ``InMemoryBookingStore``
backs tests and single-process use, ``services.sql_store.SqlBookingStore``
backs the Flask application.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from collections import namedtuple
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELED = "canceled"
    RESCHEDULED = "rescheduled"


# statuses that hold a unit of slot capacity
ACTIVE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.RESCHEDULED})

SlotKey = namedtuple("SlotKey", ["activity_id", "date", "time_slot"])


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class BookingRecord:
    id: Optional[str]
    owner_id: int
    activity_id: int
    date: date
    time_slot: str
    status: BookingStatus = BookingStatus.CONFIRMED
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> SlotKey:
        return SlotKey(self.activity_id, self.date, self.time_slot)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


def _placement(record):
    return BookingStatus(record.status), record.key


class BookingStore(ABC):
    """Durable booking records plus a per-triple counter primitive."""

    @abstractmethod
    @contextmanager
    def transaction(self):
        """Group mutations: all of them land, or none do."""

    # ---- records ----
    @abstractmethod
    def get(self, booking_id: str) -> Optional[BookingRecord]: ...

    @abstractmethod
    def add(self, record: BookingRecord) -> BookingRecord: ...

    @abstractmethod
    def save(self, record: BookingRecord, expected: BookingRecord = None) -> Optional[BookingRecord]:
        """Persist ``record``.

        With ``expected``, the write is a compare-and-set: it only lands if the
        stored status, date and time slot still match ``expected``; otherwise
        nothing changes and None is returned.
        """

    @abstractmethod
    def list_by_owner(self, owner_id) -> List[BookingRecord]: ...

    @abstractmethod
    def list_all(self, status: BookingStatus = None) -> List[BookingRecord]: ...

    @abstractmethod
    def list_by_activity(self, activity_id, day: date = None) -> List[BookingRecord]: ...

    # ---- counters ----
    @abstractmethod
    def counter_value(self, key: SlotKey) -> int: ...

    @abstractmethod
    def increment_if_below(self, key: SlotKey, limit: int) -> bool:
        """Add one to the counter only if it is below ``limit``."""

    @abstractmethod
    def decrement(self, key: SlotKey) -> bool:
        """Subtract one from the counter; False when it was already zero."""

    @abstractmethod
    def counters(self) -> Dict[SlotKey, int]: ...

    @abstractmethod
    def set_counter(self, key: SlotKey, value: int) -> None: ...


class InMemoryBookingStore(BookingStore):
    """Thread-safe dict-backed store.

    A transaction keeps an undo log for the calling thread; if the block
    raises, the recorded mutations are reverted in reverse order. Each
    individual mutation runs under a short store mutex.
    """

    def __init__(self):
        self._records: Dict[str, BookingRecord] = {}
        self._by_owner: Dict[object, List[str]] = {}
        self._by_activity_day: Dict[tuple, List[str]] = {}
        self._counters: Dict[SlotKey, int] = {}
        self._mutex = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def transaction(self):
        if getattr(self._local, "undo", None) is not None:
            # nested: the outer transaction owns the undo log
            yield
            return
        self._local.undo = []
        try:
            yield
        except BaseException:
            undo, self._local.undo = self._local.undo, None
            with self._mutex:
                for step in reversed(undo):
                    step()
            raise
        finally:
            self._local.undo = None

    def _remember(self, step) -> None:
        undo = getattr(self._local, "undo", None)
        if undo is not None:
            undo.append(step)

    # ---- records ----
    def get(self, booking_id):
        with self._mutex:
            record = self._records.get(booking_id)
            return replace(record) if record else None

    def add(self, record):
        now = utcnow()
        stored = replace(record, id=record.id or uuid.uuid4().hex, created_at=now, updated_at=now)
        with self._mutex:
            self._records[stored.id] = stored
            self._index(stored)
        self._remember(lambda: self._forget(stored))
        return replace(stored)

    def save(self, record, expected=None):
        with self._mutex:
            previous = self._records.get(record.id)
            if previous is None:
                raise KeyError(record.id)
            if expected is not None and _placement(previous) != _placement(expected):
                return None
            stored = replace(record, created_at=previous.created_at, updated_at=utcnow())
            self._unindex(previous)
            self._records[stored.id] = stored
            self._index(stored)
        self._remember(lambda: self._restore(previous))
        return replace(stored)

    def _index(self, record):
        self._by_owner.setdefault(record.owner_id, []).append(record.id)
        self._by_activity_day.setdefault((record.activity_id, record.date), []).append(record.id)

    def _unindex(self, record):
        self._by_owner.get(record.owner_id, []).remove(record.id)
        self._by_activity_day.get((record.activity_id, record.date), []).remove(record.id)

    def _forget(self, record):
        self._unindex(record)
        del self._records[record.id]

    def _restore(self, previous):
        self._unindex(self._records[previous.id])
        self._records[previous.id] = previous
        self._index(previous)

    def list_by_owner(self, owner_id):
        with self._mutex:
            return [replace(self._records[i]) for i in self._by_owner.get(owner_id, [])]

    def list_all(self, status=None):
        with self._mutex:
            rows = [replace(r) for r in self._records.values()]
        if status is not None:
            rows = [r for r in rows if r.status == BookingStatus(status)]
        return rows

    def list_by_activity(self, activity_id, day=None):
        with self._mutex:
            if day is not None:
                ids = self._by_activity_day.get((activity_id, day), [])
            else:
                ids = [i for (act, _), bucket in self._by_activity_day.items() if act == activity_id for i in bucket]
            return [replace(self._records[i]) for i in ids]

    # ---- counters ----
    def counter_value(self, key):
        with self._mutex:
            return self._counters.get(key, 0)

    def increment_if_below(self, key, limit):
        with self._mutex:
            current = self._counters.get(key, 0)
            if current >= limit:
                return False
            self._counters[key] = current + 1
        self._remember(lambda: self._adjust(key, -1))
        return True

    def decrement(self, key):
        with self._mutex:
            current = self._counters.get(key, 0)
            if current <= 0:
                return False
            self._counters[key] = current - 1
        self._remember(lambda: self._adjust(key, 1))
        return True

    def _adjust(self, key, delta):
        self._counters[key] = self._counters.get(key, 0) + delta

    def counters(self):
        with self._mutex:
            return dict(self._counters)

    def set_counter(self, key, value):
        with self._mutex:
            current = self._counters.get(key, 0)
            self._counters[key] = value
        self._remember(lambda: self._counters.__setitem__(key, current))
