"""
Booking Lifecycle Engine.

State machine for a single booking::

    (new) --create--> confirmed --cancel--> canceled
                      confirmed --reschedule--> rescheduled
                      rescheduled --cancel / reschedule--> ...

``rescheduled`` holds capacity and can be canceled or moved again exactly like
``confirmed``. Every mutating operation runs with the per-slot locks of the
triples it touches held and inside one store transaction, so the status change
and the counter adjustment land together or not at all.

Public operations return an ``Outcome`` instead of raising: the caller decides
how to present a refusal, and nothing is retried here.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Optional

from services.calendar import facility_clock, parse_date, slot_start
from services.capacity import SlotCapacityIndex
from services.catalog import ActivityCatalog
from services.errors import (
    AlreadyCanceledError,
    BookingError,
    InvalidDateError,
    InvalidSlotError,
    NotFoundError,
    PastBookingError,
    SlotFullError,
    StoreUnavailableError,
)
from services.identity import Actor, require_member, require_owner_or_staff, require_staff
from services.store import BookingRecord, BookingStatus, BookingStore, SlotKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outcome:
    value: Any = None
    error: Optional[BookingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.value


def _recovered(fn):
    """Turn a raised BookingError into ``Outcome(error=...)``."""

    @wraps(fn)
    def wrapper(self, actor, *args, **kwargs):
        try:
            value = fn(self, actor, *args, **kwargs)
        except BookingError as exc:
            logger.info("%s refused for actor %s: %s", fn.__name__, getattr(actor, "id", None), exc.code)
            return Outcome(error=exc)
        return Outcome(value=value)

    return wrapper


def _chronological(records):
    return sorted(records, key=lambda r: (slot_start(r.date, r.time_slot), r.time_slot))


class BookingEngine:
    def __init__(
        self,
        store: BookingStore,
        catalog: ActivityCatalog,
        capacity: SlotCapacityIndex = None,
        clock=None,
    ):
        self.store = store
        self.catalog = catalog
        self.capacity = capacity or SlotCapacityIndex(store)
        self.clock = clock or facility_clock()

    # ---------- checks ----------
    def _day(self, value):
        try:
            return parse_date(value)
        except (TypeError, ValueError):
            raise InvalidDateError(f"Invalid date: {value!r}") from None

    def _activity(self, activity_id):
        activity = self.catalog.get_activity(activity_id)
        if activity is None:
            raise NotFoundError("Activity not found")
        return activity

    def _booking(self, booking_id) -> BookingRecord:
        record = self.store.get(booking_id)
        if record is None:
            raise NotFoundError("Booking not found")
        return record

    def _check_target(self, activity, day, time_slot):
        if day < self.clock().date():
            raise InvalidDateError()
        if not activity.offers(time_slot):
            raise InvalidSlotError(f"{activity.name} does not offer slot {time_slot!r}")

    def _check_changeable(self, record: BookingRecord):
        if record.status == BookingStatus.CANCELED:
            raise AlreadyCanceledError()
        if slot_start(record.date, record.time_slot) <= self.clock():
            raise PastBookingError()

    @contextmanager
    def _hold(self, booking_id, *extra_keys):
        """Lock the booking's current slot (plus ``extra_keys``) and open a
        transaction, yielding a copy of the record read under the lock."""
        record = self._booking(booking_id)
        while True:
            with self.capacity.locked(record.key, *extra_keys):
                fresh = self._booking(booking_id)
                if fresh.key == record.key:
                    with self.store.transaction():
                        yield fresh
                    return
            # moved by a concurrent reschedule; lock the new slot instead
            record = fresh

    def _write(self, record: BookingRecord, seen: BookingRecord) -> BookingRecord:
        """Save a state change only if the row still looks like ``seen``.

        Slot locks only cover this process; across workers the conditional
        save decides which cancel or reschedule of a booking wins.
        """
        saved = self.store.save(record, expected=seen)
        if saved is None:
            self._check_changeable(self._booking(record.id))
            raise StoreUnavailableError("Booking was changed concurrently, try again")
        return saved

    # ---------- transitions ----------
    @_recovered
    def create_booking(self, actor: Actor, activity_id, date, time_slot, notes=None):
        require_member(actor)
        activity = self._activity(activity_id)
        day = self._day(date)
        self._check_target(activity, day, time_slot)

        key = SlotKey(activity.id, day, time_slot)
        with self.capacity.locked(key), self.store.transaction():
            if not self.capacity.try_reserve(*key, activity.capacity_per_slot):
                raise SlotFullError(f"{activity.name} is fully booked on {day.isoformat()} at {time_slot}")
            record = self.store.add(BookingRecord(
                id=None,
                owner_id=actor.id,
                activity_id=activity.id,
                date=day,
                time_slot=time_slot,
                status=BookingStatus.CONFIRMED,
                notes=notes,
            ))

        logger.info("Booking %s created by %s for %s", record.id, actor.id, key)
        return record

    @_recovered
    def cancel_booking(self, actor: Actor, booking_id):
        record = self._booking(booking_id)
        require_owner_or_staff(actor, record)
        self._check_changeable(record)

        with self._hold(booking_id) as record:
            self._check_changeable(record)
            seen = replace(record)
            record.status = BookingStatus.CANCELED
            record = self._write(record, seen)
            self.capacity.release(*record.key)

        logger.info("Booking %s canceled by %s", record.id, actor.id)
        return record

    @_recovered
    def reschedule_booking(self, actor: Actor, booking_id, new_date, new_time_slot):
        record = self._booking(booking_id)
        require_owner_or_staff(actor, record)
        self._check_changeable(record)
        activity = self._activity(record.activity_id)
        day = self._day(new_date)
        self._check_target(activity, day, new_time_slot)

        new_key = SlotKey(activity.id, day, new_time_slot)
        with self._hold(booking_id, new_key) as record:
            self._check_changeable(record)
            old_key = record.key
            if old_key == new_key:
                raise InvalidSlotError("Booking already holds that slot")
            # reserve the new slot before giving up the old one
            if not self.capacity.try_reserve(*new_key, activity.capacity_per_slot):
                raise SlotFullError(f"{activity.name} is fully booked on {day.isoformat()} at {new_time_slot}")
            seen = replace(record)
            record.date = day
            record.time_slot = new_time_slot
            record.status = BookingStatus.RESCHEDULED
            record = self._write(record, seen)
            self.capacity.release(*old_key)

        logger.info("Booking %s moved by %s from %s to %s", record.id, actor.id, old_key, new_key)
        return record

    @_recovered
    def update_notes(self, actor: Actor, booking_id, notes):
        record = self._booking(booking_id)
        require_owner_or_staff(actor, record)
        with self._hold(booking_id) as record:
            record.notes = notes
            record = self.store.save(record)
        return record

    # ---------- queries ----------
    @_recovered
    def get_booking(self, actor: Actor, booking_id):
        record = self._booking(booking_id)
        require_owner_or_staff(actor, record)
        return record

    @_recovered
    def list_all_bookings(self, actor: Actor, status=None):
        require_staff(actor)
        if status is not None:
            status = BookingStatus(status)
        return _chronological(self.store.list_all(status))

    def list_my_bookings(self, actor: Actor):
        return _chronological(self.store.list_by_owner(actor.id))

    def list_activity_bookings(self, activity_id, date=None):
        day = self._day(date) if date is not None else None
        return _chronological(self.store.list_by_activity(activity_id, day))
