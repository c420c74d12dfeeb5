"""
SQLAlchemy adapters for the Booking Store and the Activity Catalog.

Counters live in ``slot_counters`` and are only changed through conditional
UPDATE statements, so the check against capacity and the increment are one
statement in the database. Status changes use the same trick: a save with
``expected`` only matches the row while it still has the status and slot the
caller read. Any ``SQLAlchemyError`` rolls the session back and
surfaces as ``StoreUnavailableError``.
"""

import logging
import uuid
from contextlib import contextmanager
from functools import wraps

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.activity import Activity
from models.booking import Booking
from models.db import utcnow
from models.slot_counter import SlotCounter
from services.catalog import ActivityCatalog, ActivityInfo
from services.errors import StoreUnavailableError
from services.store import BookingRecord, BookingStatus, BookingStore, SlotKey

logger = logging.getLogger(__name__)


def _guarded(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Booking store call %s failed: %s", fn.__name__, exc)
            db.session.rollback()
            raise StoreUnavailableError() from exc
    return wrapper


def _to_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        owner_id=row.owner_id,
        activity_id=row.activity_id,
        date=row.date,
        time_slot=row.time_slot,
        status=BookingStatus(row.status),
        notes=row.notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _same_slot(key: SlotKey):
    return and_(
        SlotCounter.activity_id == key.activity_id,
        SlotCounter.date == key.date,
        SlotCounter.time_slot == key.time_slot,
    )


def _fresh(stmt):
    # bypass the identity map: rows may have changed in another session
    return db.session.execute(stmt.execution_options(populate_existing=True)).scalars().all()


class SqlBookingStore(BookingStore):
    """Store backed by the Flask-SQLAlchemy session of the current app context."""

    @contextmanager
    def transaction(self):
        try:
            yield
            db.session.commit()
        except SQLAlchemyError as exc:
            logger.error("Booking transaction rolled back: %s", exc)
            db.session.rollback()
            raise StoreUnavailableError() from exc
        except BaseException:
            db.session.rollback()
            raise

    # ---- records ----
    @_guarded
    def get(self, booking_id):
        row = db.session.get(Booking, booking_id, populate_existing=True)
        return _to_record(row) if row else None

    @_guarded
    def add(self, record):
        row = Booking(
            id=record.id or uuid.uuid4().hex,
            owner_id=record.owner_id,
            activity_id=record.activity_id,
            date=record.date,
            time_slot=record.time_slot,
            status=BookingStatus(record.status).value,
            notes=record.notes,
        )
        db.session.add(row)
        db.session.flush()
        return _to_record(row)

    @_guarded
    def save(self, record, expected=None):
        stmt = update(Booking).where(Booking.id == record.id)
        if expected is not None:
            # another worker may have moved or canceled the row since it was read
            stmt = stmt.where(
                Booking.status == BookingStatus(expected.status).value,
                Booking.date == expected.date,
                Booking.time_slot == expected.time_slot,
            )
        result = db.session.execute(
            stmt.values(
                date=record.date,
                time_slot=record.time_slot,
                status=BookingStatus(record.status).value,
                notes=record.notes,
                updated_at=utcnow(),
            ).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if expected is not None:
                return None
            raise KeyError(record.id)
        row = db.session.get(Booking, record.id, populate_existing=True)
        return _to_record(row)

    @_guarded
    def list_by_owner(self, owner_id):
        return [_to_record(r) for r in _fresh(select(Booking).where(Booking.owner_id == owner_id))]

    @_guarded
    def list_all(self, status=None):
        stmt = select(Booking)
        if status is not None:
            stmt = stmt.where(Booking.status == BookingStatus(status).value)
        return [_to_record(r) for r in _fresh(stmt)]

    @_guarded
    def list_by_activity(self, activity_id, day=None):
        stmt = select(Booking).where(Booking.activity_id == activity_id)
        if day is not None:
            stmt = stmt.where(Booking.date == day)
        return [_to_record(r) for r in _fresh(stmt)]

    # ---- counters ----
    @_guarded
    def counter_value(self, key):
        value = db.session.execute(select(SlotCounter.reserved).where(_same_slot(key))).scalar()
        return value or 0

    @_guarded
    def increment_if_below(self, key, limit):
        result = db.session.execute(
            update(SlotCounter)
            .where(_same_slot(key), SlotCounter.reserved < limit)
            .values(reserved=SlotCounter.reserved + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return True
        exists = db.session.execute(select(SlotCounter.id).where(_same_slot(key))).first()
        if exists is not None or limit <= 0:
            return False
        # first booking on this triple; the unique constraint rejects a
        # concurrent insert from another process
        db.session.add(SlotCounter(
            activity_id=key.activity_id, date=key.date, time_slot=key.time_slot, reserved=1,
        ))
        db.session.flush()
        return True

    @_guarded
    def decrement(self, key):
        result = db.session.execute(
            update(SlotCounter)
            .where(_same_slot(key), SlotCounter.reserved > 0)
            .values(reserved=SlotCounter.reserved - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @_guarded
    def counters(self):
        rows = db.session.execute(
            select(SlotCounter.activity_id, SlotCounter.date, SlotCounter.time_slot, SlotCounter.reserved)
        ).all()
        return {SlotKey(a, d, t): reserved for a, d, t, reserved in rows}

    @_guarded
    def set_counter(self, key, value):
        result = db.session.execute(
            update(SlotCounter)
            .where(_same_slot(key))
            .values(reserved=value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.session.add(SlotCounter(
                activity_id=key.activity_id, date=key.date, time_slot=key.time_slot, reserved=value,
            ))
            db.session.flush()


class SqlActivityCatalog(ActivityCatalog):
    @_guarded
    def get_activity(self, activity_id):
        try:
            activity_id = int(activity_id)
        except (TypeError, ValueError):
            return None
        row = db.session.get(Activity, activity_id)
        if row is None or not row.is_active:
            return None
        return ActivityInfo(
            id=row.id,
            name=row.name,
            capacity_per_slot=row.capacity_per_slot,
            available_slots=tuple(row.available_slots or ()),
        )
