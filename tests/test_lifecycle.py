"""Booking lifecycle: create / cancel / reschedule / notes against the in-memory store."""

import random
import threading
from collections import Counter
from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from services.errors import (
    AlreadyCanceledError,
    ForbiddenError,
    InvalidDateError,
    InvalidSlotError,
    NotFoundError,
    PastBookingError,
    SlotFullError,
    StoreUnavailableError,
)
from services.identity import Actor, Role
from services.lifecycle import BookingEngine, Outcome
from services.store import BookingStatus, InMemoryBookingStore, SlotKey
from tests.conftest import POOL, TENNIS

AUG_1 = date(2025, 8, 1)


def test_tennis_court_scenario(engine, member_a, member_b):
    first = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00")
    assert first.ok
    assert first.value.status == BookingStatus.CONFIRMED
    assert first.value.owner_id == member_a.id
    assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1

    refused = engine.create_booking(member_b, TENNIS.id, AUG_1, "10:00")
    assert isinstance(refused.error, SlotFullError)

    canceled = engine.cancel_booking(member_a, first.value.id)
    assert canceled.value.status == BookingStatus.CANCELED
    assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 0

    retry = engine.create_booking(member_b, TENNIS.id, AUG_1, "10:00")
    assert retry.ok
    assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1


class TestCreate:
    def test_accepts_iso_string_dates(self, engine, member_a):
        outcome = engine.create_booking(member_a, POOL.id, "2025-08-01", "2:00 PM", notes="lane 3")
        assert outcome.value.date == AUG_1
        assert outcome.value.notes == "lane 3"
        assert outcome.value.created_at is not None

    def test_past_date_rejected(self, engine, member_a):
        outcome = engine.create_booking(member_a, POOL.id, date(2025, 7, 19), "10:00")
        assert isinstance(outcome.error, InvalidDateError)
        assert engine.store.list_all() == []

    def test_past_date_rejected_even_when_slot_full(self, engine, store, member_a):
        yesterday = date(2025, 7, 19)
        store.set_counter(SlotKey(TENNIS.id, yesterday, "10:00"), TENNIS.capacity_per_slot)
        outcome = engine.create_booking(member_a, TENNIS.id, yesterday, "10:00")
        assert isinstance(outcome.error, InvalidDateError)

    def test_today_is_bookable(self, engine, member_a):
        assert engine.create_booking(member_a, POOL.id, date(2025, 7, 20), "2:00 PM").ok

    def test_unparseable_date(self, engine, member_a):
        outcome = engine.create_booking(member_a, POOL.id, "next tuesday", "10:00")
        assert isinstance(outcome.error, InvalidDateError)

    def test_unknown_activity(self, engine, member_a):
        outcome = engine.create_booking(member_a, 999, AUG_1, "10:00")
        assert isinstance(outcome.error, NotFoundError)

    def test_slot_not_offered(self, engine, member_a):
        outcome = engine.create_booking(member_a, TENNIS.id, AUG_1, "23:00")
        assert isinstance(outcome.error, InvalidSlotError)

    def test_past_date_wins_over_unknown_slot(self, engine, member_a):
        outcome = engine.create_booking(member_a, TENNIS.id, date(2025, 7, 19), "23:00")
        assert isinstance(outcome.error, InvalidDateError)

    @pytest.mark.parametrize("role", [Role.STAFF, Role.ADMIN])
    def test_only_members_create(self, engine, role):
        outcome = engine.create_booking(Actor(id=50, role=role), TENNIS.id, AUG_1, "10:00")
        assert isinstance(outcome.error, ForbiddenError)
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 0

    def test_capacity_greater_than_one(self, engine):
        results = [
            engine.create_booking(Actor(id=i, role=Role.MEMBER), POOL.id, AUG_1, "10:00")
            for i in range(1, 5)
        ]
        assert [r.ok for r in results] == [True, True, True, False]
        assert engine.capacity.current_count(POOL.id, AUG_1, "10:00") == 3


class TestCancel:
    def test_second_cancel_is_refused_without_double_release(self, engine, member_a, member_b):
        mine = engine.create_booking(member_a, POOL.id, AUG_1, "10:00").value
        engine.create_booking(member_b, POOL.id, AUG_1, "10:00")

        assert engine.cancel_booking(member_a, mine.id).ok
        again = engine.cancel_booking(member_a, mine.id)

        assert isinstance(again.error, AlreadyCanceledError)
        assert engine.capacity.current_count(POOL.id, AUG_1, "10:00") == 1

    def test_unknown_booking(self, engine, member_a):
        assert isinstance(engine.cancel_booking(member_a, "nope").error, NotFoundError)

    def test_other_member_forbidden(self, engine, member_a, member_b):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        outcome = engine.cancel_booking(member_b, booking.id)
        assert isinstance(outcome.error, ForbiddenError)
        assert engine.store.get(booking.id).status == BookingStatus.CONFIRMED

    @pytest.mark.parametrize("actor_fixture", ["staff", "admin"])
    def test_staff_and_admin_cancel_any(self, request, engine, member_a, actor_fixture):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        outcome = engine.cancel_booking(request.getfixturevalue(actor_fixture), booking.id)
        assert outcome.value.status == BookingStatus.CANCELED
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 0

    @pytest.mark.parametrize("actor_fixture", ["member_a", "staff", "admin"])
    def test_past_booking_cannot_be_canceled_by_anyone(self, request, engine, clock, member_a, actor_fixture):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        clock.now = datetime(2025, 8, 1, 10, 30)

        outcome = engine.cancel_booking(request.getfixturevalue(actor_fixture), booking.id)

        assert isinstance(outcome.error, PastBookingError)
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1

    def test_same_day_before_slot_start_is_allowed(self, engine, clock, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "11:00").value
        clock.now = datetime(2025, 8, 1, 10, 59)
        assert engine.cancel_booking(member_a, booking.id).ok


class TestReschedule:
    def test_moves_booking_and_capacity(self, engine, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        outcome = engine.reschedule_booking(member_a, booking.id, "2025-08-02", "11:00")

        moved = outcome.value
        assert moved.id == booking.id
        assert moved.status == BookingStatus.RESCHEDULED
        assert (moved.date, moved.time_slot) == (date(2025, 8, 2), "11:00")
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 0
        assert engine.capacity.current_count(TENNIS.id, date(2025, 8, 2), "11:00") == 1

    def test_full_target_leaves_original_intact(self, engine, member_a, member_b):
        mine = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        engine.create_booking(member_b, TENNIS.id, AUG_1, "11:00")

        outcome = engine.reschedule_booking(member_a, mine.id, AUG_1, "11:00")

        assert isinstance(outcome.error, SlotFullError)
        unchanged = engine.store.get(mine.id)
        assert unchanged.status == BookingStatus.CONFIRMED
        assert (unchanged.date, unchanged.time_slot) == (AUG_1, "10:00")
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "11:00") == 1

    def test_rescheduled_booking_behaves_like_confirmed(self, engine, member_a, member_b):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        engine.reschedule_booking(member_a, booking.id, AUG_1, "11:00")

        # still holds its new slot
        assert isinstance(engine.create_booking(member_b, TENNIS.id, AUG_1, "11:00").error, SlotFullError)
        # can be moved again and then canceled
        assert engine.reschedule_booking(member_a, booking.id, AUG_1, "09:00").ok
        assert engine.cancel_booking(member_a, booking.id).value.status == BookingStatus.CANCELED
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "09:00") == 0
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "11:00") == 0

    def test_canceled_booking_cannot_move(self, engine, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        engine.cancel_booking(member_a, booking.id)
        outcome = engine.reschedule_booking(member_a, booking.id, AUG_1, "11:00")
        assert isinstance(outcome.error, AlreadyCanceledError)
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "11:00") == 0

    def test_same_slot_refused(self, engine, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        outcome = engine.reschedule_booking(member_a, booking.id, AUG_1, "10:00")
        assert isinstance(outcome.error, InvalidSlotError)
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1

    def test_new_date_in_past(self, engine, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        outcome = engine.reschedule_booking(member_a, booking.id, date(2025, 7, 1), "10:00")
        assert isinstance(outcome.error, InvalidDateError)

        outcome = engine.reschedule_booking(member_a, booking.id, date(2025, 7, 1), "23:00")
        assert isinstance(outcome.error, InvalidDateError)

    def test_elapsed_booking_cannot_move(self, engine, clock, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        clock.now = datetime(2025, 8, 1, 12, 0)
        outcome = engine.reschedule_booking(member_a, booking.id, date(2025, 8, 5), "10:00")
        assert isinstance(outcome.error, PastBookingError)

    def test_other_member_forbidden_staff_allowed(self, engine, member_a, member_b, staff):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        assert isinstance(
            engine.reschedule_booking(member_b, booking.id, AUG_1, "11:00").error, ForbiddenError
        )
        moved = engine.reschedule_booking(staff, booking.id, AUG_1, "11:00").value
        assert moved.owner_id == member_a.id


class TestNotesAndQueries:
    def test_notes_editable_by_owner_and_staff_in_any_status(self, engine, member_a, member_b, staff):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        assert engine.update_notes(member_a, booking.id, "bring rackets").value.notes == "bring rackets"

        engine.cancel_booking(member_a, booking.id)
        updated = engine.update_notes(staff, booking.id, "refunded").value
        assert updated.notes == "refunded"
        assert updated.status == BookingStatus.CANCELED

        assert isinstance(engine.update_notes(member_b, booking.id, "x").error, ForbiddenError)

    def test_get_booking_authorization(self, engine, member_a, member_b, admin):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        assert engine.get_booking(member_a, booking.id).value.id == booking.id
        assert engine.get_booking(admin, booking.id).ok
        assert isinstance(engine.get_booking(member_b, booking.id).error, ForbiddenError)

    def test_listings_sorted_by_date_then_slot(self, engine, member_a, member_b, staff):
        engine.create_booking(member_a, POOL.id, date(2025, 8, 3), "10:00")
        engine.create_booking(member_a, POOL.id, AUG_1, "2:00 PM")
        engine.create_booking(member_b, TENNIS.id, AUG_1, "11:00")
        engine.create_booking(member_a, TENNIS.id, AUG_1, "09:00")

        mine = engine.list_my_bookings(member_a)
        assert [(b.date.day, b.time_slot) for b in mine] == [(1, "09:00"), (1, "2:00 PM"), (3, "10:00")]

        everything = engine.list_all_bookings(staff).value
        assert [(b.date.day, b.time_slot) for b in everything] == [
            (1, "09:00"), (1, "11:00"), (1, "2:00 PM"), (3, "10:00"),
        ]

    def test_list_all_requires_staff(self, engine, member_a):
        assert isinstance(engine.list_all_bookings(member_a).error, ForbiddenError)

    def test_list_all_status_filter(self, engine, member_a, admin):
        keep = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        gone = engine.create_booking(member_a, TENNIS.id, AUG_1, "11:00").value
        engine.cancel_booking(member_a, gone.id)

        assert [b.id for b in engine.list_all_bookings(admin, "confirmed").value] == [keep.id]
        assert [b.id for b in engine.list_all_bookings(admin, "canceled").value] == [gone.id]

    def test_activity_listing(self, engine, member_a, member_b):
        engine.create_booking(member_a, POOL.id, AUG_1, "10:00")
        engine.create_booking(member_b, POOL.id, date(2025, 8, 2), "10:00")
        engine.create_booking(member_b, TENNIS.id, AUG_1, "10:00")

        assert len(engine.list_activity_bookings(POOL.id)) == 2
        assert len(engine.list_activity_bookings(POOL.id, "2025-08-01")) == 1

    def test_outcome_unwrap(self):
        assert Outcome(value=3).unwrap() == 3
        with pytest.raises(SlotFullError):
            Outcome(error=SlotFullError()).unwrap()


class FlakyStore(InMemoryBookingStore):
    """Raises StoreUnavailableError from the named operations."""

    def __init__(self, fail_on=()):
        super().__init__()
        self.fail_on = set(fail_on)

    def add(self, record):
        if "add" in self.fail_on:
            raise StoreUnavailableError()
        return super().add(record)

    def decrement(self, key):
        if "decrement" in self.fail_on:
            raise StoreUnavailableError()
        return super().decrement(key)


class TestStoreFailure:
    def _engine(self, store, catalog, clock):
        return BookingEngine(store, catalog, clock=clock)

    def test_failed_insert_releases_reservation(self, catalog, clock, member_a):
        store = FlakyStore(fail_on={"add"})
        engine = self._engine(store, catalog, clock)

        outcome = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00")

        assert isinstance(outcome.error, StoreUnavailableError)
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 0
        assert store.list_all() == []

    def test_failed_release_keeps_booking_confirmed(self, catalog, clock, member_a):
        store = FlakyStore()
        engine = self._engine(store, catalog, clock)
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value

        store.fail_on.add("decrement")
        outcome = engine.cancel_booking(member_a, booking.id)

        assert isinstance(outcome.error, StoreUnavailableError)
        assert store.get(booking.id).status == BookingStatus.CONFIRMED
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1

    def test_failed_reschedule_restores_both_slots(self, catalog, clock, member_a):
        store = FlakyStore()
        engine = self._engine(store, catalog, clock)
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value

        store.fail_on.add("decrement")
        outcome = engine.reschedule_booking(member_a, booking.id, AUG_1, "11:00")

        assert isinstance(outcome.error, StoreUnavailableError)
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "10:00") == 1
        assert engine.capacity.current_count(TENNIS.id, AUG_1, "11:00") == 0
        assert store.get(booking.id).time_slot == "10:00"


class InterleavedStore(InMemoryBookingStore):
    """Runs ``interleave`` on another thread right before the next conditional save,
    like a second worker process acting between our read and our write."""

    def __init__(self):
        super().__init__()
        self.interleave = None

    def save(self, record, expected=None):
        if expected is not None and self.interleave is not None:
            step, self.interleave = self.interleave, None
            worker = threading.Thread(target=step)
            worker.start()
            worker.join()
        return super().save(record, expected)


class TestConditionalSave:
    def test_stale_expected_state_is_not_written(self, store, engine, member_a):
        booking = engine.create_booking(member_a, TENNIS.id, AUG_1, "10:00").value
        seen = store.get(booking.id)

        assert store.save(replace(seen, status=BookingStatus.CANCELED), expected=seen) is not None
        assert store.save(replace(seen, time_slot="11:00"), expected=seen) is None
        assert store.get(booking.id).time_slot == "10:00"

    def _setup(self, catalog, clock, member_a, member_b):
        store = InterleavedStore()
        engine = BookingEngine(store, catalog, clock=clock)
        mine = engine.create_booking(member_a, POOL.id, AUG_1, "10:00").value
        engine.create_booking(member_b, POOL.id, AUG_1, "10:00")

        def other_worker_cancels():
            current = store.get(mine.id)
            store.save(replace(current, status=BookingStatus.CANCELED))
            store.decrement(current.key)

        store.interleave = other_worker_cancels
        return engine, mine

    def test_cancel_loses_to_other_worker_without_second_release(self, catalog, clock, member_a, member_b, staff):
        engine, mine = self._setup(catalog, clock, member_a, member_b)

        outcome = engine.cancel_booking(staff, mine.id)

        assert isinstance(outcome.error, AlreadyCanceledError)
        assert engine.capacity.current_count(POOL.id, AUG_1, "10:00") == 1

    def test_reschedule_loses_to_other_worker_and_returns_new_slot(self, catalog, clock, member_a, member_b):
        engine, mine = self._setup(catalog, clock, member_a, member_b)

        outcome = engine.reschedule_booking(member_a, mine.id, AUG_1, "2:00 PM")

        assert isinstance(outcome.error, AlreadyCanceledError)
        assert engine.capacity.current_count(POOL.id, AUG_1, "2:00 PM") == 0
        assert engine.capacity.current_count(POOL.id, AUG_1, "10:00") == 1


def test_capacity_invariant_under_random_operations(engine, store, staff):
    rng = random.Random(1234)
    members = [Actor(id=i, role=Role.MEMBER) for i in range(1, 7)]
    days = [AUG_1 + timedelta(days=n) for n in range(3)]
    activities = [TENNIS, POOL]

    for _ in range(400):
        op = rng.choice(["create", "create", "cancel", "reschedule"])
        activity = rng.choice(activities)
        if op == "create":
            engine.create_booking(
                rng.choice(members), activity.id, rng.choice(days), rng.choice(activity.available_slots)
            )
            continue
        existing = store.list_all()
        if not existing:
            continue
        target = rng.choice(existing)
        actor = rng.choice(members + [staff])
        if op == "cancel":
            engine.cancel_booking(actor, target.id)
        else:
            slots = next(a for a in activities if a.id == target.activity_id).available_slots
            engine.reschedule_booking(actor, target.id, rng.choice(days), rng.choice(slots))

    active = Counter(r.key for r in store.list_all() if r.is_active)
    capacities = {a.id: a.capacity_per_slot for a in activities}
    for key, count in store.counters().items():
        assert count <= capacities[key.activity_id]
        assert count == active.get(key, 0)
    assert set(k for k, v in store.counters().items() if v) == set(active)
