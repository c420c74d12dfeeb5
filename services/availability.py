"""
Availability Query Service.

Read-only answers for calendar and time-picker display. The answers are
advisory: admission is decided by ``SlotCapacityIndex.try_reserve`` when the
booking is actually created.
"""

from services.calendar import facility_clock, parse_date
from services.capacity import SlotCapacityIndex
from services.catalog import ActivityCatalog


class AvailabilityService:
    def __init__(self, capacity: SlotCapacityIndex, catalog: ActivityCatalog, clock=None):
        self._capacity = capacity
        self._catalog = catalog
        self._clock = clock or facility_clock()

    def _today(self):
        return self._clock().date()

    def is_slot_available(self, activity_id, date, time_slot) -> bool:
        activity = self._catalog.get_activity(activity_id)
        if activity is None or not activity.offers(time_slot):
            return False
        day = parse_date(date)
        if day < self._today():
            return False
        return self._capacity.current_count(activity_id, day, time_slot) < activity.capacity_per_slot

    def is_date_bookable(self, activity_id, date) -> bool:
        activity = self._catalog.get_activity(activity_id)
        if activity is None:
            return False
        day = parse_date(date)
        if day < self._today():
            return False
        return any(
            self._capacity.current_count(activity_id, day, slot) < activity.capacity_per_slot
            for slot in activity.available_slots
        )

    def slot_overview(self, activity_id, date) -> list:
        """One row per offered slot; empty when the activity is unknown."""
        activity = self._catalog.get_activity(activity_id)
        if activity is None:
            return []
        day = parse_date(date)
        in_past = day < self._today()
        rows = []
        for slot in activity.available_slots:
            booked = self._capacity.current_count(activity_id, day, slot)
            rows.append({
                "time_slot": slot,
                "booked": booked,
                "capacity": activity.capacity_per_slot,
                "available": not in_past and booked < activity.capacity_per_slot,
            })
        return rows
