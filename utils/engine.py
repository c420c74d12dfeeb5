from flask import current_app

from services.availability import AvailabilityService
from services.calendar import facility_clock
from services.capacity import SlotCapacityIndex
from services.lifecycle import BookingEngine
from services.sql_store import SqlActivityCatalog, SqlBookingStore


def init_booking_core(app, clock=None):
    """Build one engine per app; its slot locks must be shared by every request."""
    clock = clock or facility_clock(app.config.get("FACILITY_TIMEZONE", "UTC"))
    store = SqlBookingStore()
    catalog = SqlActivityCatalog()
    capacity = SlotCapacityIndex(store)
    app.extensions["booking_engine"] = BookingEngine(store, catalog, capacity=capacity, clock=clock)
    app.extensions["availability"] = AvailabilityService(capacity, catalog, clock=clock)


def booking_engine() -> BookingEngine:
    return current_app.extensions["booking_engine"]


def availability_service() -> AvailabilityService:
    return current_app.extensions["availability"]
