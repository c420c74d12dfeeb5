from .errors import (
    BookingError,
    InvalidDateError,
    InvalidSlotError,
    SlotFullError,
    NotFoundError,
    ForbiddenError,
    AlreadyCanceledError,
    PastBookingError,
    StoreUnavailableError,
)
from .identity import Actor, Role
from .store import BookingRecord, BookingStatus, BookingStore, InMemoryBookingStore, SlotKey
from .catalog import ActivityCatalog, ActivityInfo, InMemoryActivityCatalog
from .capacity import SlotCapacityIndex
from .availability import AvailabilityService
from .lifecycle import BookingEngine, Outcome
