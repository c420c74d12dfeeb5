from datetime import date, datetime, time
from zoneinfo import ZoneInfo

# "10:00", "2:00 PM", "9 AM"
_SLOT_FORMATS = ("%H:%M", "%I:%M %p", "%I:%M%p", "%I %p", "%I%p")


def parse_slot_time(label: str):
    """Return the start time encoded in a slot label, or None."""
    text = (label or "").strip().upper()
    for fmt in _SLOT_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def slot_start(day: date, label: str) -> datetime:
    # unparseable labels start at midnight of their day
    return datetime.combine(day, parse_slot_time(label) or time.min)


def parse_date(value) -> date:
    """Accept a date, a datetime, an ISO "YYYY-MM-DD" string or a full ISO
    timestamp; anything else raises ValueError."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if "T" in text:
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


def facility_clock(tz_name: str = "UTC"):
    """Clock returning naive wall time in the facility's timezone."""
    zone = ZoneInfo(tz_name)

    def now() -> datetime:
        return datetime.now(zone).replace(tzinfo=None)

    return now
