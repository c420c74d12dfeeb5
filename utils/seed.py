from models import db
from models.activity import Activity
from models.user import Role

DEFAULT_ROLES = ["MEMBER", "STAFF", "ADMIN"]

HOURLY = ["%02d:00" % h for h in range(8, 21)]

DEMO_ACTIVITIES = [
    {"name": "Tennis Court", "capacity_per_slot": 1, "available_slots": HOURLY},
    {"name": "Swimming Pool", "capacity_per_slot": 20, "available_slots": HOURLY},
    {"name": "Yoga Class", "capacity_per_slot": 12, "available_slots": ["07:00", "09:00", "18:00"]},
]


def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()


def seed_activities() -> int:
    """Insert the demo catalog when no activity exists yet; returns rows added."""
    if Activity.query.first() is not None:
        return 0
    for fields in DEMO_ACTIVITIES:
        db.session.add(Activity(**fields))
    db.session.commit()
    return len(DEMO_ACTIVITIES)
