from models.db import db


class SlotCounter(db.Model):
    """Active bookings held against one (activity, date, time slot)."""

    __tablename__ = "slot_counters"

    id = db.Column(db.Integer, primary_key=True)
    activity_id = db.Column(db.Integer, db.ForeignKey("activities.id"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.String(20), nullable=False)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        # one counter row per triple; conditional UPDATEs rely on it
        db.UniqueConstraint("activity_id", "date", "time_slot", name="uq_slot_counter_triple"),
        db.CheckConstraint("reserved >= 0", name="ck_slot_counter_non_negative"),
    )
