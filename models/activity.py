from models.db import db, utcnow


class Activity(db.Model):
    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    capacity_per_slot = db.Column(db.Integer, nullable=False, default=1)
    # ordered list of daily slot labels, e.g. ["09:00", "10:00"]
    available_slots = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("capacity_per_slot > 0", name="ck_activity_capacity_positive"),
    )
