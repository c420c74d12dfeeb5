from models.db import db, utcnow


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.String(32), primary_key=True)

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    activity_id = db.Column(db.Integer, db.ForeignKey("activities.id"), nullable=False)

    date = db.Column(db.Date, nullable=False)
    time_slot = db.Column(db.String(20), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="confirmed")
    # status values: confirmed, canceled, rescheduled

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_bookings_activity_date", "activity_id", "date"),
        db.CheckConstraint(
            "status IN ('confirmed', 'canceled', 'rescheduled')", name="ck_booking_status"
        ),
    )
