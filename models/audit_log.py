from models.db import db, utcnow


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=True)  # nullable for anonymous events
    action = db.Column(db.String(80), nullable=False, index=True)  # e.g. BOOKING_CANCEL
    entity = db.Column(db.String(40), nullable=True)  # booking, activity, user
    entity_id = db.Column(db.String(64), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
