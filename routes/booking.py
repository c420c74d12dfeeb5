from flask import Blueprint, current_app, jsonify, request

from models.user import User
from services.errors import SlotFullError
from services.store import BookingStatus
from utils.audit import log_event
from utils.auth_context import current_actor, login_required
from utils.engine import booking_engine
from utils.serializers import booking_to_dict

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")

STATUS_VALUES = {s.value for s in BookingStatus}


def _refusal(error):
    return jsonify(error.to_dict()), error.http_status


def _status_arg():
    status = request.args.get("status")
    if status and status not in STATUS_VALUES:
        return None, (jsonify(error=f"status must be one of {sorted(STATUS_VALUES)}"), 400)
    return status or None, None


def _text(data, field):
    value = data.get(field)
    return value.strip() if isinstance(value, str) else ""


def _notes(data):
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        return None, False
    return (notes.strip() or None) if notes else None, True


# ---------- MEMBERS: book a slot ----------
@booking_bp.post("")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    activity_id = data.get("activity_id")
    date_str = _text(data, "date")
    time_slot = _text(data, "time_slot")
    notes, ok = _notes(data)

    if not activity_id or not date_str or not time_slot:
        return jsonify(error="activity_id, date, time_slot are required"), 400
    if not ok:
        return jsonify(error="notes must be a string"), 400

    actor = current_actor()
    outcome = booking_engine().create_booking(actor, activity_id, date_str, time_slot, notes)
    if not outcome.ok:
        if isinstance(outcome.error, SlotFullError):
            log_event(
                "BOOKING_FAIL_SLOT_FULL", actor_id=actor.id, entity="activity", entity_id=activity_id,
                metadata={"date": date_str, "time_slot": time_slot},
            )
        return _refusal(outcome.error)

    booking = outcome.value
    log_event(
        "BOOKING_CREATE", actor_id=actor.id, entity="booking", entity_id=booking.id,
        metadata={"activity_id": booking.activity_id, "date": booking.date, "time_slot": booking.time_slot},
    )
    return jsonify(booking_to_dict(booking)), 201


# ---------- ANY ACTOR: own bookings ----------
@booking_bp.get("/me")
@login_required
def my_bookings():
    status, failure = _status_arg()
    if failure:
        return failure

    rows = booking_engine().list_my_bookings(current_actor())
    if status:
        rows = [b for b in rows if b.status.value == status]
    return jsonify([booking_to_dict(b) for b in rows]), 200


# ---------- STAFF/ADMIN: every booking ----------
@booking_bp.get("")
@login_required
def list_all_bookings():
    status, failure = _status_arg()
    if failure:
        return failure

    outcome = booking_engine().list_all_bookings(current_actor(), status)
    if not outcome.ok:
        return _refusal(outcome.error)

    limit = current_app.config.get("BOOKING_LIST_LIMIT", 500)
    page = outcome.value[:limit]
    owner_ids = {b.owner_id for b in page}
    owners = {u.id: u for u in User.query.filter(User.id.in_(owner_ids)).all()} if owner_ids else {}
    return jsonify([booking_to_dict(b, owners.get(b.owner_id)) for b in page]), 200


@booking_bp.get("/<booking_id>")
@login_required
def get_booking(booking_id: str):
    outcome = booking_engine().get_booking(current_actor(), booking_id)
    if not outcome.ok:
        return _refusal(outcome.error)
    return jsonify(booking_to_dict(outcome.value)), 200


# ---------- OWNER or STAFF/ADMIN: transitions ----------
@booking_bp.post("/<booking_id>/cancel")
@login_required
def cancel_booking(booking_id: str):
    actor = current_actor()
    outcome = booking_engine().cancel_booking(actor, booking_id)
    if not outcome.ok:
        return _refusal(outcome.error)

    booking = outcome.value
    action = "BOOKING_CANCEL" if booking.owner_id == actor.id else "STAFF_BOOKING_CANCEL"
    log_event(action, actor_id=actor.id, entity="booking", entity_id=booking.id)
    return jsonify(booking_to_dict(booking)), 200


@booking_bp.post("/<booking_id>/reschedule")
@login_required
def reschedule_booking(booking_id: str):
    data = request.get_json(silent=True) or {}
    new_date = _text(data, "date")
    new_time_slot = _text(data, "time_slot")
    if not new_date or not new_time_slot:
        return jsonify(error="date and time_slot are required"), 400

    actor = current_actor()
    outcome = booking_engine().reschedule_booking(actor, booking_id, new_date, new_time_slot)
    if not outcome.ok:
        return _refusal(outcome.error)

    booking = outcome.value
    log_event(
        "BOOKING_RESCHEDULE", actor_id=actor.id, entity="booking", entity_id=booking.id,
        metadata={"date": booking.date, "time_slot": booking.time_slot},
    )
    return jsonify(booking_to_dict(booking)), 200


@booking_bp.patch("/<booking_id>/notes")
@login_required
def update_notes(booking_id: str):
    data = request.get_json(silent=True) or {}
    notes, ok = _notes(data)
    if not ok:
        return jsonify(error="notes must be a string"), 400

    actor = current_actor()
    outcome = booking_engine().update_notes(actor, booking_id, notes)
    if not outcome.ok:
        return _refusal(outcome.error)

    log_event("BOOKING_NOTES_UPDATE", actor_id=actor.id, entity="booking", entity_id=booking_id)
    return jsonify(booking_to_dict(outcome.value)), 200
