from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from models import db
from models.activity import Activity
from security.rbac import require_roles
from services.calendar import parse_date
from services.identity import Role
from utils.audit import log_event
from utils.auth_context import current_actor, login_required
from utils.engine import availability_service, booking_engine
from utils.serializers import activity_to_dict, booking_to_dict

activity_bp = Blueprint("activity", __name__, url_prefix="/activities")


def _parse_slots(raw):
    if not isinstance(raw, list) or not raw:
        return None
    slots = []
    for label in raw:
        if not isinstance(label, str) or not label.strip() or len(label.strip()) > 20:
            return None
        if label.strip() not in slots:
            slots.append(label.strip())
    return slots


def _date_arg():
    """Parse ?date=YYYY-MM-DD; returns (date, error_response)."""
    date_str = request.args.get("date")
    if not date_str:
        return None, (jsonify(error="date query parameter required (YYYY-MM-DD)"), 400)
    try:
        return parse_date(date_str), None
    except ValueError:
        return None, (jsonify(error="Invalid date. Use YYYY-MM-DD"), 400)


# ---------- STAFF/ADMIN: manage the catalog ----------
@activity_bp.post("")
@require_roles(Role.STAFF, Role.ADMIN)
def create_activity():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    description = (data.get("description") or "").strip() or None
    slots = _parse_slots(data.get("available_slots"))
    try:
        capacity = int(data.get("capacity_per_slot") or 0)
    except (TypeError, ValueError):
        capacity = 0

    if not name:
        return jsonify(error="Activity name required"), 400
    if capacity < 1:
        return jsonify(error="capacity_per_slot must be a positive integer"), 400
    if slots is None:
        return jsonify(error="available_slots must be a non-empty list of slot labels"), 400

    activity = Activity(name=name, description=description, capacity_per_slot=capacity, available_slots=slots)
    db.session.add(activity)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Activity name already exists"), 409

    log_event("ACTIVITY_CREATE", actor_id=current_actor().id, entity="activity", entity_id=activity.id)
    return jsonify(activity_to_dict(activity)), 201


@activity_bp.post("/<int:activity_id>/deactivate")
@require_roles(Role.STAFF, Role.ADMIN)
def deactivate_activity(activity_id: int):
    activity = db.session.get(Activity, activity_id)
    if not activity:
        return jsonify(error="Activity not found"), 404

    activity.is_active = False
    db.session.commit()

    log_event("ACTIVITY_DEACTIVATE", actor_id=current_actor().id, entity="activity", entity_id=activity_id)
    return jsonify(message="Activity deactivated"), 200


@activity_bp.get("/<int:activity_id>/bookings")
@require_roles(Role.STAFF, Role.ADMIN)
def activity_bookings(activity_id: int):
    day = None
    if request.args.get("date"):
        day, failure = _date_arg()
        if failure:
            return failure
    rows = booking_engine().list_activity_bookings(activity_id, day)
    return jsonify([booking_to_dict(b) for b in rows]), 200


# ---------- MEMBERS: browse ----------
@activity_bp.get("")
@login_required
def list_activities():
    rows = Activity.query.filter_by(is_active=True).order_by(Activity.name.asc()).all()
    return jsonify([activity_to_dict(a) for a in rows]), 200


@activity_bp.get("/<int:activity_id>/availability")
@login_required
def availability(activity_id: int):
    day, failure = _date_arg()
    if failure:
        return failure

    service = availability_service()
    slots = service.slot_overview(activity_id, day)
    if not slots:
        return jsonify(error="Activity not found"), 404

    time_slot = request.args.get("time_slot")
    if time_slot:
        return jsonify(
            activity_id=activity_id,
            date=day.isoformat(),
            time_slot=time_slot,
            available=service.is_slot_available(activity_id, day, time_slot),
        ), 200

    return jsonify(
        activity_id=activity_id,
        date=day.isoformat(),
        bookable=service.is_date_bookable(activity_id, day),
        slots=slots,
    ), 200
