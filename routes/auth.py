from flask import Blueprint, current_app, g, jsonify, request

from models import db
from models.user import Role, User
from security.csrf import issue_csrf_token
from security.session import close_session, open_session
from utils.audit import log_event
from utils.auth_context import current_actor, login_required

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

MIN_PASSWORD_LENGTH = 8


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _cookie_name():
    return current_app.config.get("AUTH_COOKIE_NAME", "facility_session")


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip() or None

    if not _is_valid_email(email):
        return jsonify(error="Invalid email"), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify(error=f"Password must be at least {MIN_PASSWORD_LENGTH} characters"), 400

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", metadata={"email": email})
        return jsonify(error="Email already registered"), 409

    user = User(email=email, full_name=full_name)
    user.set_password(password)

    # every self-registered account is a member; staff/admin come from the CLI
    member_role = Role.query.filter_by(name="MEMBER").first()
    if member_role:
        user.roles.append(member_role)

    db.session.add(user)
    db.session.commit()
    log_event("REGISTER_SUCCESS", actor_id=user.id, entity="user", entity_id=user.id)

    return jsonify(message="Registered successfully", id=user.id), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        log_event("LOGIN_FAIL", actor_id=user.id if user else None, metadata={"email": email})
        return jsonify(error="Invalid credentials"), 401

    raw_token = open_session(user.id)

    resp = jsonify(message="Login OK")
    resp.set_cookie(
        _cookie_name(),
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    resp = issue_csrf_token(resp)

    log_event("LOGIN_SUCCESS", actor_id=user.id)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    actor = current_actor()
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        roles=g.user.role_names,
        role=actor.role.value,
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    close_session(request.cookies.get(_cookie_name()))
    log_event("LOGOUT", actor_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(_cookie_name(), path="/")
    return resp, 200
