import hashlib
import secrets
from datetime import timedelta

from flask import current_app, request

from models import db
from models.db import utcnow
from models.session import Session


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _client_ip():
    return request.headers.get("X-Forwarded-For", request.remote_addr)


def open_session(user_id: int) -> str:
    """
    Persist a new session for ``user_id`` and return the raw cookie token.
    Only the token's hash reaches the database.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)

    db.session.add(Session(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=utcnow() + timedelta(seconds=lifetime),
        ip=_client_ip(),
    ))
    db.session.commit()
    return raw_token


def resolve_session():
    """Return the live Session for the request cookie, touching it, or None."""
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "facility_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    sess = Session.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if sess is None:
        return None

    now = utcnow()
    idle = timedelta(seconds=current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200))
    if sess.expires_at <= now or sess.last_seen_at + idle <= now:
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess


def close_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = Session.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if sess is None:
        return False
    sess.revoked = True
    db.session.commit()
    return True
