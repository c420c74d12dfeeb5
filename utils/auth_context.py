from functools import wraps

from flask import g, jsonify

from models import db
from models.user import User
from security.session import resolve_session
from services.identity import Actor, strongest_role


def load_current_user():
    sess = resolve_session()
    g.session = sess
    g.user = db.session.get(User, sess.user_id) if sess else None
    g.actor = Actor(id=g.user.id, role=strongest_role(g.user.role_names)) if g.user else None


def current_actor() -> Actor:
    return getattr(g, "actor", None)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if current_actor() is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
