from functools import wraps

from flask import jsonify

from services.identity import Role
from utils.auth_context import current_actor


def has_role(*roles: Role) -> bool:
    actor = current_actor()
    return actor is not None and actor.role in roles


def require_roles(*roles: Role):
    """
    Usage: @require_roles(Role.STAFF, Role.ADMIN)
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if current_actor() is None:
                return jsonify(error="Authentication required"), 401
            if not has_role(*roles):
                return jsonify(error="Forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
