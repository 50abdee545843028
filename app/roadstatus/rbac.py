from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify

from app.roadstatus.constants import Role
from app.roadstatus.models import User


def user_has_role(user: User | None, *roles: Role) -> bool:
    if not user or not user.is_active:
        return False
    return user.role_enum in roles


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        # require_role should prevent this
        raise RuntimeError("No current user")
    return u


def require_role(*roles: Role) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return jsonify({"error": "unauthenticated", "message": "Login required"}), 401
            if not user_has_role(user, *roles):
                current_app.logger.warning(
                    "Forbidden: user=%s role=%s required=%s request_id=%s",
                    user.id,
                    user.role,
                    ",".join(r.value for r in roles),
                    getattr(g, "request_id", None),
                )
                return jsonify({"error": "forbidden", "message": "Insufficient role"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
