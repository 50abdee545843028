from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.roadstatus.audit import record_auth_event
from app.roadstatus.db import atomic, db_session
from app.roadstatus.models import User
from app.roadstatus.security import ensure_csrf_token
from app.roadstatus.utils import utcnow

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    cutoff = utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    # Drop every IP whose attempts have all aged out, not just this one
    for key in list(_login_attempts):
        recent = [t for t in _login_attempts[key] if t > cutoff]
        if recent:
            _login_attempts[key] = recent
        else:
            del _login_attempts[key]
    return len(_login_attempts.get(ip, ())) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(utcnow())


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "isActive": user.is_active,
        "organizationId": user.organization_id,
    }


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id, copied onto audit entries.
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    user = db_session().get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        current_app.logger.warning("Login rate limit hit ip=%s", ip)
        return jsonify({"error": "rate_limited", "message": "Too many login attempts. Please wait 5 minutes."}), 429

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        with atomic(s):
            record_auth_event(
                s,
                action="login_failed",
                target_id=user.id if user else email,
                actor=None,
                metadata={"email": email, "ip": ip},
            )
        current_app.logger.info("Login failed email=%s request_id=%s", email, g.request_id)
        return jsonify({"error": "invalid_credentials", "message": "Invalid credentials."}), 401

    session.clear()
    session["user_id"] = user.id
    _login_attempts.pop(ip, None)
    with atomic(s):
        record_auth_event(s, action="login", target_id=user.id, actor=user, metadata={"ip": ip})
    current_app.logger.info("Login user=%s role=%s", user.id, user.role)
    return jsonify({"user": user_to_dict(user), "csrfToken": ensure_csrf_token()})


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        with atomic(s):
            record_auth_event(s, action="logout", target_id=user.id, actor=user)
        current_app.logger.info("Logout user=%s", user.id)
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
def me():
    user = getattr(g, "current_user", None)
    if not user:
        return jsonify({"error": "unauthenticated", "message": "Login required"}), 401
    return jsonify({"user": user_to_dict(user)})


@bp.get("/csrf")
def csrf():
    return jsonify({"csrfToken": ensure_csrf_token()})
