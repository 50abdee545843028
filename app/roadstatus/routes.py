from flask import Blueprint
from sqlalchemy import text

from app.roadstatus.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check with a database round trip. Returns JSON."""
    db_session().execute(text("SELECT 1"))
    return {"ok": True, "db": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness probe. No DB access, minimal overhead.
    """
    return "ok", 200
