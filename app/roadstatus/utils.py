from __future__ import annotations

import json
import secrets
import string
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def generate_report_number(now: datetime | None = None) -> str:
    """CR-YYYYMMDD-XXXXXX with a random base-36 suffix."""
    now = now or utcnow()
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"CR-{now:%Y%m%d}-{suffix}"


def parse_json_object(raw: object, *, label: str) -> tuple[dict | None, str | None]:
    """Accept a dict or a JSON string holding an object."""
    if raw is None:
        return None, None
    if isinstance(raw, dict):
        return raw, None
    if isinstance(raw, str):
        if not raw.strip():
            return {}, None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            return None, f"{label} JSON is invalid: {e}"
        if not isinstance(value, dict):
            return None, f"{label} must be a JSON object."
        return value, None
    return None, f"{label} must be a JSON object."
