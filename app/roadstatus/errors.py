"""
Typed errors raised by the report workflow core.

Each carries a stable ``code`` and the HTTP status the JSON error handler uses.
"""
from __future__ import annotations

from typing import Any


class RoadStatusError(Exception):
    code = "error"
    http_status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(RoadStatusError):
    """Malformed payload (unknown enum value, unparsable workflow JSON, ...)."""

    code = "validation_error"
    http_status = 400


class NotFound(RoadStatusError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, id=str(entity_id))


class PermissionDenied(RoadStatusError):
    code = "permission_denied"
    http_status = 403


class TransitionNotAllowed(RoadStatusError):
    code = "transition_not_allowed"
    http_status = 409

    def __init__(self, role: str, current: str, requested: str):
        super().__init__(
            f"Role '{role}' cannot move a report from '{current}' to '{requested}'",
            role=role,
            current_status=current,
            requested_status=requested,
        )
        self.role = role
        self.current_status = current
        self.requested_status = requested


class ConcurrentUpdate(RoadStatusError):
    code = "concurrent_update"
    http_status = 409


class AuditWriteFailure(RoadStatusError):
    """Audit entries could not be persisted; the entity mutation was rolled back."""

    code = "audit_write_failure"
    http_status = 500


class AuditImmutable(RoadStatusError):
    """Raised when anything tries to UPDATE or DELETE a written audit entry."""

    code = "audit_immutable"
    http_status = 500
