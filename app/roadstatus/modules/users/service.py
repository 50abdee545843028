from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Session

from app.roadstatus.audit import append_entries, records_for_changes
from app.roadstatus.constants import ADMIN_ROLES, AuditTargetType, Role, parse_enum
from app.roadstatus.db import atomic
from app.roadstatus.errors import NotFound, PermissionDenied, ValidationError
from app.roadstatus.models import User
from app.roadstatus.modules.organizations.service import get_organization
from app.roadstatus.modules.reports.diff import KIND_BOOL, diff

logger = logging.getLogger(__name__)

# Payload key -> User attribute
USER_FIELDS = {
    "role": "role",
    "isActive": "is_active",
    "organizationId": "organization_id",
}

# Membership changes get their own audit target type
_MEMBERSHIP_FIELDS = {"organizationId"}


def get_user(s: Session, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFound("User", user_id)
    return user


def list_users(s: Session, *, role: str | None = None, organization_id: int | None = None) -> list[User]:
    q = s.query(User)
    if role:
        r = parse_enum(Role, role)
        if r is None:
            raise ValidationError(f"Unknown role: {role!r}", field="role")
        q = q.filter(User.role == r.value)
    if organization_id is not None:
        q = q.filter(User.organization_id == organization_id)
    return q.order_by(User.email.asc()).all()


def _clean_user_update(s: Session, payload: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if "role" in payload:
        r = parse_enum(Role, payload["role"])
        if r is None:
            raise ValidationError(f"Unknown role: {payload['role']!r}", field="role")
        out["role"] = r.value
    if "isActive" in payload:
        if not isinstance(payload["isActive"], bool):
            raise ValidationError("isActive must be true or false", field="isActive")
        out["isActive"] = payload["isActive"]
    if "organizationId" in payload:
        org_id = payload["organizationId"]
        if org_id is not None:
            if isinstance(org_id, bool) or not isinstance(org_id, int):
                raise ValidationError("organizationId must be an integer or null", field="organizationId")
            get_organization(s, org_id)
        out["organizationId"] = org_id
    return out


def update_user(
    s: Session,
    user_id: int,
    payload: Mapping[str, Any],
    actor: User,
    *,
    reason: str | None = None,
) -> User:
    """
    Change a user's role, active flag or organization.

    Only super admins grant the super_admin role or edit another super admin.
    Nobody changes their own role or deactivates themselves.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Update body must be a JSON object")
    if actor.role_enum not in ADMIN_ROLES:
        raise PermissionDenied(f"Role '{actor.role}' cannot manage users", role=actor.role)

    user = get_user(s, user_id)
    cleaned = _clean_user_update(s, payload)

    if actor.role_enum != Role.SUPER_ADMIN:
        if user.role_enum == Role.SUPER_ADMIN or cleaned.get("role") == Role.SUPER_ADMIN.value:
            raise PermissionDenied("Only a super admin can manage super admins", role=actor.role)
    if user.id == actor.id:
        if "role" in cleaned and cleaned["role"] != user.role:
            raise PermissionDenied("You cannot change your own role")
        if cleaned.get("isActive") is False:
            raise PermissionDenied("You cannot deactivate yourself")

    before = {key: getattr(user, attr) for key, attr in USER_FIELDS.items()}
    changes = diff(before, cleaned, {"isActive": KIND_BOOL})
    if not changes:
        return user

    for key, value in cleaned.items():
        setattr(user, USER_FIELDS[key], value)

    metadata = {"email": user.email}
    records = records_for_changes(
        [c for c in changes if c.field not in _MEMBERSHIP_FIELDS],
        target_type=AuditTargetType.USER,
        target_id=user.id,
        actor=actor,
        reason=reason,
        metadata=metadata,
    ) + records_for_changes(
        [c for c in changes if c.field in _MEMBERSHIP_FIELDS],
        target_type=AuditTargetType.USER_ORGANIZATION,
        target_id=user.id,
        actor=actor,
        reason=reason,
        metadata=metadata,
    )
    with atomic(s):
        s.flush()
        append_entries(s, records)

    logger.info("User %s updated by user=%s: %s", user.id, actor.id, ", ".join(c.field for c in changes))
    return user
