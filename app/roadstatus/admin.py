from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.roadstatus.audit import is_auth_event, query_entries, query_recent
from app.roadstatus.auth import user_to_dict
from app.roadstatus.constants import ADMIN_ROLES, AuditTargetType, OrgType, parse_enum
from app.roadstatus.db import db_session
from app.roadstatus.errors import ValidationError
from app.roadstatus.modules.organizations.service import list_organizations, serialize_organization
from app.roadstatus.modules.reports.timeline import audit_entries_to_dicts, entity_history
from app.roadstatus.modules.users.service import get_user, list_users, update_user
from app.roadstatus.rbac import current_user, require_role

bp = Blueprint("admin", __name__)


def _int_arg(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name) from None


@bp.get("/audit")
@require_role(*ADMIN_ROLES)
def audit_list():
    """
    Audit trail query. With targetType + targetId returns that entity's full
    history oldest first; otherwise the most recent entries matching the filters.
    """
    s = db_session()
    target_type = None
    raw_type = (request.args.get("targetType") or "").strip()
    if raw_type:
        target_type = parse_enum(AuditTargetType, raw_type)
        if target_type is None:
            raise ValidationError(f"Unknown target type: {raw_type!r}", field="targetType")
    target_id = (request.args.get("targetId") or "").strip()

    if target_type is not None and target_id:
        entries = query_entries(s, target_type, target_id, newest_first=False)
    else:
        limit = min(max(_int_arg("limit") or 100, 1), 500)
        entries = query_recent(
            s,
            target_type=target_type,
            performed_by=_int_arg("performedBy"),
            field_name=(request.args.get("fieldName") or "").strip() or None,
            limit=limit,
        )
    return jsonify({"entries": audit_entries_to_dicts(s, entries)})


@bp.get("/users")
@require_role(*ADMIN_ROLES)
def users_list():
    s = db_session()
    users = list_users(
        s,
        role=(request.args.get("role") or "").strip() or None,
        organization_id=_int_arg("organizationId"),
    )
    return jsonify({"users": [user_to_dict(u) for u in users]})


@bp.patch("/users/<int:user_id>")
@require_role(*ADMIN_ROLES)
def users_update(user_id: int):
    s = db_session()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", field="reason")
    payload = {k: v for k, v in data.items() if k != "reason"}
    user = update_user(s, user_id, payload, current_user(), reason=(reason or "").strip() or None)
    return jsonify({"user": user_to_dict(user)})


@bp.get("/organizations")
@require_role(*ADMIN_ROLES)
def organizations_list():
    s = db_session()
    org_type = None
    raw_type = (request.args.get("orgType") or "").strip()
    if raw_type:
        org_type = parse_enum(OrgType, raw_type)
        if org_type is None:
            raise ValidationError(f"Unknown organization type: {raw_type!r}", field="orgType")
    orgs = list_organizations(s, org_type=org_type)
    return jsonify({"organizations": [serialize_organization(s, o) for o in orgs]})


@bp.get("/users/<int:user_id>/history")
@require_role(*ADMIN_ROLES)
def users_history(user_id: int):
    """Role/active-flag changes and organization membership changes, newest first. Login events are left out."""
    s = db_session()
    user = get_user(s, user_id)
    items = entity_history(s, AuditTargetType.USER, user.id) + entity_history(
        s, AuditTargetType.USER_ORGANIZATION, user.id
    )
    items = [i for i in items if not is_auth_event(i.field_name)]
    items.sort(key=lambda i: (i.created_at, i.entry_id or 0), reverse=True)
    return jsonify({"userId": user.id, "history": [i.to_dict() for i in items]})
