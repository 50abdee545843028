"""
Read-only history views built from the audit log.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.roadstatus.audit import entry_metadata, query_entries
from app.roadstatus.constants import AuditTargetType
from app.roadstatus.models import AuditEntry, User
from app.roadstatus.modules.reports.models import DamageReport
from app.roadstatus.modules.reports.service import get_report
from app.roadstatus.utils import isoformat

SYSTEM_ACTOR = "System"
UNKNOWN_ACTOR = "Unknown user"
ANONYMOUS_ACTOR = "Anonymous"


@dataclass(frozen=True)
class TimelineItem:
    kind: str  # "change" or "created"
    created_at: datetime
    actor_id: int | None
    actor_name: str
    actor_role: str | None
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    reason: str | None = None
    entry_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "createdAt": isoformat(self.created_at),
            "actorId": self.actor_id,
            "actorName": self.actor_name,
            "actorRole": self.actor_role,
            "fieldName": self.field_name,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "reason": self.reason,
            "entryId": self.entry_id,
        }


def _actor_names(s: Session, entries: list[AuditEntry]) -> dict[int, str]:
    ids = {e.performed_by for e in entries if e.performed_by is not None}
    if not ids:
        return {}
    return {u.id: u.display_name for u in s.query(User).filter(User.id.in_(ids)).all()}


def _resolve_actor(performed_by: int | None, names: dict[int, str]) -> str:
    if performed_by is None:
        return SYSTEM_ACTOR
    # The user may have been removed since; audit rows keep only the id
    return names.get(performed_by, UNKNOWN_ACTOR)


def _change_items(s: Session, entries: list[AuditEntry]) -> list[TimelineItem]:
    names = _actor_names(s, entries)
    return [
        TimelineItem(
            kind="change",
            created_at=e.created_at,
            actor_id=e.performed_by,
            actor_name=_resolve_actor(e.performed_by, names),
            actor_role=e.performer_role,
            field_name=e.field_name,
            old_value=e.old_value,
            new_value=e.new_value,
            reason=e.reason,
            entry_id=e.id,
        )
        for e in entries
    ]


def _creation_item(s: Session, report: DamageReport) -> TimelineItem:
    name = ANONYMOUS_ACTOR
    role = None
    if report.submitter_id is not None:
        submitter = s.get(User, report.submitter_id)
        if submitter is not None:
            name = submitter.display_name
            role = submitter.role
        else:
            name = UNKNOWN_ACTOR
    elif report.anonymous_name:
        name = report.anonymous_name
    return TimelineItem(
        kind="created",
        created_at=report.created_at,
        actor_id=report.submitter_id,
        actor_name=name,
        actor_role=role,
    )


def report_timeline(s: Session, report_id: int) -> list[TimelineItem]:
    """
    Audit entries newest first, then the synthesized creation event. The
    creation event is always last regardless of timestamps.
    """
    report = get_report(s, report_id)
    entries = query_entries(s, AuditTargetType.REPORT, report.id, newest_first=True)
    return _change_items(s, entries) + [_creation_item(s, report)]


def entity_history(s: Session, target_type: AuditTargetType, target_id: object) -> list[TimelineItem]:
    """Audit history for any audited target (users, invitations, memberships)."""
    entries = query_entries(s, target_type, target_id, newest_first=True)
    return _change_items(s, entries)


def audit_entry_to_dict(entry: AuditEntry, names: dict[int, str] | None = None) -> dict[str, Any]:
    names = names or {}
    return {
        "id": entry.id,
        "targetType": entry.target_type,
        "targetId": entry.target_id,
        "fieldName": entry.field_name,
        "oldValue": entry.old_value,
        "newValue": entry.new_value,
        "performedBy": entry.performed_by,
        "performerName": _resolve_actor(entry.performed_by, names),
        "performerRole": entry.performer_role,
        "reason": entry.reason,
        "metadata": entry_metadata(entry),
        "createdAt": isoformat(entry.created_at),
    }


def audit_entries_to_dicts(s: Session, entries: list[AuditEntry]) -> list[dict[str, Any]]:
    names = _actor_names(s, entries)
    return [audit_entry_to_dict(e, names) for e in entries]
