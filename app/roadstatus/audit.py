"""
Append-only field-change audit log.

Entries are addressed generically by (target_type, target_id) so reports,
users, invitations and org memberships share one trail. There is no update or
delete API, and ORM listeners reject any UPDATE/DELETE that reaches a flush or
a bulk statement.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from flask import g, has_app_context
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.roadstatus.constants import AuditTargetType
from app.roadstatus.errors import AuditImmutable, AuditWriteFailure
from app.roadstatus.models import AuditEntry, User
from app.roadstatus.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: str | None
    new_value: str | None


@dataclass(frozen=True)
class AuditRecord:
    """An audit entry that has not been written yet."""

    target_type: AuditTargetType
    target_id: str
    field_name: str
    old_value: str | None
    new_value: str | None
    performed_by: int | None
    performer_role: str | None
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def records_for_changes(
    changes: Iterable[FieldChange],
    *,
    target_type: AuditTargetType,
    target_id: object,
    actor: User | None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> list[AuditRecord]:
    return [
        AuditRecord(
            target_type=target_type,
            target_id=str(target_id),
            field_name=c.field,
            old_value=c.old_value,
            new_value=c.new_value,
            performed_by=actor.id if actor else None,
            performer_role=actor.role if actor else None,
            reason=reason,
            metadata=dict(metadata or {}),
        )
        for c in changes
    ]


def append_entries(s: Session, records: Sequence[AuditRecord]) -> list[AuditEntry]:
    """
    Write all records with one shared timestamp and flush them together.

    Runs inside the caller's transaction: the caller's commit makes them
    durable, a rollback discards them together with the entity change.
    """
    if not records:
        return []

    now = utcnow()
    rid = getattr(g, "request_id", None) if has_app_context() else None
    rows = [
        AuditEntry(
            target_type=AuditTargetType(r.target_type).value,
            target_id=r.target_id,
            field_name=r.field_name,
            old_value=r.old_value,
            new_value=r.new_value,
            performed_by=r.performed_by,
            performer_role=r.performer_role,
            reason=r.reason,
            metadata_json=json.dumps(r.metadata, sort_keys=True, default=str) if r.metadata else None,
            request_id=rid,
            created_at=now,
        )
        for r in records
    ]
    try:
        s.add_all(rows)
        s.flush()
    except SQLAlchemyError as e:
        logger.error("Audit append failed (%d entries): %s", len(rows), e)
        raise AuditWriteFailure("Could not write audit entries", count=len(rows)) from e

    logger.info(
        "Audit append: %d entries target=%s:%s fields=%s",
        len(rows),
        rows[0].target_type,
        rows[0].target_id,
        ",".join(r.field_name for r in rows),
    )
    return rows


AUTH_EVENT_PREFIX = "auth."


def record_auth_event(
    s: Session,
    *,
    action: str,
    target_id: object,
    actor: User | None,
    metadata: dict[str, Any] | None = None,
) -> AuditEntry:
    """
    Login/logout trail on the user target. The field name carries the action
    (auth.login, auth.logout, auth.login_failed); there is no old/new value.
    """
    record = AuditRecord(
        target_type=AuditTargetType.USER,
        target_id=str(target_id),
        field_name=f"{AUTH_EVENT_PREFIX}{action}",
        old_value=None,
        new_value=None,
        performed_by=actor.id if actor else None,
        performer_role=actor.role if actor else None,
        metadata=dict(metadata or {}),
    )
    (row,) = append_entries(s, [record])
    return row


def is_auth_event(entry_field: str | None) -> bool:
    return bool(entry_field) and entry_field.startswith(AUTH_EVENT_PREFIX)


def query_entries(
    s: Session,
    target_type: AuditTargetType,
    target_id: object,
    *,
    newest_first: bool = True,
) -> list[AuditEntry]:
    q = s.query(AuditEntry).filter(
        AuditEntry.target_type == AuditTargetType(target_type).value,
        AuditEntry.target_id == str(target_id),
    )
    if newest_first:
        q = q.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
    else:
        q = q.order_by(AuditEntry.created_at.asc(), AuditEntry.id.asc())
    return q.all()


def query_recent(
    s: Session,
    *,
    target_type: AuditTargetType | None = None,
    performed_by: int | None = None,
    field_name: str | None = None,
    limit: int = 100,
) -> list[AuditEntry]:
    q = s.query(AuditEntry)
    if target_type is not None:
        q = q.filter(AuditEntry.target_type == AuditTargetType(target_type).value)
    if performed_by is not None:
        q = q.filter(AuditEntry.performed_by == performed_by)
    if field_name:
        q = q.filter(AuditEntry.field_name == field_name)
    return q.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).limit(limit).all()


def entry_metadata(entry: AuditEntry) -> dict[str, Any]:
    if not entry.metadata_json:
        return {}
    try:
        value = json.loads(entry.metadata_json)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


# ---------------------------------------------------------------------------
# Immutability
# ---------------------------------------------------------------------------


def _reject_update(mapper, connection, target: AuditEntry) -> None:
    logger.error("Blocked UPDATE of audit entry id=%s", target.id)
    raise AuditImmutable("Audit entries are immutable and cannot be modified", id=target.id)


def _reject_delete(mapper, connection, target: AuditEntry) -> None:
    logger.error("Blocked DELETE of audit entry id=%s", target.id)
    raise AuditImmutable("Audit entries cannot be deleted", id=target.id)


def _reject_bulk_statements(orm_execute_state) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mappers = list(orm_execute_state.all_mappers)
    if orm_execute_state.bind_mapper is not None:
        mappers.append(orm_execute_state.bind_mapper)
    if any(m.class_ is AuditEntry for m in mappers):
        op = "UPDATE" if orm_execute_state.is_update else "DELETE"
        logger.error("Blocked bulk %s on audit_entries", op)
        raise AuditImmutable(f"Bulk {op} of audit entries is not allowed")


def register_immutability_listeners() -> None:
    """Idempotent; called from create_app()."""
    if not event.contains(AuditEntry, "before_update", _reject_update):
        event.listen(AuditEntry, "before_update", _reject_update)
    if not event.contains(AuditEntry, "before_delete", _reject_delete):
        event.listen(AuditEntry, "before_delete", _reject_delete)
    if not event.contains(Session, "do_orm_execute", _reject_bulk_statements):
        event.listen(Session, "do_orm_execute", _reject_bulk_statements)
