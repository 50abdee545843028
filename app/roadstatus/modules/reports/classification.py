"""
Report classification: which organization is responsible, on which road class.

Each decision writes a ClassificationHistory row and the generic field-change
audit entries in the same transaction as the report update.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.roadstatus.audit import append_entries, records_for_changes
from app.roadstatus.constants import (
    ADMIN_ROLES,
    ROAD_CLASS_ORG_TYPE,
    AuditTargetType,
    ClassificationStatus,
    RoadClass,
    parse_enum,
)
from app.roadstatus.db import atomic
from app.roadstatus.errors import ConcurrentUpdate, PermissionDenied, ValidationError
from app.roadstatus.models import User
from app.roadstatus.modules.organizations.service import get_organization
from app.roadstatus.modules.reports.diff import diff
from app.roadstatus.modules.reports.models import ClassificationHistory, DamageReport
from app.roadstatus.modules.reports.service import get_report
from app.roadstatus.utils import isoformat, utcnow

logger = logging.getLogger(__name__)

# Payload key -> DamageReport attribute
CLASSIFICATION_FIELDS = {
    "roadClass": "road_class",
    "roadId": "road_id",
    "assignedOrgId": "assigned_org_id",
    "classificationStatus": "classification_status",
}


def _require_admin(actor: User) -> None:
    if actor.role_enum not in ADMIN_ROLES:
        raise PermissionDenied(f"Role '{actor.role}' cannot classify reports", role=actor.role)


def _apply_classification(
    s: Session,
    report: DamageReport,
    proposed: dict[str, Any],
    *,
    actor: User,
    reason: str | None,
) -> DamageReport:
    before = {key: getattr(report, attr) for key, attr in CLASSIFICATION_FIELDS.items()}
    changes = diff(before, proposed)
    if not changes:
        return report

    now = utcnow()
    for key, value in proposed.items():
        setattr(report, CLASSIFICATION_FIELDS[key], value)
    report.classified_by = actor.id
    report.classified_at = now
    report.updated_at = now

    history = ClassificationHistory(
        report_id=report.id,
        previous_road_class=before["roadClass"],
        new_road_class=report.road_class,
        previous_org_id=before["assignedOrgId"],
        new_org_id=report.assigned_org_id,
        previous_status=before["classificationStatus"],
        new_status=report.classification_status,
        changed_by=actor.id,
        reason=reason,
        created_at=now,
    )
    records = records_for_changes(
        changes,
        target_type=AuditTargetType.REPORT,
        target_id=report.id,
        actor=actor,
        reason=reason,
        metadata={"reportNumber": report.report_number, "source": "classification"},
    )
    with atomic(s):
        s.add(history)
        try:
            s.flush()
        except StaleDataError as e:
            raise ConcurrentUpdate("Report was modified by someone else; reload and retry") from e
        append_entries(s, records)

    logger.info(
        "Report %s classification %s -> %s (org=%s class=%s) by user=%s",
        report.report_number,
        before["classificationStatus"],
        report.classification_status,
        report.assigned_org_id,
        report.road_class,
        actor.id,
    )
    return report


def classify_report(
    s: Session,
    report_id: int,
    *,
    road_class: str | None,
    assigned_org_id: int | None,
    actor: User,
    road_id: str | None = None,
    reason: str | None = None,
) -> DamageReport:
    """
    Assign a report to an organization. Class A/B/E roads belong to national
    organizations, C/D to provincial ones.
    """
    _require_admin(actor)
    report = get_report(s, report_id)

    if assigned_org_id is None:
        raise ValidationError("assignedOrgId is required", field="assignedOrgId")
    if isinstance(assigned_org_id, bool) or not isinstance(assigned_org_id, int):
        raise ValidationError("assignedOrgId must be an integer", field="assignedOrgId")
    org = get_organization(s, assigned_org_id)

    if road_class not in (None, ""):
        rc = parse_enum(RoadClass, str(road_class).strip().upper())
        if rc is None:
            raise ValidationError(f"Unknown road class: {road_class!r}", field="roadClass")
    else:
        # Reassignment keeps the current class, which still constrains the org
        rc = parse_enum(RoadClass, report.road_class)
    if rc is not None:
        expected_type = ROAD_CLASS_ORG_TYPE[rc]
        if org.org_type != expected_type.value:
            raise ValidationError(
                f"Class {rc.value} roads are assigned to {expected_type.value} organizations; "
                f"{org.code} is {org.org_type}",
                field="assignedOrgId",
            )

    proposed: dict[str, Any] = {
        "roadClass": rc.value if rc else report.road_class,
        "assignedOrgId": org.id,
        "classificationStatus": ClassificationStatus.CLASSIFIED.value,
    }
    if road_id is not None:
        proposed["roadId"] = str(road_id).strip() or None
    return _apply_classification(s, report, proposed, actor=actor, reason=reason)


def mark_unclassifiable(s: Session, report_id: int, *, actor: User, reason: str | None = None) -> DamageReport:
    _require_admin(actor)
    report = get_report(s, report_id)
    proposed = {"classificationStatus": ClassificationStatus.UNCLASSIFIABLE.value}
    return _apply_classification(s, report, proposed, actor=actor, reason=reason)


def classification_history(s: Session, report_id: int) -> list[dict[str, Any]]:
    rows = (
        s.query(ClassificationHistory)
        .filter(ClassificationHistory.report_id == report_id)
        .order_by(ClassificationHistory.created_at.desc(), ClassificationHistory.id.desc())
        .all()
    )
    return [
        {
            "id": h.id,
            "previousRoadClass": h.previous_road_class,
            "newRoadClass": h.new_road_class,
            "previousOrgId": h.previous_org_id,
            "newOrgId": h.new_org_id,
            "previousStatus": h.previous_status,
            "newStatus": h.new_status,
            "changedBy": h.changed_by,
            "reason": h.reason,
            "createdAt": isoformat(h.created_at),
        }
        for h in rows
    ]
