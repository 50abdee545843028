"""
Report workflow service.

update_report() is the only path that mutates a submitted report's editable
fields. One call is one transaction: the report row and its audit entries are
committed together or not at all.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.roadstatus.audit import append_entries, records_for_changes
from app.roadstatus.constants import (
    DEFAULT_CITIZEN_SEVERITY,
    READ_ONLY_ROLES,
    SEVERITY_MAX,
    SEVERITY_MIN,
    AuditTargetType,
    ClassificationStatus,
    DamageType,
    PassabilityLevel,
    ReportStatus,
    parse_enum,
)
from app.roadstatus.db import atomic
from app.roadstatus.errors import ConcurrentUpdate, NotFound, PermissionDenied, TransitionNotAllowed, ValidationError
from app.roadstatus.models import User
from app.roadstatus.modules.reports.diff import KIND_NUMBER, diff, flatten_document
from app.roadstatus.modules.reports.models import DamageReport
from app.roadstatus.modules.reports.notifications import StatusChange, dispatch_status_change
from app.roadstatus.modules.reports.transitions import allowed_transitions, is_allowed
from app.roadstatus.modules.reports.workflow import WorkflowData, parse_workflow_update
from app.roadstatus.utils import generate_report_number, isoformat, utcnow

logger = logging.getLogger(__name__)

WORKFLOW_PREFIX = "workflow"

# Payload key -> DamageReport attribute
EDITABLE_FIELDS = {
    "status": "status",
    "severity": "severity",
    "damageType": "damage_type",
    "passabilityLevel": "passability_level",
    "description": "description",
    "locationName": "location_name",
}

FIELD_KINDS = {
    "severity": KIND_NUMBER,
    f"{WORKFLOW_PREFIX}.progressPercent": KIND_NUMBER,
    f"{WORKFLOW_PREFIX}.estimatedCostLkr": KIND_NUMBER,
}

MAX_DESCRIPTION_LENGTH = 1000
MAX_LOCATION_NAME_LENGTH = 200

# First time a report reaches one of these statuses is stamped on the row
_FIRST_REACHED_STAMPS = {
    ReportStatus.IN_PROGRESS: "in_progress_at",
    ReportStatus.RESOLVED: "resolved_at",
}


def get_report(s: Session, report_id: int) -> DamageReport:
    report = s.get(DamageReport, report_id)
    if not report:
        raise NotFound("Report", report_id)
    return report


def list_reports(
    s: Session,
    *,
    status: str | None = None,
    classification_status: str | None = None,
    assigned_org_id: int | None = None,
    submitter_id: int | None = None,
    limit: int = 200,
) -> list[DamageReport]:
    q = s.query(DamageReport)
    if submitter_id is not None:
        q = q.filter(DamageReport.submitter_id == submitter_id)
    if status:
        st = parse_enum(ReportStatus, status)
        if st is None:
            raise ValidationError(f"Unknown status: {status!r}", field="status")
        q = q.filter(DamageReport.status == st.value)
    if classification_status:
        cs = parse_enum(ClassificationStatus, classification_status)
        if cs is None:
            raise ValidationError(f"Unknown classification status: {classification_status!r}", field="classificationStatus")
        q = q.filter(DamageReport.classification_status == cs.value)
    if assigned_org_id is not None:
        q = q.filter(DamageReport.assigned_org_id == assigned_org_id)
    return q.order_by(DamageReport.created_at.desc(), DamageReport.id.desc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _clean_enum(enum_cls, key: str, value: Any, *, nullable: bool = False):
    if value is None and nullable:
        return None
    member = parse_enum(enum_cls, value)
    if member is None:
        raise ValidationError(f"Unknown {key} value: {value!r}", field=key)
    return member.value


def _clean_severity(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("severity must be an integer", field="severity")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("severity must be an integer", field="severity") from None
    # 4.0 and "4" are the same severity as 4
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError("severity must be an integer", field="severity")
    severity = int(number)
    if not (SEVERITY_MIN <= severity <= SEVERITY_MAX):
        raise ValidationError(f"severity must be between {SEVERITY_MIN} and {SEVERITY_MAX}", field="severity")
    return severity


def _clean_text(key: str, value: Any, *, max_length: int, nullable: bool) -> str | None:
    if value is None:
        if nullable:
            return None
        raise ValidationError(f"{key} cannot be null", field=key)
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field=key)
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} is limited to {max_length} characters", field=key)
    return value


def clean_report_update(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Validated top-level editable fields; unrecognized keys are dropped."""
    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        if key == "status":
            cleaned[key] = _clean_enum(ReportStatus, key, value)
        elif key == "severity":
            cleaned[key] = _clean_severity(value)
        elif key == "damageType":
            cleaned[key] = _clean_enum(DamageType, key, value)
        elif key == "passabilityLevel":
            cleaned[key] = _clean_enum(PassabilityLevel, key, value, nullable=True)
        elif key == "description":
            cleaned[key] = _clean_text(key, value, max_length=MAX_DESCRIPTION_LENGTH, nullable=False)
        elif key == "locationName":
            cleaned[key] = _clean_text(key, value, max_length=MAX_LOCATION_NAME_LENGTH, nullable=True)
    return cleaned


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def report_snapshot(report: DamageReport) -> dict[str, Any]:
    """Flat view used for diffing: editable fields plus workflow.* leaves."""
    snap = {key: getattr(report, attr) for key, attr in EDITABLE_FIELDS.items()}
    snap.update(flatten_document(report.workflow_data, WORKFLOW_PREFIX))
    return snap


def update_report(
    s: Session,
    report_id: int,
    payload: Mapping[str, Any],
    actor: User,
    *,
    reason: str | None = None,
    expected_version: int | None = None,
) -> DamageReport:
    """
    Apply a partial update to a report.

    Raises ValidationError, PermissionDenied, NotFound, TransitionNotAllowed,
    ConcurrentUpdate or AuditWriteFailure; nothing is written when any of them
    is raised.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Update body must be a JSON object")
    role = actor.role_enum
    if role is None or role in READ_ONLY_ROLES:
        raise PermissionDenied(f"Role '{actor.role}' cannot edit reports", role=actor.role)

    report = get_report(s, report_id)
    if expected_version is not None and report.version != expected_version:
        raise ConcurrentUpdate(
            "Report was modified by someone else; reload and retry",
            expected_version=expected_version,
            current_version=report.version,
        )

    cleaned = clean_report_update(payload)
    workflow_update = parse_workflow_update(payload["workflowData"]) if "workflowData" in payload else {}

    previous_status = report.status
    requested_status = cleaned.get("status")
    status_changes = requested_status is not None and requested_status != previous_status
    if status_changes and not is_allowed(role, previous_status, requested_status):
        logger.warning(
            "Transition rejected: report=%s role=%s %s -> %s",
            report.report_number,
            role.value,
            previous_status,
            requested_status,
        )
        raise TransitionNotAllowed(role.value, previous_status, requested_status)
    if status_changes and requested_status == ReportStatus.REJECTED.value and not (reason or "").strip():
        raise ValidationError("A reason is required to reject a report", field="reason")

    before = report_snapshot(report)
    merged = WorkflowData.from_document(report.workflow_data).merge(workflow_update)
    merged_doc = merged.to_document() or {}

    proposed: dict[str, Any] = dict(cleaned)
    for key in workflow_update:
        proposed[f"{WORKFLOW_PREFIX}.{key}"] = merged_doc.get(key)

    changes = diff(before, proposed, FIELD_KINDS)
    if not changes:
        return report

    now = utcnow()
    for key, value in cleaned.items():
        setattr(report, EDITABLE_FIELDS[key], value)
    if any(c.field.startswith(f"{WORKFLOW_PREFIX}.") for c in changes):
        report.workflow_data = merged.to_document()
    if status_changes:
        stamp_attr = _FIRST_REACHED_STAMPS.get(ReportStatus(requested_status))
        if stamp_attr and getattr(report, stamp_attr) is None:
            setattr(report, stamp_attr, now)
    report.updated_at = now

    records = records_for_changes(
        changes,
        target_type=AuditTargetType.REPORT,
        target_id=report.id,
        actor=actor,
        reason=reason,
        metadata={"reportNumber": report.report_number},
    )
    with atomic(s):
        try:
            s.flush()
        except StaleDataError as e:
            raise ConcurrentUpdate("Report was modified by someone else; reload and retry") from e
        append_entries(s, records)

    logger.info(
        "Report %s updated by user=%s: %s",
        report.report_number,
        actor.id,
        ", ".join(c.field for c in changes),
    )
    if status_changes:
        dispatch_status_change(
            StatusChange(
                report_id=report.id,
                report_number=report.report_number,
                from_status=previous_status,
                to_status=requested_status,
                performed_by=actor.id,
                performer_role=actor.role,
                reason=reason,
            )
        )
    return report


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def _clean_coordinate(key: str, value: Any, limit: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number", field=key)
    if not (-limit <= float(value) <= limit):
        raise ValidationError(f"{key} must be between -{limit:g} and {limit:g}", field=key)
    return float(value)


def create_report(s: Session, data: Mapping[str, Any], *, submitter: User | None = None) -> DamageReport:
    """Citizen submission. Starts at status=new, classification pending."""
    if not isinstance(data, Mapping):
        raise ValidationError("Report body must be a JSON object")

    latitude = _clean_coordinate("latitude", data.get("latitude"), 90)
    longitude = _clean_coordinate("longitude", data.get("longitude"), 180)
    damage_type = _clean_enum(DamageType, "damageType", data.get("damageType"))
    passability = _clean_enum(PassabilityLevel, "passabilityLevel", data.get("passabilityLevel") or PassabilityLevel.UNPASSABLE)
    description = _clean_text("description", data.get("description") or "", max_length=MAX_DESCRIPTION_LENGTH, nullable=False)
    location_name = _clean_text("locationName", data.get("locationName"), max_length=MAX_LOCATION_NAME_LENGTH, nullable=True)
    anonymous_name = _clean_text("anonymousName", data.get("anonymousName"), max_length=100, nullable=True)
    anonymous_email = _clean_text("anonymousEmail", data.get("anonymousEmail"), max_length=320, nullable=True)
    anonymous_contact = _clean_text("anonymousContact", data.get("anonymousContact"), max_length=50, nullable=True)
    if anonymous_email and "@" not in anonymous_email:
        raise ValidationError("anonymousEmail must be an email address", field="anonymousEmail")

    now = utcnow()
    report = DamageReport(
        report_number=generate_report_number(now),
        submitter_id=submitter.id if submitter else None,
        anonymous_name=anonymous_name or None,
        anonymous_email=(anonymous_email or "").lower() or None,
        anonymous_contact=anonymous_contact or None,
        source_type="citizen",
        source_channel="mobile_web",
        latitude=latitude,
        longitude=longitude,
        location_name=location_name or None,
        damage_type=damage_type,
        severity=DEFAULT_CITIZEN_SEVERITY,
        description=description or f"Citizen report: {damage_type}",
        passability_level=passability,
        status=ReportStatus.NEW.value,
        classification_status=ClassificationStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    with atomic(s):
        s.add(report)
        s.flush()
    logger.info("Report %s submitted (submitter=%s)", report.report_number, report.submitter_id)
    return report


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def report_to_dict(report: DamageReport, *, viewer: User | None = None) -> dict[str, Any]:
    out = {
        "id": report.id,
        "reportNumber": report.report_number,
        "status": report.status,
        "severity": report.severity,
        "damageType": report.damage_type,
        "passabilityLevel": report.passability_level,
        "description": report.description,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "locationName": report.location_name,
        "workflowData": WorkflowData.from_document(report.workflow_data).to_document() or {},
        "roadId": report.road_id,
        "roadClass": report.road_class,
        "assignedOrgId": report.assigned_org_id,
        "classificationStatus": report.classification_status,
        "classifiedBy": report.classified_by,
        "classifiedAt": isoformat(report.classified_at),
        "inProgressAt": isoformat(report.in_progress_at),
        "resolvedAt": isoformat(report.resolved_at),
        "submitterId": report.submitter_id,
        "version": report.version,
        "createdAt": isoformat(report.created_at),
        "updatedAt": isoformat(report.updated_at),
    }
    if viewer is not None:
        out["allowedTransitions"] = sorted(t.value for t in allowed_transitions(viewer.role, report.status))
    return out
