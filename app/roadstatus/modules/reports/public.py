"""
Citizen-facing report API. Submission is open to anonymous users.
"""
from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.roadstatus.constants import ReportStatus, Role
from app.roadstatus.db import db_session
from app.roadstatus.errors import NotFound, ValidationError
from app.roadstatus.modules.reports.metrics import public_metrics
from app.roadstatus.modules.reports.models import DamageReport
from app.roadstatus.modules.reports.service import create_report, get_report, list_reports, report_to_dict
from app.roadstatus.modules.reports.workflow import PROGRESS_PERCENT, WorkflowData
from app.roadstatus.models import User
from app.roadstatus.utils import isoformat

bp = Blueprint("reports_public", __name__)

# Anything past verification is public
PUBLIC_STATUSES = frozenset({ReportStatus.VERIFIED.value, ReportStatus.IN_PROGRESS.value, ReportStatus.RESOLVED.value})

_STAFF_ROLES = frozenset({Role.FIELD_OFFICER, Role.PLANNER, Role.ADMIN, Role.SUPER_ADMIN})


def _can_see_everything(user: User | None, report: DamageReport) -> bool:
    if user is None:
        return False
    return user.role_enum in _STAFF_ROLES or (report.submitter_id is not None and report.submitter_id == user.id)


def public_report_to_dict(report: DamageReport) -> dict:
    workflow = WorkflowData.from_document(report.workflow_data)
    return {
        "id": report.id,
        "reportNumber": report.report_number,
        "status": report.status,
        "damageType": report.damage_type,
        "passabilityLevel": report.passability_level,
        "severity": report.severity,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "locationName": report.location_name,
        "description": report.description,
        "workflowData": {PROGRESS_PERCENT: workflow.progress_percent} if workflow.progress_percent is not None else {},
        "createdAt": isoformat(report.created_at),
        "updatedAt": isoformat(report.updated_at),
    }


@bp.post("/reports")
def submit_report():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    user = getattr(g, "current_user", None)
    report = create_report(db_session(), data, submitter=user)
    return jsonify(report_to_dict(report)), 201


@bp.get("/reports/<int:report_id>")
def report_get(report_id: int):
    report = get_report(db_session(), report_id)
    user = getattr(g, "current_user", None)
    if _can_see_everything(user, report):
        return jsonify(report_to_dict(report))
    if report.status not in PUBLIC_STATUSES:
        # Unverified reports do not exist as far as the public is concerned
        raise NotFound("Report", report_id)
    return jsonify(public_report_to_dict(report))


@bp.get("/reports")
def my_reports():
    """Reports the signed-in user submitted, newest first."""
    user = getattr(g, "current_user", None)
    if user is None:
        return jsonify({"error": "unauthenticated", "message": "Login required"}), 401
    reports = list_reports(db_session(), submitter_id=user.id)
    return jsonify({"reports": [report_to_dict(r) for r in reports]})


@bp.get("/public/metrics")
def metrics():
    return jsonify(public_metrics(db_session()))
