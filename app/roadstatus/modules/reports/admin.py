from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.roadstatus.constants import ADMIN_ROLES, Role
from app.roadstatus.db import db_session
from app.roadstatus.errors import ValidationError
from app.roadstatus.modules.organizations.service import org_lineage_codes
from app.roadstatus.modules.reports.classification import (
    classification_history,
    classify_report,
    mark_unclassifiable,
)
from app.roadstatus.modules.reports.metrics import status_counts
from app.roadstatus.modules.reports.service import get_report, list_reports, report_to_dict, update_report
from app.roadstatus.modules.reports.timeline import report_timeline
from app.roadstatus.modules.reports.transitions import transition_matrix
from app.roadstatus.rbac import current_user, require_role

bp = Blueprint("reports_admin", __name__)

# Stakeholders can read; the service rejects their edits
_VIEW_ROLES = (Role.FIELD_OFFICER, Role.PLANNER, Role.ADMIN, Role.SUPER_ADMIN, Role.STAKEHOLDER)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _reason(data: dict) -> str | None:
    reason = data.get("reason")
    if reason is None:
        return None
    if not isinstance(reason, str):
        raise ValidationError("reason must be a string", field="reason")
    return reason.strip()[:512] or None


def _expected_version(data: dict) -> int | None:
    v = data.get("expectedVersion")
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, int):
        raise ValidationError("expectedVersion must be an integer", field="expectedVersion")
    return v


def _detail(report) -> dict:
    s = db_session()
    out = report_to_dict(report, viewer=current_user())
    out["assignedOrgLineage"] = org_lineage_codes(s, report.assigned_org_id)
    return out


@bp.get("/reports")
@require_role(*_VIEW_ROLES)
def reports_list():
    s = db_session()
    org_raw = (request.args.get("assignedOrgId") or "").strip()
    assigned_org_id = None
    if org_raw:
        try:
            assigned_org_id = int(org_raw)
        except ValueError:
            raise ValidationError("assignedOrgId must be an integer", field="assignedOrgId") from None
    try:
        limit = min(max(int(request.args.get("limit") or 200), 1), 1000)
    except ValueError:
        raise ValidationError("limit must be an integer", field="limit") from None

    reports = list_reports(
        s,
        status=(request.args.get("status") or "").strip() or None,
        classification_status=(request.args.get("classificationStatus") or "").strip() or None,
        assigned_org_id=assigned_org_id,
        limit=limit,
    )
    viewer = current_user()
    return jsonify(
        {
            "reports": [report_to_dict(r, viewer=viewer) for r in reports],
            "statusCounts": status_counts(s, assigned_org_id=assigned_org_id),
        }
    )


@bp.get("/reports/transitions")
@require_role(*_VIEW_ROLES)
def reports_transitions():
    return jsonify({"transitions": transition_matrix()})


@bp.get("/reports/<int:report_id>")
@require_role(*_VIEW_ROLES)
def report_detail(report_id: int):
    s = db_session()
    report = get_report(s, report_id)
    out = _detail(report)
    out["classificationHistory"] = classification_history(s, report.id)
    return jsonify(out)


@bp.patch("/reports/<int:report_id>")
@require_role(*_VIEW_ROLES)
def report_update(report_id: int):
    s = db_session()
    data = _json_body()
    payload = {k: v for k, v in data.items() if k not in ("reason", "expectedVersion")}
    report = update_report(
        s,
        report_id,
        payload,
        current_user(),
        reason=_reason(data),
        expected_version=_expected_version(data),
    )
    return jsonify(_detail(report))


@bp.patch("/reports/<int:report_id>/classify")
@require_role(*ADMIN_ROLES)
def report_classify(report_id: int):
    s = db_session()
    data = _json_body()
    report = classify_report(
        s,
        report_id,
        road_class=data.get("roadClass"),
        assigned_org_id=data.get("assignedOrgId"),
        road_id=data.get("roadId"),
        actor=current_user(),
        reason=_reason(data),
    )
    return jsonify(_detail(report))


@bp.patch("/reports/<int:report_id>/unclassifiable")
@require_role(*ADMIN_ROLES)
def report_unclassifiable(report_id: int):
    s = db_session()
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    report = mark_unclassifiable(s, report_id, actor=current_user(), reason=_reason(data))
    return jsonify(_detail(report))


@bp.get("/reports/<int:report_id>/timeline")
@require_role(*_VIEW_ROLES)
def report_timeline_view(report_id: int):
    s = db_session()
    items = report_timeline(s, report_id)
    return jsonify({"reportId": report_id, "timeline": [i.to_dict() for i in items]})
