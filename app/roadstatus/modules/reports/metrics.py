"""
Aggregate report counts for the admin status summary and the public dashboard.

Resolution times come from the first-reached stamps: created_at to resolved_at.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.roadstatus.constants import ReportStatus
from app.roadstatus.modules.reports.models import DamageReport
from app.roadstatus.modules.reports.workflow import WorkflowData
from app.roadstatus.utils import isoformat, utcnow

RECENT_RESOLUTIONS_LIMIT = 5
IN_PROGRESS_WORK_LIMIT = 10
DISTRICT_LIMIT = 10

UNKNOWN_ROAD = "Unknown Road"
UNKNOWN_DISTRICT = "Unknown"

_PENDING_STATUSES = (ReportStatus.NEW.value, ReportStatus.VERIFIED.value)

# "Galle Road (Colombo, Western)" -> road "Galle Road", district "Colombo"
_LOCATION_RE = re.compile(r"\(([^,]+),\s*([^)]+)\)")


def status_counts(s: Session, *, assigned_org_id: int | None = None) -> dict[str, int]:
    """Report count for every status, zero-filled."""
    q = s.query(DamageReport.status, func.count(DamageReport.id))
    if assigned_org_id is not None:
        q = q.filter(DamageReport.assigned_org_id == assigned_org_id)
    counts = {st.value: 0 for st in ReportStatus}
    for status, n in q.group_by(DamageReport.status).all():
        counts[status] = n
    return counts


def split_location(location_name: str | None) -> tuple[str, str]:
    """(road, district) parsed from a location label; unknowns when it has no "(district, province)" part."""
    if not location_name:
        return UNKNOWN_ROAD, UNKNOWN_DISTRICT
    match = _LOCATION_RE.search(location_name)
    if not match:
        return location_name, UNKNOWN_DISTRICT
    road = location_name[: match.start()].strip() or location_name
    return road, match.group(1).strip()


def _round_half_up(value: float, places: str = "1") -> Decimal:
    return Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def resolution_days(report: DamageReport) -> int:
    seconds = (report.resolved_at - report.created_at).total_seconds()
    return int(_round_half_up(seconds / 86400))


def public_metrics(s: Session, *, now: datetime | None = None) -> dict[str, Any]:
    """
    Dashboard numbers over every report that was not rejected.

    avgResolutionTimeDays averages whole-day resolution times of reports
    resolved in the last year, to one decimal. Week and month are the last
    7 and 30 days.
    """
    now = now or utcnow()
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)
    year_ago = now - timedelta(days=365)

    counts = status_counts(s)
    summary = {
        "totalReports": sum(n for st, n in counts.items() if st != ReportStatus.REJECTED.value),
        "resolved": counts[ReportStatus.RESOLVED.value],
        "inProgress": counts[ReportStatus.IN_PROGRESS.value],
        "pending": sum(counts[st] for st in _PENDING_STATUSES),
    }

    resolved = (
        s.query(DamageReport)
        .filter(DamageReport.status == ReportStatus.RESOLVED.value, DamageReport.resolved_at.isnot(None))
        .order_by(DamageReport.resolved_at.desc(), DamageReport.id.desc())
        .all()
    )
    within_year = [r for r in resolved if r.resolved_at >= year_ago]
    avg_days = 0.0
    if within_year:
        avg_days = float(_round_half_up(sum(resolution_days(r) for r in within_year) / len(within_year), "0.1"))

    recent_resolutions = []
    for r in within_year[:RECENT_RESOLUTIONS_LIMIT]:
        road, district = split_location(r.location_name)
        recent_resolutions.append(
            {
                "id": r.id,
                "reportNumber": r.report_number,
                "roadName": road,
                "district": district,
                "damageType": r.damage_type,
                "resolutionTimeDays": resolution_days(r),
                "resolvedAt": isoformat(r.resolved_at),
            }
        )

    in_progress_work = []
    in_progress = (
        s.query(DamageReport)
        .filter(DamageReport.status == ReportStatus.IN_PROGRESS.value)
        .order_by(DamageReport.updated_at.desc(), DamageReport.id.desc())
        .limit(IN_PROGRESS_WORK_LIMIT)
        .all()
    )
    for r in in_progress:
        road, district = split_location(r.location_name)
        progress = WorkflowData.from_document(r.workflow_data).progress_percent
        in_progress_work.append(
            {
                "id": r.id,
                "reportNumber": r.report_number,
                "roadName": road,
                "district": district,
                "progressPercent": progress or 0,
            }
        )

    return {
        "summary": summary,
        "performance": {
            "avgResolutionTimeDays": avg_days,
            "resolvedThisWeek": sum(1 for r in resolved if r.resolved_at >= week_ago),
            "resolvedThisMonth": sum(1 for r in resolved if r.resolved_at >= month_ago),
        },
        "recentResolutions": recent_resolutions,
        "inProgressWork": in_progress_work,
        "byDistrict": _district_breakdown(s),
    }


def _district_breakdown(s: Session) -> list[dict[str, Any]]:
    rows = (
        s.query(DamageReport.location_name, DamageReport.status)
        .filter(DamageReport.status != ReportStatus.REJECTED.value)
        .all()
    )
    districts: dict[str, dict[str, int]] = {}
    for location_name, status in rows:
        _, district = split_location(location_name)
        bucket = districts.setdefault(district, {"resolved": 0, "inProgress": 0, "pending": 0})
        if status == ReportStatus.RESOLVED.value:
            bucket["resolved"] += 1
        elif status == ReportStatus.IN_PROGRESS.value:
            bucket["inProgress"] += 1
        elif status in _PENDING_STATUSES:
            bucket["pending"] += 1
    ranked = sorted(districts.items(), key=lambda item: -sum(item[1].values()))
    return [{"district": name, **counts} for name, counts in ranked[:DISTRICT_LIMIT]]
