"""
Report status transition policy.

One table maps role -> current status -> statuses that role may move the
report to. Forward and reverse edges are listed separately because they carry
different permissions (a field officer can resolve but not reopen). Roles and
statuses missing from the table get nothing.
"""
from __future__ import annotations

from app.roadstatus.constants import READ_ONLY_ROLES, ReportStatus, Role, parse_enum

_S = ReportStatus

STATUS_TRANSITIONS: dict[Role, dict[ReportStatus, frozenset[ReportStatus]]] = {
    Role.FIELD_OFFICER: {
        _S.NEW: frozenset({_S.REJECTED}),
        _S.VERIFIED: frozenset({_S.IN_PROGRESS}),
        _S.IN_PROGRESS: frozenset({_S.RESOLVED}),
        _S.RESOLVED: frozenset(),
        _S.REJECTED: frozenset(),
    },
    Role.PLANNER: {
        _S.NEW: frozenset({_S.VERIFIED, _S.REJECTED}),
        _S.VERIFIED: frozenset({_S.IN_PROGRESS}),
        _S.IN_PROGRESS: frozenset({_S.RESOLVED, _S.VERIFIED}),
        _S.RESOLVED: frozenset({_S.IN_PROGRESS}),  # reopen
        _S.REJECTED: frozenset({_S.NEW}),  # re-review
    },
    Role.ADMIN: {
        _S.NEW: frozenset({_S.VERIFIED, _S.REJECTED, _S.IN_PROGRESS}),
        _S.VERIFIED: frozenset({_S.IN_PROGRESS, _S.REJECTED, _S.NEW}),
        _S.IN_PROGRESS: frozenset({_S.RESOLVED, _S.VERIFIED, _S.REJECTED}),
        _S.RESOLVED: frozenset({_S.IN_PROGRESS, _S.VERIFIED}),
        _S.REJECTED: frozenset({_S.NEW, _S.VERIFIED}),
    },
    Role.SUPER_ADMIN: {
        status: frozenset(ReportStatus) - {status} for status in ReportStatus
    },
}


def allowed_transitions(role: Role | str | None, current_status: ReportStatus | str | None) -> frozenset[ReportStatus]:
    r = parse_enum(Role, role)
    st = parse_enum(ReportStatus, current_status)
    if r is None or st is None or r in READ_ONLY_ROLES:
        return frozenset()
    return STATUS_TRANSITIONS.get(r, {}).get(st, frozenset())


def is_allowed(
    role: Role | str | None,
    from_status: ReportStatus | str | None,
    to_status: ReportStatus | str | None,
) -> bool:
    target = parse_enum(ReportStatus, to_status)
    if target is None:
        return False
    return target in allowed_transitions(role, from_status)


def transition_matrix() -> dict[str, dict[str, list[str]]]:
    """JSON-friendly copy of the table for UI clients."""
    return {
        role.value: {
            st.value: sorted(t.value for t in targets)
            for st, targets in by_status.items()
        }
        for role, by_status in STATUS_TRANSITIONS.items()
    }
