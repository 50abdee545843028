"""Tests for the report update path: transitions, diffing, merge, atomicity."""
import pytest
from werkzeug.security import generate_password_hash

from app.roadstatus import create_app
from app.roadstatus.audit import query_entries
from app.roadstatus.constants import AuditTargetType, Role
from app.roadstatus.db import session_scope
from app.roadstatus.errors import (
    AuditWriteFailure,
    ConcurrentUpdate,
    NotFound,
    PermissionDenied,
    TransitionNotAllowed,
    ValidationError,
)
from app.roadstatus.models import AuditEntry, Base, User
from app.roadstatus.modules.reports import service as report_service
from app.roadstatus.modules.reports.models import DamageReport
from app.roadstatus.modules.reports.notifications import register_status_hook
from app.roadstatus.modules.reports.service import create_report, update_report


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        for role in Role:
            s.add(
                User(
                    email=f"{role.value}@example.com",
                    name=role.value.replace("_", " ").title(),
                    password_hash=generate_password_hash("pw"),
                    role=role.value,
                )
            )
    return app


@pytest.fixture()
def s(app):
    with app.app_context():
        session = app.extensions["sqlalchemy_sessionmaker"]()
        try:
            yield session
        finally:
            session.close()


def _user(s, role: Role) -> User:
    return s.query(User).filter(User.email == f"{role.value}@example.com").one()


def _report(s, **overrides) -> DamageReport:
    data = {
        "latitude": 6.9271,
        "longitude": 79.8612,
        "damageType": "flooding",
        "description": "Road under water near the bridge",
        "locationName": "Colombo - Galle Road",
    }
    data.update(overrides)
    return create_report(s, data)


def _entries(s, report):
    return query_entries(s, AuditTargetType.REPORT, report.id, newest_first=False)


def test_field_officer_cannot_verify_new_report(s):
    report = _report(s)
    with pytest.raises(TransitionNotAllowed) as exc:
        update_report(s, report.id, {"status": "verified"}, _user(s, Role.FIELD_OFFICER))

    assert exc.value.current_status == "new"
    assert exc.value.requested_status == "verified"
    s.expire_all()
    assert s.get(DamageReport, report.id).status == "new"
    assert _entries(s, report) == []


def test_admin_verifies_new_report_with_one_entry(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)

    updated = update_report(s, report.id, {"status": "verified"}, admin, reason="Confirmed on site")

    assert updated.status == "verified"
    entries = _entries(s, report)
    assert len(entries) == 1
    e = entries[0]
    assert (e.field_name, e.old_value, e.new_value) == ("status", "new", "verified")
    assert e.performed_by == admin.id
    assert e.performer_role == "admin"
    assert e.reason == "Confirmed on site"


def test_description_update_leaves_workflow_untouched(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)
    update_report(s, report.id, {"workflowData": {"progressPercent": 30}}, admin)
    before = len(_entries(s, report))

    updated = update_report(s, report.id, {"description": "Water receding, one lane open"}, admin)

    assert updated.workflow_data == {"progressPercent": 30}
    assert updated.status == "new"
    new_entries = _entries(s, report)[before:]
    assert [e.field_name for e in new_entries] == ["description"]


def test_workflow_updates_merge_instead_of_replacing(s):
    report = _report(s)
    planner = _user(s, Role.PLANNER)

    update_report(s, report.id, {"workflowData": {"progressPercent": 50}}, planner)
    updated = update_report(s, report.id, {"workflowData": {"estimatedCostLkr": 1000}}, planner)

    assert updated.workflow_data == {"progressPercent": 50, "estimatedCostLkr": 1000}
    fields = [e.field_name for e in _entries(s, report)]
    assert fields == ["workflow.progressPercent", "workflow.estimatedCostLkr"]


def test_workflow_update_accepts_json_string(s):
    report = _report(s)
    updated = update_report(s, report.id, {"workflowData": '{"notes": "Crew dispatched"}'}, _user(s, Role.PLANNER))
    assert updated.workflow_data == {"notes": "Crew dispatched"}


def test_workflow_null_clears_key(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)
    update_report(s, report.id, {"workflowData": {"progressPercent": 40, "notes": "x"}}, admin)

    updated = update_report(s, report.id, {"workflowData": {"notes": None}}, admin)

    assert updated.workflow_data == {"progressPercent": 40}
    last = _entries(s, report)[-1]
    assert (last.field_name, last.old_value, last.new_value) == ("workflow.notes", "x", None)


def test_noop_update_writes_nothing(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)
    version = report.version

    update_report(s, report.id, {"severity": report.severity, "status": "new"}, admin)
    update_report(s, report.id, {"severity": str(report.severity)}, admin)

    assert _entries(s, report) == []
    assert s.get(DamageReport, report.id).version == version


def test_equivalent_workflow_value_is_not_a_change(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)
    update_report(s, report.id, {"workflowData": {"estimatedCostLkr": 2500}}, admin)

    update_report(s, report.id, {"workflowData": {"estimatedCostLkr": "2500.0"}}, admin)

    assert len(_entries(s, report)) == 1


def test_integral_float_severity_is_accepted(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)

    updated = update_report(s, report.id, {"severity": 4.0}, admin)
    assert updated.severity == 4
    update_report(s, report.id, {"severity": "4.0"}, admin)

    assert [(e.field_name, e.new_value) for e in _entries(s, report)] == [("severity", "4")]
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"severity": 3.5}, admin)
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"severity": "high"}, admin)


def test_rejecting_requires_a_reason(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)

    with pytest.raises(ValidationError) as exc:
        update_report(s, report.id, {"status": "rejected"}, admin)
    assert exc.value.details["field"] == "reason"
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"status": "rejected"}, admin, reason="   ")
    assert _entries(s, report) == []

    updated = update_report(s, report.id, {"status": "rejected"}, admin, reason="Duplicate of an earlier report")
    assert updated.status == "rejected"
    (entry,) = _entries(s, report)
    assert entry.reason == "Duplicate of an earlier report"


def test_update_without_status_keeps_status(s):
    report = _report(s)
    updated = update_report(s, report.id, {"severity": 4}, _user(s, Role.FIELD_OFFICER))
    assert updated.status == "new"
    assert [e.field_name for e in _entries(s, report)] == ["severity"]


def test_multi_field_update_shares_timestamp(s):
    report = _report(s)
    update_report(
        s,
        report.id,
        {"status": "verified", "severity": 5, "workflowData": {"progressPercent": 10}},
        _user(s, Role.ADMIN),
    )
    entries = _entries(s, report)
    assert {e.field_name for e in entries} == {"status", "severity", "workflow.progressPercent"}
    assert len({e.created_at for e in entries}) == 1


def test_read_only_roles_cannot_edit(s):
    report = _report(s)
    for role in (Role.CITIZEN, Role.STAKEHOLDER):
        with pytest.raises(PermissionDenied):
            update_report(s, report.id, {"description": "changed"}, _user(s, role))
    assert _entries(s, report) == []


def test_unknown_values_rejected_before_persistence(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"status": "closed"}, admin)
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"severity": 9}, admin)
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"workflowData": "{not json"}, admin)
    with pytest.raises(ValidationError):
        update_report(s, report.id, {"workflowData": {"progressPercent": 150}}, admin)
    assert _entries(s, report) == []


def test_missing_report(s):
    with pytest.raises(NotFound):
        update_report(s, 999, {"severity": 3}, _user(s, Role.ADMIN))


def test_first_reached_timestamps_are_kept(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)

    update_report(s, report.id, {"status": "in_progress"}, admin)
    first_in_progress = s.get(DamageReport, report.id).in_progress_at
    assert first_in_progress is not None

    update_report(s, report.id, {"status": "resolved"}, admin)
    update_report(s, report.id, {"status": "in_progress"}, admin, reason="Reopened after new slip")

    r = s.get(DamageReport, report.id)
    assert r.in_progress_at == first_in_progress
    assert r.resolved_at is not None


def test_expected_version_mismatch(s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)
    update_report(s, report.id, {"severity": 3}, admin)

    with pytest.raises(ConcurrentUpdate):
        update_report(s, report.id, {"severity": 4}, admin, expected_version=1)

    updated = update_report(s, report.id, {"severity": 4}, admin, expected_version=2)
    assert updated.severity == 4
    assert updated.version == 3


def test_stale_row_raises_concurrent_update(app, s):
    report = _report(s)
    admin = _user(s, Role.ADMIN)

    # Another writer bumps the row behind this session's back
    other = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        update_report(other, report.id, {"severity": 5}, other.get(User, admin.id))
    finally:
        other.close()

    with pytest.raises(ConcurrentUpdate):
        update_report(s, report.id, {"description": "stale edit"}, admin)

    s.expire_all()
    r = s.get(DamageReport, report.id)
    assert r.description == "Road under water near the bridge"
    assert r.severity == 5


def test_audit_failure_rolls_back_report(app, s, monkeypatch):
    report = _report(s)

    def _boom(session, records):
        raise AuditWriteFailure("Could not write audit entries", count=len(records))

    monkeypatch.setattr(report_service, "append_entries", _boom)

    with pytest.raises(AuditWriteFailure):
        update_report(s, report.id, {"status": "verified", "severity": 5}, _user(s, Role.ADMIN))

    with session_scope(app) as fresh:
        r = fresh.get(DamageReport, report.id)
        assert r.status == "new"
        assert r.severity == 2
        assert fresh.query(AuditEntry).count() == 0


def test_status_hooks_run_after_commit_and_failures_are_isolated(app, s):
    seen = []

    def _record(change):
        seen.append((change.report_number, change.from_status, change.to_status))

    def _broken(change):
        raise RuntimeError("notification service down")

    register_status_hook(app, _broken)
    register_status_hook(app, _record)

    report = _report(s)
    updated = update_report(s, report.id, {"status": "verified"}, _user(s, Role.PLANNER))
    update_report(s, report.id, {"severity": 4}, _user(s, Role.PLANNER))

    assert updated.status == "verified"
    assert seen == [(report.report_number, "new", "verified")]
    with session_scope(app) as fresh:
        assert fresh.get(DamageReport, report.id).status == "verified"


def test_create_report_defaults(s):
    report = _report(s, anonymousName="Nimal", anonymousEmail="Nimal@Example.com")
    assert report.status == "new"
    assert report.classification_status == "pending"
    assert report.severity == 2
    assert report.passability_level == "unpassable"
    assert report.anonymous_email == "nimal@example.com"
    assert report.report_number.startswith("CR-")
    assert len(report.report_number) == len("CR-YYYYMMDD-XXXXXX")


def test_create_report_validates_coordinates(s):
    with pytest.raises(ValidationError):
        _report(s, latitude=120)
    with pytest.raises(ValidationError):
        _report(s, damageType="meteor")
