import pytest
from werkzeug.security import generate_password_hash

from app.roadstatus import create_app
from app.roadstatus.audit import AuditRecord, append_entries
from app.roadstatus.constants import AuditTargetType, Role
from app.roadstatus.db import session_scope
from app.roadstatus.errors import NotFound
from app.roadstatus.models import Base, User
from app.roadstatus.modules.reports.service import create_report, update_report
from app.roadstatus.modules.reports.timeline import (
    ANONYMOUS_ACTOR,
    SYSTEM_ACTOR,
    UNKNOWN_ACTOR,
    report_timeline,
)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(
            User(
                email="planner@example.com",
                name="Priya Planner",
                password_hash=generate_password_hash("pw"),
                role=Role.PLANNER.value,
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


def _planner(s):
    return s.query(User).filter(User.email == "planner@example.com").one()


def test_three_changes_give_four_items_newest_first(s):
    report = create_report(
        s, {"latitude": 6.05, "longitude": 80.22, "damageType": "tree_fall", "anonymousName": "Kamal"}
    )
    planner = _planner(s)
    update_report(s, report.id, {"status": "verified"}, planner)
    update_report(s, report.id, {"status": "in_progress"}, planner)
    update_report(s, report.id, {"workflowData": {"progressPercent": 60}}, planner)

    items = report_timeline(s, report.id)

    assert len(items) == 4
    assert [i.kind for i in items] == ["change", "change", "change", "created"]
    assert [i.field_name for i in items[:3]] == ["workflow.progressPercent", "status", "status"]
    assert items[1].new_value == "in_progress"
    assert items[2].new_value == "verified"
    times = [i.created_at for i in items[:3]]
    assert times == sorted(times, reverse=True)
    assert items[0].actor_name == "Priya Planner"
    assert items[-1].actor_name == "Kamal"
    assert items[-1].to_dict()["kind"] == "created"


def test_creation_item_is_last_even_with_odd_timestamps(s):
    report = create_report(s, {"latitude": 6.05, "longitude": 80.22, "damageType": "washout"})
    # System entry with no actor
    append_entries(
        s,
        [
            AuditRecord(
                target_type=AuditTargetType.REPORT,
                target_id=str(report.id),
                field_name="severity",
                old_value="2",
                new_value="3",
                performed_by=None,
                performer_role=None,
            ),
            AuditRecord(
                target_type=AuditTargetType.REPORT,
                target_id=str(report.id),
                field_name="description",
                old_value="a",
                new_value="b",
                performed_by=424242,
                performer_role="planner",
            ),
        ],
    )
    s.commit()

    items = report_timeline(s, report.id)

    assert items[-1].kind == "created"
    assert items[-1].actor_name == ANONYMOUS_ACTOR
    names = {i.field_name: i.actor_name for i in items[:-1]}
    assert names == {"severity": SYSTEM_ACTOR, "description": UNKNOWN_ACTOR}


def test_timeline_missing_report(s):
    with pytest.raises(NotFound):
        report_timeline(s, 12345)
