"""HTTP tests for the citizen and admin report endpoints."""
from collections import defaultdict

import pytest
from werkzeug.security import generate_password_hash

from app.roadstatus import auth, create_app
from app.roadstatus.constants import Role
from app.roadstatus.db import session_scope
from app.roadstatus.models import Base, User
from app.roadstatus.modules.organizations.service import create_organization


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setattr(auth, "_login_attempts", defaultdict(list))

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        for role in Role:
            s.add(
                User(
                    email=f"{role.value}@example.com",
                    name=role.value,
                    password_hash=generate_password_hash("pw"),
                    role=role.value,
                )
            )
        create_organization(s, code="RDA", name="Road Development Authority", org_type="national")

    return app.test_client()


def _login(client, role: Role) -> str:
    r = client.post("/auth/login", json={"email": f"{role.value}@example.com", "password": "pw"})
    assert r.status_code == 200
    return r.json["csrfToken"]


def _submit(client, **overrides) -> dict:
    data = {
        "latitude": 6.9271,
        "longitude": 79.8612,
        "damageType": "road_breakage",
        "description": "Large crack across both lanes",
        "anonymousName": "Kamal",
    }
    data.update(overrides)
    r = client.post("/api/v1/reports", json=data)
    assert r.status_code == 201, r.json
    return r.json


def _patch(client, token, report_id, body, suffix=""):
    return client.patch(f"/admin/reports/{report_id}{suffix}", json=body, headers={"X-CSRF-Token": token})


def test_anonymous_submission_and_public_visibility(client):
    report = _submit(client)
    assert report["status"] == "new"
    assert report["classificationStatus"] == "pending"

    # Unverified reports are hidden from the public
    assert client.get(f"/api/v1/reports/{report['id']}").status_code == 404

    token = _login(client, Role.PLANNER)
    assert _patch(client, token, report["id"], {"status": "verified"}).status_code == 200
    client.post("/auth/logout")

    r = client.get(f"/api/v1/reports/{report['id']}")
    assert r.status_code == 200
    assert r.json["status"] == "verified"
    assert "version" not in r.json
    assert "submitterId" not in r.json


def test_submission_validation(client):
    r = client.post("/api/v1/reports", json={"latitude": 6.9, "longitude": 79.8, "damageType": "meteor"})
    assert r.status_code == 400
    assert r.json["error"] == "validation_error"
    assert r.json["details"]["field"] == "damageType"


def test_patch_requires_csrf(client):
    report = _submit(client)
    _login(client, Role.ADMIN)
    r = client.patch(f"/admin/reports/{report['id']}", json={"severity": 4})
    assert r.status_code == 400
    assert r.json["error"] == "csrf_failed"


def test_admin_patch_returns_full_projection(client):
    report = _submit(client)
    token = _login(client, Role.ADMIN)

    r = _patch(
        client,
        token,
        report["id"],
        {"status": "verified", "workflowData": {"progressPercent": 10}, "reason": "Site visit"},
    )

    assert r.status_code == 200
    body = r.json
    assert body["status"] == "verified"
    assert body["workflowData"] == {"progressPercent": 10}
    assert body["version"] == 2
    assert body["allowedTransitions"] == ["in_progress", "new", "rejected"]

    timeline = client.get(f"/admin/reports/{report['id']}/timeline").json["timeline"]
    assert [t["kind"] for t in timeline] == ["change", "change", "created"]
    assert {t["fieldName"] for t in timeline[:2]} == {"status", "workflow.progressPercent"}
    assert timeline[0]["reason"] == "Site visit"
    assert timeline[-1]["actorName"] == "Kamal"


def test_field_officer_cannot_verify(client):
    report = _submit(client)
    token = _login(client, Role.FIELD_OFFICER)

    r = _patch(client, token, report["id"], {"status": "verified"})

    assert r.status_code == 409
    assert r.json["error"] == "transition_not_allowed"
    assert r.json["details"]["current_status"] == "new"
    detail = client.get(f"/admin/reports/{report['id']}").json
    assert detail["status"] == "new"
    assert detail["allowedTransitions"] == ["rejected"]


def test_stakeholder_can_read_but_not_edit(client):
    report = _submit(client)
    token = _login(client, Role.STAKEHOLDER)

    assert client.get("/admin/reports").status_code == 200
    r = _patch(client, token, report["id"], {"severity": 5})
    assert r.status_code == 403
    assert r.json["error"] == "permission_denied"


def test_citizen_has_no_admin_access(client):
    _login(client, Role.CITIZEN)
    r = client.get("/admin/reports")
    assert r.status_code == 403
    assert r.json["error"] == "forbidden"


def test_stale_expected_version(client):
    report = _submit(client)
    token = _login(client, Role.ADMIN)
    assert _patch(client, token, report["id"], {"severity": 3, "expectedVersion": 1}).status_code == 200

    r = _patch(client, token, report["id"], {"severity": 4, "expectedVersion": 1})
    assert r.status_code == 409
    assert r.json["error"] == "concurrent_update"


def test_patch_errors(client):
    report = _submit(client)
    token = _login(client, Role.ADMIN)

    assert _patch(client, token, 9999, {"severity": 3}).status_code == 404
    assert _patch(client, token, report["id"], {"workflowData": "{oops"}).status_code == 400
    r = client.patch(
        f"/admin/reports/{report['id']}",
        data="not json",
        headers={"X-CSRF-Token": token, "Content-Type": "application/json"},
    )
    assert r.status_code == 400


def test_list_filters(client):
    first = _submit(client)
    _submit(client, damageType="flooding")
    token = _login(client, Role.ADMIN)
    _patch(client, token, first["id"], {"status": "verified"})

    r = client.get("/admin/reports?status=verified")
    assert [x["id"] for x in r.json["reports"]] == [first["id"]]
    assert len(client.get("/admin/reports").json["reports"]) == 2
    assert client.get("/admin/reports?status=closed").status_code == 400


def test_classify_and_audit_query(client):
    report = _submit(client)
    token = _login(client, Role.ADMIN)
    orgs = client.get("/admin/organizations").json["organizations"]
    rda = next(o for o in orgs if o["code"] == "RDA")

    r = _patch(client, token, report["id"], {"roadClass": "A", "assignedOrgId": rda["id"]}, suffix="/classify")
    assert r.status_code == 200
    assert r.json["classificationStatus"] == "classified"
    assert r.json["assignedOrgLineage"] == ["RDA"]

    detail = client.get(f"/admin/reports/{report['id']}").json
    assert len(detail["classificationHistory"]) == 1

    entries = client.get(f"/admin/audit?targetType=report&targetId={report['id']}").json["entries"]
    assert {e["fieldName"] for e in entries} == {"roadClass", "assignedOrgId", "classificationStatus"}
    assert all(e["performerName"] == "admin" for e in entries)
    assert entries[0]["metadata"]["source"] == "classification"

    r = _patch(client, token, report["id"], {"reason": "Private road"}, suffix="/unclassifiable")
    assert r.json["classificationStatus"] == "unclassifiable"


def test_planner_cannot_classify(client):
    report = _submit(client)
    token = _login(client, Role.PLANNER)
    r = _patch(client, token, report["id"], {"roadClass": "A", "assignedOrgId": 1}, suffix="/classify")
    assert r.status_code == 403


def test_transition_matrix_endpoint(client):
    _login(client, Role.PLANNER)
    matrix = client.get("/admin/reports/transitions").json["transitions"]
    assert matrix["planner"]["resolved"] == ["in_progress"]
    assert "citizen" not in matrix


def test_user_admin_endpoint(client):
    token = _login(client, Role.ADMIN)
    users = client.get("/admin/users?role=field_officer").json["users"]
    officer = users[0]

    r = client.patch(
        f"/admin/users/{officer['id']}",
        json={"role": "planner", "reason": "Promotion"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 200
    assert r.json["user"]["role"] == "planner"

    entries = client.get(f"/admin/audit?targetType=user&targetId={officer['id']}").json["entries"]
    assert [(e["fieldName"], e["newValue"], e["reason"]) for e in entries] == [("role", "planner", "Promotion")]

    history = client.get(f"/admin/users/{officer['id']}/history").json["history"]
    assert [(h["fieldName"], h["oldValue"], h["newValue"]) for h in history] == [("role", "field_officer", "planner")]
    assert history[0]["actorName"] == "admin"
    assert client.get("/admin/users/9999/history").status_code == 404


def test_my_reports(client):
    assert client.get("/api/v1/reports").status_code == 401
    _submit(client)

    _login(client, Role.CITIZEN)
    mine = _submit(client, description="Pothole outside the school")

    r = client.get("/api/v1/reports")
    assert r.status_code == 200
    assert [x["id"] for x in r.json["reports"]] == [mine["id"]]
    assert mine["submitterId"] is not None
    assert r.json["reports"][0]["submitterId"] == mine["submitterId"]


def test_public_metrics_and_status_counts(client):
    fixed = _submit(client, locationName="Galle Road (Colombo, Western)")
    _submit(client)
    token = _login(client, Role.ADMIN)
    _patch(client, token, fixed["id"], {"status": "in_progress"})
    _patch(client, token, fixed["id"], {"status": "resolved"})

    counts = client.get("/admin/reports").json["statusCounts"]
    assert counts == {"new": 1, "verified": 0, "in_progress": 0, "resolved": 1, "rejected": 0}

    client.post("/auth/logout")
    m = client.get("/api/v1/public/metrics").json
    assert m["summary"] == {"totalReports": 2, "resolved": 1, "inProgress": 0, "pending": 1}
    assert m["performance"]["resolvedThisWeek"] == 1
    assert m["recentResolutions"][0]["district"] == "Colombo"


def test_reject_needs_reason(client):
    report = _submit(client)
    token = _login(client, Role.PLANNER)

    r = _patch(client, token, report["id"], {"status": "rejected"})
    assert r.status_code == 400
    assert r.json["details"]["field"] == "reason"

    r = _patch(client, token, report["id"], {"status": "rejected", "reason": "Duplicate"})
    assert r.status_code == 200
    assert r.json["status"] == "rejected"
