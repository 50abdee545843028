import pytest
from werkzeug.security import generate_password_hash

from app.roadstatus import create_app
from app.roadstatus.audit import query_entries
from app.roadstatus.constants import AuditTargetType, Role
from app.roadstatus.db import session_scope
from app.roadstatus.errors import PermissionDenied, ValidationError
from app.roadstatus.models import Base, User
from app.roadstatus.modules.organizations.models import Organization
from app.roadstatus.modules.organizations.service import create_organization
from app.roadstatus.modules.users.service import list_users, update_user


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        for email, role in (
            ("root@example.com", Role.SUPER_ADMIN),
            ("admin@example.com", Role.ADMIN),
            ("officer@example.com", Role.FIELD_OFFICER),
        ):
            s.add(User(email=email, password_hash=generate_password_hash("pw"), role=role.value))
        create_organization(s, code="RDA", name="Road Development Authority", org_type="national")
    return app


@pytest.fixture()
def s(app):
    with app.app_context():
        session = app.extensions["sqlalchemy_sessionmaker"]()
        try:
            yield session
        finally:
            session.close()


def _user(s, email):
    return s.query(User).filter(User.email == email).one()


def test_admin_promotes_officer(s):
    admin = _user(s, "admin@example.com")
    officer = _user(s, "officer@example.com")

    updated = update_user(s, officer.id, {"role": "planner"}, admin, reason="Promotion")

    assert updated.role == "planner"
    (entry,) = query_entries(s, AuditTargetType.USER, officer.id)
    assert (entry.field_name, entry.old_value, entry.new_value) == ("role", "field_officer", "planner")
    assert entry.performed_by == admin.id
    assert entry.reason == "Promotion"


def test_membership_change_uses_its_own_target_type(s):
    admin = _user(s, "admin@example.com")
    officer = _user(s, "officer@example.com")
    rda_id = s.query(Organization).one().id
    update_user(s, officer.id, {"organizationId": rda_id, "isActive": False}, admin)

    (membership,) = query_entries(s, AuditTargetType.USER_ORGANIZATION, officer.id)
    assert (membership.old_value, membership.new_value) == (None, str(rda_id))
    (active,) = query_entries(s, AuditTargetType.USER, officer.id)
    assert (active.field_name, active.old_value, active.new_value) == ("isActive", "true", "false")


def test_noop_user_update_writes_nothing(s):
    admin = _user(s, "admin@example.com")
    officer = _user(s, "officer@example.com")
    update_user(s, officer.id, {"role": "field_officer", "isActive": True}, admin)
    assert query_entries(s, AuditTargetType.USER, officer.id) == []


def test_super_admin_guards(s):
    admin = _user(s, "admin@example.com")
    root = _user(s, "root@example.com")
    officer = _user(s, "officer@example.com")

    with pytest.raises(PermissionDenied):
        update_user(s, officer.id, {"role": "super_admin"}, admin)
    with pytest.raises(PermissionDenied):
        update_user(s, root.id, {"isActive": False}, admin)
    with pytest.raises(PermissionDenied):
        update_user(s, admin.id, {"isActive": False}, admin)
    with pytest.raises(PermissionDenied):
        update_user(s, admin.id, {"role": "planner"}, officer)

    assert update_user(s, admin.id, {"role": "planner"}, root).role == "planner"


def test_user_update_validation(s):
    admin = _user(s, "admin@example.com")
    officer = _user(s, "officer@example.com")
    with pytest.raises(ValidationError):
        update_user(s, officer.id, {"role": "mayor"}, admin)
    with pytest.raises(ValidationError):
        update_user(s, officer.id, {"isActive": "no"}, admin)
    with pytest.raises(ValidationError):
        list_users(s, role="mayor")
    assert [u.email for u in list_users(s, role="admin")] == ["admin@example.com"]
