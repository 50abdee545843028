import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.roadstatus.constants import OrgType, Role  # noqa: E402
from app.roadstatus.models import User  # noqa: E402
from app.roadstatus.modules.organizations.models import Organization  # noqa: E402

# (code, name, type, parent code)
DEFAULT_ORGANIZATIONS = [
    ("MOH", "Ministry of Highways", OrgType.NATIONAL, None),
    ("RDA", "Road Development Authority", OrgType.NATIONAL, "MOH"),
    ("PRDA-WP", "Provincial Road Development Authority - Western", OrgType.PROVINCIAL, None),
    ("PRDA-CP", "Provincial Road Development Authority - Central", OrgType.PROVINCIAL, None),
    ("PRDA-SP", "Provincial Road Development Authority - Southern", OrgType.PROVINCIAL, None),
]


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_organizations(s: Session) -> None:
    by_code: dict[str, Organization] = {o.code: o for o in s.query(Organization).all()}
    for code, name, org_type, parent_code in DEFAULT_ORGANIZATIONS:
        if code in by_code:
            continue
        parent = by_code.get(parent_code) if parent_code else None
        org = Organization(code=code, name=name, org_type=org_type.value, parent_org_id=parent.id if parent else None)
        s.add(org)
        s.flush()
        by_code[code] = org


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed organizations and the super admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@roadstatus.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///roadstatus.db").strip()

    # Direct engine/session so release can run this without building the app.
    with _session_scope(db_url) as s:
        seed_organizations(s)

        u = s.query(User).filter(User.email == admin_email).one_or_none()
        if not u:
            u = User(
                email=admin_email,
                name="Administrator",
                password_hash=generate_password_hash(admin_password),
                role=Role.SUPER_ADMIN.value,
                is_active=True,
            )
            s.add(u)
        elif u.role != Role.SUPER_ADMIN.value:
            u.role = Role.SUPER_ADMIN.value


def main() -> None:
    seed_only()
    print("Seed complete.")


if __name__ == "__main__":
    main()
