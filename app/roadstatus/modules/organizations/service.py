from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.roadstatus.constants import OrgType
from app.roadstatus.errors import NotFound, ValidationError
from app.roadstatus.modules.organizations.models import Organization

logger = logging.getLogger(__name__)

# Hierarchies are shallow (ministry -> authority -> division); anything deeper is bad data
MAX_ORG_DEPTH = 32


def get_organization(s: Session, org_id: int) -> Organization:
    org = s.get(Organization, org_id)
    if not org:
        raise NotFound("Organization", org_id)
    return org


def list_organizations(s: Session, *, org_type: OrgType | None = None) -> list[Organization]:
    q = s.query(Organization)
    if org_type is not None:
        q = q.filter(Organization.org_type == OrgType(org_type).value)
    return q.order_by(Organization.name.asc()).all()


def create_organization(
    s: Session,
    *,
    code: str,
    name: str,
    org_type: str,
    parent_org_id: int | None = None,
) -> Organization:
    code = (code or "").strip().upper()
    name = (name or "").strip()
    if not code or not name:
        raise ValidationError("code and name are required")
    try:
        org_type = OrgType(org_type).value
    except ValueError:
        raise ValidationError(f"Unknown organization type: {org_type!r}") from None
    if parent_org_id is not None:
        get_organization(s, parent_org_id)
    if s.query(Organization).filter(Organization.code == code).one_or_none():
        raise ValidationError(f"Organization code already exists: {code}")

    org = Organization(code=code, name=name, org_type=org_type, parent_org_id=parent_org_id)
    s.add(org)
    s.flush()
    return org


def org_ancestors(s: Session, org_id: int) -> list[Organization]:
    """
    Parents of ``org_id``, nearest first.

    Stops at the first repeated id so a corrupted parent cycle ends the walk
    instead of looping.
    """
    out: list[Organization] = []
    seen: set[int] = {org_id}
    current = s.get(Organization, org_id)
    while current is not None and current.parent_org_id is not None:
        parent_id = current.parent_org_id
        if parent_id in seen or len(out) >= MAX_ORG_DEPTH:
            logger.warning("Organization hierarchy cycle or overflow at org_id=%s (parent=%s)", current.id, parent_id)
            break
        seen.add(parent_id)
        current = s.get(Organization, parent_id)
        if current is not None:
            out.append(current)
    return out


def org_lineage_codes(s: Session, org_id: int | None) -> list[str]:
    """Codes from the organization up to the root, e.g. ["PRDA-WP", "MOH"]."""
    if org_id is None:
        return []
    org = s.get(Organization, org_id)
    if org is None:
        return []
    return [org.code] + [a.code for a in org_ancestors(s, org_id)]


def serialize_organization(s: Session, org: Organization) -> dict:
    return {
        "id": org.id,
        "code": org.code,
        "name": org.name,
        "orgType": org.org_type,
        "parentOrgId": org.parent_org_id,
        "lineage": org_lineage_codes(s, org.id),
    }
