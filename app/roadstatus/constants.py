"""
Central constants for the Road Status application.

Closed vocabularies are `str` enums so they serialize as their value and an
unknown value fails at construction (``ReportStatus("closed")`` raises).
"""
from __future__ import annotations

from enum import Enum


class ReportStatus(str, Enum):
    NEW = "new"
    VERIFIED = "verified"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class Role(str, Enum):
    CITIZEN = "citizen"
    FIELD_OFFICER = "field_officer"
    PLANNER = "planner"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    STAKEHOLDER = "stakeholder"


class DamageType(str, Enum):
    TREE_FALL = "tree_fall"
    BRIDGE_COLLAPSE = "bridge_collapse"
    LANDSLIDE = "landslide"
    FLOODING = "flooding"
    ROAD_BREAKAGE = "road_breakage"
    WASHOUT = "washout"
    COLLAPSE = "collapse"
    CRACKING = "cracking"
    EROSION = "erosion"
    BLOCKAGE = "blockage"
    TRACK_MISALIGNMENT = "track_misalignment"
    OTHER = "other"


# Ordered from least passable to most passable
class PassabilityLevel(str, Enum):
    UNPASSABLE = "unpassable"
    FOOT = "foot"
    BIKE = "bike"
    THREE_WHEELER = "3wheeler"
    CAR = "car"
    BUS = "bus"
    TRUCK = "truck"


class RoadClass(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"


class ClassificationStatus(str, Enum):
    PENDING = "pending"
    LEGACY = "legacy"
    CLASSIFIED = "classified"
    UNCLASSIFIABLE = "unclassifiable"


class OrgType(str, Enum):
    NATIONAL = "national"
    PROVINCIAL = "provincial"
    LOCAL = "local"


class AuditTargetType(str, Enum):
    REPORT = "report"
    USER = "user"
    INVITATION = "invitation"
    USER_ORGANIZATION = "user_organization"


# Roles that can see reports but never change them
READ_ONLY_ROLES = frozenset({Role.CITIZEN, Role.STAKEHOLDER})

# Roles allowed to classify reports and administer users
ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

# Road class -> organization type responsible for it
ROAD_CLASS_ORG_TYPE = {
    RoadClass.A: OrgType.NATIONAL,
    RoadClass.B: OrgType.NATIONAL,
    RoadClass.E: OrgType.NATIONAL,
    RoadClass.C: OrgType.PROVINCIAL,
    RoadClass.D: OrgType.PROVINCIAL,
}

SEVERITY_MIN = 1
SEVERITY_MAX = 5
DEFAULT_CITIZEN_SEVERITY = 2


def parse_enum(enum_cls: type[Enum], value: object) -> Enum | None:
    """Return the member for ``value`` or None when it is not a member."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (TypeError, ValueError):
        return None
