from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.roadstatus.constants import Role
from app.roadstatus.utils import utcnow


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=Role.CITIZEN.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    organization_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    @property
    def role_enum(self) -> Role | None:
        try:
            return Role(self.role)
        except ValueError:
            return None

    @property
    def display_name(self) -> str:
        return self.name or self.email


class AuditEntry(Base):
    """
    One immutable field change on any audited entity.

    target_id and performed_by are soft references (no foreign keys) so an
    audit write never fails because the target or actor was removed.
    UPDATE and DELETE are rejected at flush time (see app.roadstatus.audit).
    """

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("idx_audit_target", "target_type", "target_id"),
        Index("idx_audit_field", "field_name"),
        Index("idx_audit_performed_by", "performed_by"),
        Index("idx_audit_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    target_type: Mapped[str] = mapped_column(String(32), nullable=False)  # report/user/invitation/user_organization
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)  # string for flexibility (uuid/int)
    field_name: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "status", "workflow.progressPercent"

    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    performed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)  # null = system
    performer_role: Mapped[str | None] = mapped_column(String(32), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.roadstatus.modules.organizations.models import Organization  # noqa: E402,F401
from app.roadstatus.modules.reports.models import ClassificationHistory, DamageReport  # noqa: E402,F401
