from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.roadstatus.models import Base
from app.roadstatus.utils import utcnow


class DamageReport(Base):
    __tablename__ = "damage_reports"
    __table_args__ = (
        Index("idx_reports_status", "status"),
        Index("idx_reports_severity", "severity"),
        Index("idx_reports_assigned_org", "assigned_org_id"),
        Index("idx_reports_classification_status", "classification_status"),
        Index("idx_reports_road_class", "road_class"),
        Index("idx_reports_org_class_status", "assigned_org_id", "classification_status"),
        Index("idx_reports_location", "latitude", "longitude"),
        Index("idx_reports_resolved_at", "resolved_at"),
        Index("idx_reports_in_progress_at", "in_progress_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)  # e.g. "CR-20260118-7QX2KD"

    # Submitter (anonymous submissions have no user)
    submitter_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    anonymous_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    anonymous_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    anonymous_contact: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_type: Mapped[str] = mapped_column(String(32), nullable=False, default="citizen")  # citizen/field_officer/other_agency
    source_channel: Mapped[str] = mapped_column(String(32), nullable=False, default="mobile_web")  # web/mobile_web/bulk_upload

    # Location
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Damage details
    damage_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False, default=2)  # 1-5
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    passability_level: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Lifecycle: new -> verified -> in_progress -> resolved (rejected from anywhere, corrections allowed)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="new")

    # Workflow document: progressPercent, estimatedCostLkr, notes, extension keys
    workflow_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Classification
    road_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    road_class: Mapped[str | None] = mapped_column(String(4), nullable=True)  # A/B/C/D/E
    assigned_org_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    classification_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    classified_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    classified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # First time the report reached these statuses (never overwritten)
    in_progress_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Compare-and-swap counter, bumped by SQLAlchemy on every UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __mapper_args__ = {"version_id_col": version}


class ClassificationHistory(Base):
    """Append-only record of each classification decision on a report."""

    __tablename__ = "classification_history"
    __table_args__ = (
        Index("idx_classification_history_report", "report_id"),
        Index("idx_classification_history_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    report_id: Mapped[int] = mapped_column(Integer, nullable=False)

    previous_road_class: Mapped[str | None] = mapped_column(String(4), nullable=True)
    new_road_class: Mapped[str | None] = mapped_column(String(4), nullable=True)
    previous_org_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_org_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)

    changed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
