from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.roadstatus.models import Base
from app.roadstatus.utils import utcnow


class Organization(Base):
    __tablename__ = "organizations"
    __table_args__ = (
        Index("idx_organizations_type", "org_type"),
        Index("idx_organizations_parent", "parent_org_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "RDA", "PRDA-WP"
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    org_type: Mapped[str] = mapped_column(String(32), nullable=False)  # national/provincial/local

    # Plain parent id; the hierarchy is walked iteratively, never loaded as a tree
    parent_org_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
