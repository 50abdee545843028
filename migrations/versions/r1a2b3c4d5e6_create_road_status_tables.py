"""Create road status tables.

Revision ID: r1a2b3c4d5e6
Revises:
Create Date: 2026-01-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "r1a2b3c4d5e6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("org_type", sa.String(32), nullable=False),
        sa.Column("parent_org_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["parent_org_id"], ["organizations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("idx_organizations_type", "organizations", ["org_type"])
    op.create_index("idx_organizations_parent", "organizations", ["parent_org_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="citizen"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "damage_reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("report_number", sa.String(32), nullable=False),
        sa.Column("submitter_id", sa.Integer(), nullable=True),
        sa.Column("anonymous_name", sa.String(100), nullable=True),
        sa.Column("anonymous_email", sa.String(320), nullable=True),
        sa.Column("anonymous_contact", sa.String(50), nullable=True),
        sa.Column("source_type", sa.String(32), nullable=False, server_default="citizen"),
        sa.Column("source_channel", sa.String(32), nullable=False, server_default="mobile_web"),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("location_name", sa.String(255), nullable=True),
        sa.Column("damage_type", sa.String(32), nullable=False),
        sa.Column("severity", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("passability_level", sa.String(32), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="new"),
        sa.Column("workflow_data", sa.JSON(), nullable=True),
        sa.Column("road_id", sa.String(64), nullable=True),
        sa.Column("road_class", sa.String(4), nullable=True),
        sa.Column("assigned_org_id", sa.Integer(), nullable=True),
        sa.Column("classification_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("classified_by", sa.Integer(), nullable=True),
        sa.Column("classified_at", sa.DateTime(), nullable=True),
        sa.Column("in_progress_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["submitter_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigned_org_id"], ["organizations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("report_number"),
    )
    op.create_index("idx_reports_status", "damage_reports", ["status"])
    op.create_index("idx_reports_severity", "damage_reports", ["severity"])
    op.create_index("idx_reports_assigned_org", "damage_reports", ["assigned_org_id"])
    op.create_index("idx_reports_classification_status", "damage_reports", ["classification_status"])
    op.create_index("idx_reports_road_class", "damage_reports", ["road_class"])
    op.create_index(
        "idx_reports_org_class_status", "damage_reports", ["assigned_org_id", "classification_status"]
    )
    op.create_index("idx_reports_location", "damage_reports", ["latitude", "longitude"])
    op.create_index("idx_reports_resolved_at", "damage_reports", ["resolved_at"])
    op.create_index("idx_reports_in_progress_at", "damage_reports", ["in_progress_at"])

    op.create_table(
        "classification_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("report_id", sa.Integer(), nullable=False),
        sa.Column("previous_road_class", sa.String(4), nullable=True),
        sa.Column("new_road_class", sa.String(4), nullable=True),
        sa.Column("previous_org_id", sa.Integer(), nullable=True),
        sa.Column("new_org_id", sa.Integer(), nullable=True),
        sa.Column("previous_status", sa.String(32), nullable=True),
        sa.Column("new_status", sa.String(32), nullable=True),
        sa.Column("changed_by", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_classification_history_report", "classification_history", ["report_id"])
    op.create_index("idx_classification_history_created", "classification_history", ["created_at"])

    # No foreign keys: targets and actors are soft references
    op.create_table(
        "audit_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("target_type", sa.String(32), nullable=False),
        sa.Column("target_id", sa.String(64), nullable=False),
        sa.Column("field_name", sa.String(128), nullable=False),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("performed_by", sa.Integer(), nullable=True),
        sa.Column("performer_role", sa.String(32), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_audit_target", "audit_entries", ["target_type", "target_id"])
    op.create_index("idx_audit_field", "audit_entries", ["field_name"])
    op.create_index("idx_audit_performed_by", "audit_entries", ["performed_by"])
    op.create_index("idx_audit_created_at", "audit_entries", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_entries")
    op.drop_table("classification_history")
    op.drop_table("damage_reports")
    op.drop_table("users")
    op.drop_table("organizations")
