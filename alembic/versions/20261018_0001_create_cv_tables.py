"""create cv, profile and activity tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "cv_documents",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("template", sa.String(length=32), nullable=False, server_default=sa.text("'modern'")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("cv_language", sa.String(length=8), nullable=False, server_default=sa.text("'tr'")),
        sa.Column("content", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_cv_documents_owner_created",
        "cv_documents",
        ["owner_id", "created_at"],
        unique=False,
    )
    op.create_index("idx_cv_documents_status", "cv_documents", ["status"], unique=False)

    op.create_table(
        "user_profiles",
        sa.Column("principal_id", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("phone", sa.String(length=16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("principal_id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "activity_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("principal_id", sa.String(length=255), nullable=False),
        sa.Column("activity_type", sa.String(length=32), nullable=False),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "activity_type IN ('cv_create', 'cv_view', 'cv_edit', 'cv_delete', 'profile_update')",
            name="ck_activity_events_type",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_activity_events_principal_created",
        "activity_events",
        ["principal_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_activity_events_principal_created", table_name="activity_events")
    op.drop_table("activity_events")
    op.drop_table("user_profiles")
    op.drop_index("idx_cv_documents_status", table_name="cv_documents")
    op.drop_index("idx_cv_documents_owner_created", table_name="cv_documents")
    op.drop_table("cv_documents")
