"""Create draft_interventions and draft_photos

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "draft_interventions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("intervention_type", sa.String(32), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("client_ref", sa.String(64), nullable=True),
        sa.Column("site_ref", sa.String(64), nullable=True),
        sa.Column("vehicle_ref", sa.String(64), nullable=True),
        sa.Column("agent_id", sa.String(64), nullable=True),
        sa.Column("current_step", sa.Integer(), nullable=False),
        sa.Column("sync_state", sa.String(16), nullable=False),
        sa.Column("sync_failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_draft_interventions_intervention_type", "draft_interventions", ["intervention_type"]
    )
    op.create_index("ix_draft_interventions_sync_state", "draft_interventions", ["sync_state"])
    op.create_index("ix_draft_interventions_created_at", "draft_interventions", ["created_at"])
    op.create_index("ix_draft_interventions_expires_at", "draft_interventions", ["expires_at"])

    op.create_table(
        "draft_photos",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "draft_id",
            sa.String(64),
            sa.ForeignKey("draft_interventions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("photo_key", sa.String(64), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(64), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_draft_photos_draft_id", "draft_photos", ["draft_id"])


def downgrade() -> None:
    op.drop_index("ix_draft_photos_draft_id", table_name="draft_photos")
    op.drop_table("draft_photos")
    for column in ("expires_at", "created_at", "sync_state", "intervention_type"):
        op.drop_index(f"ix_draft_interventions_{column}", table_name="draft_interventions")
    op.drop_table("draft_interventions")
