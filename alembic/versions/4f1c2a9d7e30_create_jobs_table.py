"""Create the generation jobs table.

Revision ID: 4f1c2a9d7e30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "4f1c2a9d7e30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("job_type", sa.String(), nullable=False),
    sa.Column("parameters", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), nullable=False, server_default="pending"),
    sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
    sa.Column("story_id", sa.String(), nullable=True),
    sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("error_details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
    sa.Column("processing_attempts", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("estimated_completion_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("job_id"),
    sa.CheckConstraint("status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')", name="ck_jobs_status"),
    sa.CheckConstraint("job_type IN ('story_generation', 'audio_generation', 'image_generation')", name="ck_jobs_job_type"),
    sa.CheckConstraint("retry_count <= max_retries", name="ck_jobs_retry_budget"),
  )
  op.create_index("ix_jobs_user_status", "jobs", ["user_id", "status"], unique=False)
  op.create_index("ix_jobs_status_created", "jobs", ["status", "created_at"], unique=False)
  op.create_index("ix_jobs_type_status", "jobs", ["job_type", "status"], unique=False)
  op.create_index("ix_jobs_priority_created", "jobs", ["priority", "created_at"], unique=False)
  op.create_index("ix_jobs_story_id", "jobs", ["story_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ix_jobs_story_id", table_name="jobs")
  op.drop_index("ix_jobs_priority_created", table_name="jobs")
  op.drop_index("ix_jobs_type_status", table_name="jobs")
  op.drop_index("ix_jobs_status_created", table_name="jobs")
  op.drop_index("ix_jobs_user_status", table_name="jobs")
  op.drop_table("jobs")
