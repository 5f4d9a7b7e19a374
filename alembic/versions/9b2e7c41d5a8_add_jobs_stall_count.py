"""Track stale-heartbeat reclaims separately from claims.

Revision ID: 9b2e7c41d5a8
Revises: 4f1c2a9d7e30
Create Date: 2026-10-26 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "9b2e7c41d5a8"
down_revision = "4f1c2a9d7e30"
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.add_column("jobs", sa.Column("stall_count", sa.Integer(), nullable=False, server_default="0"))


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_column("jobs", "stall_count")
