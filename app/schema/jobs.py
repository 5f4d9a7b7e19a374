from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

# JSONB on Postgres, plain JSON elsewhere so the same model runs against SQLite in tests.
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Job(Base):
  __tablename__ = "jobs"
  __table_args__ = (
    Index("ix_jobs_user_status", "user_id", "status"),
    Index("ix_jobs_status_created", "status", "created_at"),
    Index("ix_jobs_type_status", "job_type", "status"),
    Index("ix_jobs_priority_created", "priority", "created_at"),
    CheckConstraint("status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')", name="ck_jobs_status"),
    CheckConstraint("job_type IN ('story_generation', 'audio_generation', 'image_generation')", name="ck_jobs_job_type"),
    CheckConstraint("retry_count <= max_retries", name="ck_jobs_retry_budget"),
  )

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False)
  job_type: Mapped[str] = mapped_column(String, nullable=False)
  parameters: Mapped[dict] = mapped_column(JsonType, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
  story_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  result: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_details: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
  retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
  processing_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  # Reclaims of a stale processing row; only this counter feeds the stall cap.
  stall_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  estimated_completion_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  last_heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
