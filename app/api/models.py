from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from app.jobs.models import JobStatus, JobType


class JobCreateRequest(BaseModel):
  """Request payload for creating a background job."""

  # Kept as a plain string so unknown types surface as job validation errors (400), not schema errors.
  job_type: StrictStr = Field(min_length=1, description="story_generation, audio_generation or image_generation.", examples=["story_generation"])
  parameters: dict[str, Any] = Field(default_factory=dict, description="Type-specific parameters; immutable after creation.", examples=[{"topic": "A cat who loves sushi", "level": "N4", "length": "short"}])
  priority: StrictInt | None = Field(default=None, ge=0, le=1000, description="Lower runs first; defaults to the service default priority.")
  model_config = ConfigDict(extra="forbid")


class JobCreateResponse(BaseModel):
  """Response payload for job creation."""

  job_id: StrictStr
  status: JobStatus
  estimated_completion_at: datetime | None = None


class JobStatusResponse(BaseModel):
  """Status payload for a background job."""

  job_id: StrictStr
  job_type: JobType
  status: JobStatus
  priority: StrictInt
  parameters: dict[str, Any]
  story_id: StrictStr | None = None
  result: dict[str, Any] | None = None
  error_message: StrictStr | None = None
  error_details: dict[str, Any] | None = None
  retry_count: StrictInt = 0
  max_retries: StrictInt = 0
  processing_attempts: StrictInt = 0
  stall_count: StrictInt = 0
  created_at: datetime
  updated_at: datetime
  started_at: datetime | None = None
  completed_at: datetime | None = None
  estimated_completion_at: datetime | None = None
  last_heartbeat_at: datetime | None = None
  model_config = ConfigDict(populate_by_name=True)


class JobListResponse(BaseModel):
  """Newest-first listing of the caller's jobs."""

  jobs: list[JobStatusResponse]
  count: StrictInt


class WorkerTickResponse(BaseModel):
  status: StrictStr
