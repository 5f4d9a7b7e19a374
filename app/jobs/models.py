"""Domain models for asynchronous story, audio and image generation jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, get_args

JobStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
JobType = Literal["story_generation", "audio_generation", "image_generation"]

JOB_STATUSES: tuple[JobStatus, ...] = get_args(JobStatus)
JOB_TYPES: tuple[JobType, ...] = get_args(JobType)
ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "processing"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

# Edges of the job lifecycle. failed -> pending is reserved for an explicit user retry and
# processing -> pending for retryable failures, rate-limit deferrals and stall recovery.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
  "pending": frozenset({"processing", "cancelled"}),
  "processing": frozenset({"completed", "failed", "pending", "cancelled"}),
  "failed": frozenset({"pending"}),
  "completed": frozenset(),
  "cancelled": frozenset(),
}


class InvalidTransitionError(RuntimeError):
  """Raised when code attempts a status change outside the job lifecycle."""

  def __init__(self, current: str, target: str) -> None:
    super().__init__(f"Invalid job transition {current} -> {target}")
    self.current = current
    self.target = target


class JobValidationError(ValueError):
  """Raised when job parameters fail type-specific validation."""


class JobAuthorizationError(PermissionError):
  """Raised when a caller identity is missing."""


class JobNotFoundError(LookupError):
  """Raised when a job does not exist or is not owned by the caller."""


class JobStateError(RuntimeError):
  """Raised when a user operation is not valid for the job's current status."""

  def __init__(self, message: str, *, status: str | None = None) -> None:
    super().__init__(message)
    self.status = status


def can_transition(current: str, target: str) -> bool:
  """Return True when `current -> target` is an edge of the job lifecycle."""
  return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
  """Raise InvalidTransitionError for transitions outside the lifecycle."""
  if not can_transition(current, target):
    raise InvalidTransitionError(current, target)


@dataclass
class JobRecord:
  """Represents one background generation job."""

  job_id: str
  user_id: str
  job_type: JobType
  parameters: dict[str, Any]
  status: JobStatus
  priority: int
  created_at: datetime
  updated_at: datetime
  story_id: str | None = None
  result: dict[str, Any] | None = None
  error_message: str | None = None
  error_details: dict[str, Any] | None = None
  retry_count: int = 0
  max_retries: int = 3
  processing_attempts: int = 0
  stall_count: int = 0
  started_at: datetime | None = None
  completed_at: datetime | None = None
  estimated_completion_at: datetime | None = None
  last_heartbeat_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


# UX hint only; creation stamps estimated_completion_at = now + duration.
ESTIMATED_DURATION_SECONDS: dict[str, float] = {"story_generation": 60.0, "audio_generation": 30.0, "image_generation": 15.0}
# Mandatory spacing after a job of this type before the worker picks up another one.
THROTTLE_SECONDS: dict[str, float] = {"story_generation": 0.0, "audio_generation": 30.0, "image_generation": 5.0}
