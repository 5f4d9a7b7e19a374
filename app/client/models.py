"""Wire types the client decodes from the jobs API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import msgspec

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})
ACTIVE_STATUSES = frozenset({"pending", "processing"})


class JobSnapshot(msgspec.Struct, kw_only=True):
  """Last-known client view of one job; unknown server fields are ignored."""

  job_id: str
  job_type: str
  status: str
  created_at: datetime
  updated_at: datetime | None = None
  priority: int = 100
  parameters: dict[str, Any] = msgspec.field(default_factory=dict)
  story_id: str | None = None
  result: dict[str, Any] | None = None
  error_message: str | None = None
  error_details: dict[str, Any] | None = None
  retry_count: int = 0
  max_retries: int = 0
  estimated_completion_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


class JobList(msgspec.Struct):
  jobs: list[JobSnapshot]
  count: int = 0


class JobCreated(msgspec.Struct):
  job_id: str
  status: str
  estimated_completion_at: datetime | None = None


class JobQueueError(Exception):
  """Raised when the jobs API rejects a client operation."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class NotAuthenticatedError(JobQueueError):
  """Raised when no session token is available."""
