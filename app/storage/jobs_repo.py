"""Storage interfaces for background jobs."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from app.jobs.models import JobRecord


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  Methods suffixed with `_for_user` act with end-user credentials and only ever touch rows owned by
  `user_id`. Claiming and the post-claim writes act with worker credentials; each post-claim write is
  conditional on the row still being `processing` and returns None when that no longer holds.
  """

  async def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier regardless of owner."""

  async def get_job_for_user(self, job_id: str, *, user_id: str) -> JobRecord | None:
    """Fetch a job only when owned by `user_id`."""

  async def list_jobs_for_user(self, *, user_id: str, statuses: Iterable[str] | None = None, limit: int = 50) -> list[JobRecord]:
    """Return the newest jobs of one user, optionally filtered by status."""

  async def claim_next(self, *, now: datetime, stall_before: datetime) -> JobRecord | None:
    """Atomically claim the next eligible job, or return None when nothing is eligible."""

  async def heartbeat(self, job_id: str, *, now: datetime) -> bool:
    """Refresh last_heartbeat_at of a processing job."""

  async def complete_job(self, job_id: str, *, result: dict[str, Any], now: datetime) -> JobRecord | None:
    """processing -> completed with a result."""

  async def defer_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    """processing -> pending without consuming retry budget."""

  async def requeue_job(self, job_id: str, *, retry_count: int, now: datetime) -> JobRecord | None:
    """processing -> pending after a counted retryable failure."""

  async def fail_job(self, job_id: str, *, error_message: str, error_details: dict[str, Any] | None, now: datetime, retry_count: int | None = None) -> JobRecord | None:
    """processing -> failed with error fields."""

  async def retry_job_for_user(self, job_id: str, *, user_id: str, now: datetime, estimated_completion_at: datetime | None = None) -> JobRecord | None:
    """failed -> pending with counters and error fields cleared."""

  async def cancel_job_for_user(self, job_id: str, *, user_id: str, now: datetime) -> JobRecord | None:
    """pending|processing -> cancelled."""

  async def delete_job_for_user(self, job_id: str, *, user_id: str) -> bool:
    """Hard delete an owned job that has never been claimed."""
