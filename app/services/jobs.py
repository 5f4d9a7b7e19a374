"""Job admission plus the owner-scoped read, retry, cancel and delete operations."""

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from app.api.models import JobStatusResponse
from app.config import Settings
from app.jobs.models import ESTIMATED_DURATION_SECONDS, JOB_STATUSES, JobAuthorizationError, JobNotFoundError, JobRecord, JobStateError, JobValidationError
from app.jobs.validators import validate_job
from app.storage.jobs_repo import JobsRepository
from app.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Job not found."
MAX_LIST_LIMIT = 100


def _utcnow() -> datetime:
  return datetime.now(UTC)


def _require_user(user_id: str | None) -> str:
  if not user_id:
    raise JobAuthorizationError("Authentication is required to manage jobs.")
  return user_id


def estimate_completion(job_type: str, now: datetime) -> datetime:
  """Static per-type estimate; a UX hint, not a promise."""
  return now + timedelta(seconds=ESTIMATED_DURATION_SECONDS.get(job_type, 60.0))


def job_status_from_record(record: JobRecord) -> JobStatusResponse:
  return JobStatusResponse(
    job_id=record.job_id,
    job_type=record.job_type,
    status=record.status,
    priority=record.priority,
    parameters=record.parameters,
    story_id=record.story_id,
    result=record.result,
    error_message=record.error_message,
    error_details=record.error_details,
    retry_count=record.retry_count,
    max_retries=record.max_retries,
    processing_attempts=record.processing_attempts,
    stall_count=record.stall_count,
    created_at=record.created_at,
    updated_at=record.updated_at,
    started_at=record.started_at,
    completed_at=record.completed_at,
    estimated_completion_at=record.estimated_completion_at,
    last_heartbeat_at=record.last_heartbeat_at,
  )


async def create_job(repo: JobsRepository, settings: Settings, *, user_id: str | None, job_type: str, parameters: Any, priority: int | None = None, now: datetime | None = None) -> JobRecord:
  """Validate and persist a new pending job owned by the caller.

  Validation runs before anything is written, so rejected requests never leave a row behind. No
  deduplication is attempted; every successful call inserts exactly one job.
  """
  owner = _require_user(user_id)
  validate_job(job_type, parameters)

  timestamp = now or _utcnow()
  story_id = parameters.get("story_id")
  record = JobRecord(
    job_id=generate_job_id(),
    user_id=owner,
    job_type=job_type,  # type: ignore[arg-type]
    parameters=dict(parameters),
    status="pending",
    priority=settings.job_default_priority if priority is None else int(priority),
    created_at=timestamp,
    updated_at=timestamp,
    story_id=str(story_id) if story_id else None,
    retry_count=0,
    max_retries=settings.job_max_retries,
    processing_attempts=0,
    estimated_completion_at=estimate_completion(job_type, timestamp),
  )
  await repo.create_job(record)
  logger.info("Job created: %s (%s) for user %s priority=%s", record.job_id, job_type, owner, record.priority)
  return record


def _parse_statuses(statuses: Iterable[str] | None) -> list[str] | None:
  if statuses is None:
    return None
  parsed: list[str] = []
  for raw in statuses:
    # Accept both repeated query params and comma separated values.
    for item in str(raw).split(","):
      value = item.strip()
      if not value:
        continue
      if value not in JOB_STATUSES:
        raise JobValidationError(f"Unknown job status: {value}")
      parsed.append(value)
  return parsed or None


async def list_jobs(repo: JobsRepository, *, user_id: str | None, statuses: Iterable[str] | None = None, limit: int = 50) -> list[JobRecord]:
  owner = _require_user(user_id)
  if limit < 1 or limit > MAX_LIST_LIMIT:
    raise JobValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
  return await repo.list_jobs_for_user(user_id=owner, statuses=_parse_statuses(statuses), limit=limit)


async def get_job(repo: JobsRepository, job_id: str, *, user_id: str | None) -> JobRecord:
  owner = _require_user(user_id)
  record = await repo.get_job_for_user(job_id, user_id=owner)
  if record is None:
    raise JobNotFoundError(_JOB_NOT_FOUND_MSG)
  return record


async def retry_job(repo: JobsRepository, job_id: str, *, user_id: str | None, now: datetime | None = None) -> JobRecord:
  """failed -> pending with retry_count, attempts and error fields cleared."""
  owner = _require_user(user_id)
  timestamp = now or _utcnow()
  existing = await get_job(repo, job_id, user_id=owner)
  updated = await repo.retry_job_for_user(job_id, user_id=owner, now=timestamp, estimated_completion_at=estimate_completion(existing.job_type, timestamp))
  if updated is None:
    # Re-read so the error reflects the state that made the conditional update miss.
    current = await get_job(repo, job_id, user_id=owner)
    raise JobStateError(f"Only failed jobs can be retried (status={current.status}).", status=current.status)
  logger.info("Job %s reset to pending by user %s", job_id, owner)
  return updated


async def cancel_job(repo: JobsRepository, job_id: str, *, user_id: str | None, now: datetime | None = None) -> JobRecord:
  """pending|processing -> cancelled. An in-flight producer call is not interrupted; its result is dropped."""
  owner = _require_user(user_id)
  updated = await repo.cancel_job_for_user(job_id, user_id=owner, now=now or _utcnow())
  if updated is None:
    current = await get_job(repo, job_id, user_id=owner)
    raise JobStateError(f"Only pending or processing jobs can be cancelled (status={current.status}).", status=current.status)
  logger.info("Job %s cancelled by user %s", job_id, owner)
  return updated


async def delete_job(repo: JobsRepository, job_id: str, *, user_id: str | None) -> None:
  """Hard delete a job no worker has touched yet."""
  owner = _require_user(user_id)
  deleted = await repo.delete_job_for_user(job_id, user_id=owner)
  if not deleted:
    current = await get_job(repo, job_id, user_id=owner)
    raise JobStateError(f"Only unclaimed pending jobs can be deleted (status={current.status}).", status=current.status)
  logger.info("Job %s deleted by user %s", job_id, owner)
