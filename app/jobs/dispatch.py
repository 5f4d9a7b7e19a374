"""Static job-type dispatch for the worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from app.jobs.models import JobRecord


class UnsupportedJobTypeError(ValueError):
  """Raised when no handler is registered for a job type."""


class JobHandler(Protocol):
  """Contract implemented once per job type."""

  job_type: str

  def validate(self, parameters: dict[str, Any]) -> None:
    """Raise JobValidationError when parameters are unusable."""

  async def execute(self, job: JobRecord) -> dict[str, Any]:
    """Run the content producer for one claimed job and return its result payload."""


@dataclass(frozen=True)
class JobProcessResult:
  """Result wrapper returned by the central dispatch function."""

  job_id: str
  result: dict[str, Any]


class JobHandlerRegistry:
  """Registry mapping job types to handlers."""

  def __init__(self, handlers: dict[str, JobHandler]) -> None:
    self._handlers = dict(handlers)

  def resolve(self, job_type: str) -> JobHandler:
    """Resolve the handler for a job type."""
    handler = self._handlers.get(job_type)
    if handler is None:
      raise UnsupportedJobTypeError(f"Unsupported job type: {job_type}")
    return handler

  @property
  def job_types(self) -> tuple[str, ...]:
    return tuple(self._handlers)


async def process_job(job: JobRecord, registry: JobHandlerRegistry) -> JobProcessResult:
  """Re-validate a claimed job and run its handler."""
  handler = registry.resolve(job.job_type)
  # Parameters are immutable after admission, but validators may have tightened since.
  handler.validate(job.parameters)
  result = await handler.execute(job)
  return JobProcessResult(job_id=job.job_id, result=result)
