import logging

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_jobs_repo
from app.api.models import JobCreateRequest, JobCreateResponse, JobListResponse, JobStatusResponse
from app.config import Settings, get_settings
from app.core.security import get_current_user_id
from app.services import jobs as job_service
from app.storage.jobs_repo import JobsRepository

router = APIRouter()
logger = logging.getLogger("app.api.routes.jobs")


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_job(  # noqa: B008
  request: JobCreateRequest,
  settings: Settings = Depends(get_settings),  # noqa: B008
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
) -> JobCreateResponse:
  """Queue a story, audio or image generation job for the caller."""
  record = await job_service.create_job(repo, settings, user_id=user_id, job_type=request.job_type, parameters=request.parameters, priority=request.priority)
  return JobCreateResponse(job_id=record.job_id, status=record.status, estimated_completion_at=record.estimated_completion_at)


@router.get("", response_model=JobListResponse)
async def list_jobs(  # noqa: B008
  status_filter: list[str] | None = Query(default=None, alias="status"),  # noqa: B008
  limit: int = Query(default=50, ge=1, le=job_service.MAX_LIST_LIMIT),
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
) -> JobListResponse:
  """List the caller's jobs newest first, optionally filtered by status."""
  records = await job_service.list_jobs(repo, user_id=user_id, statuses=status_filter, limit=limit)
  return JobListResponse(jobs=[job_service.job_status_from_record(record) for record in records], count=len(records))


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(  # noqa: B008
  job_id: str,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
) -> JobStatusResponse:
  """Fetch the status and result of one of the caller's jobs."""
  record = await job_service.get_job(repo, job_id, user_id=user_id)
  return job_service.job_status_from_record(record)


@router.post("/{job_id}/retry", response_model=JobStatusResponse)
async def retry_job(  # noqa: B008
  job_id: str,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
) -> JobStatusResponse:
  """Send a failed job back to the queue with a fresh retry budget."""
  record = await job_service.retry_job(repo, job_id, user_id=user_id)
  return job_service.job_status_from_record(record)


@router.post("/{job_id}/cancel", response_model=JobStatusResponse)
async def cancel_job(  # noqa: B008
  job_id: str,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
) -> JobStatusResponse:
  """Cancel a pending or processing job."""
  record = await job_service.cancel_job(repo, job_id, user_id=user_id)
  return job_service.job_status_from_record(record)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_job(  # noqa: B008
  job_id: str,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  repo: JobsRepository = Depends(get_jobs_repo),  # noqa: B008
) -> Response:
  """Delete a pending job that no worker has claimed yet."""
  await job_service.delete_job(repo, job_id, user_id=user_id)
  return Response(status_code=status.HTTP_204_NO_CONTENT)
