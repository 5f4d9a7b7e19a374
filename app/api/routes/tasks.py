from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status

from app.api.models import WorkerTickResponse
from app.config import Settings, get_settings
from app.jobs.worker import run_worker_tick

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


def require_task_secret(settings: Settings, authorization: str | None, task_secret_header: str | None) -> None:
  """Reject scheduler calls that do not carry the shared task secret."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  expected_auth = f"Bearer {settings.task_secret}"
  # Cloud Scheduler OIDC occupies Authorization, so the dedicated header is checked first.
  shared_secret_valid = secrets.compare_digest((task_secret_header or ""), settings.task_secret)
  bearer_valid = secrets.compare_digest((authorization or ""), expected_auth)
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to /process-jobs")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")


@router.post("/process-jobs", response_model=WorkerTickResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_jobs_task(
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  authorization: str | None = Header(default=None),
  x_monogatari_task_secret: str | None = Header(default=None),
) -> WorkerTickResponse:
  """Scheduler entrypoint: run one worker tick after responding.

  The tick runs in the background so schedulers get a fast 2xx; overlapping ticks are safe because
  claiming is atomic.
  """
  require_task_secret(settings, authorization, x_monogatari_task_secret)
  logger.info("Received worker tick request")
  background_tasks.add_task(run_worker_tick, settings)
  return WorkerTickResponse(status="accepted")
