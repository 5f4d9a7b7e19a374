"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends

from app.config import Settings, get_settings
from app.storage.factory import _get_jobs_repo
from app.storage.jobs_repo import JobsRepository


def get_jobs_repo(settings: Settings = Depends(get_settings)) -> JobsRepository:  # noqa: B008
  """Dependency returning the configured jobs repository."""
  return _get_jobs_repo(settings)
