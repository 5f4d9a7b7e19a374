import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from google.api_core import exceptions as gcloud_exceptions
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import get_db_engine
from app.core.firebase import initialize_firebase
from app.core.logging import _initialize_logging
from app.services.storage_client import build_storage_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, Firebase and the media bucket once uvicorn starts."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  _initialize_logging(settings)
  logger.info("Startup: environment=%s pg_dsn=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  initialize_firebase()
  try:
    storage_client = build_storage_client(settings)
    await storage_client.ensure_bucket()
    logger.info("Media bucket ensured: %s", storage_client.bucket_name)
  except (gcloud_exceptions.GoogleAPIError, OSError, ValueError) as exc:
    # Audio and image jobs fail individually until storage is reachable.
    logger.warning("Failed to ensure media bucket at startup: %s", exc)

  await _log_db_state(logger=logger)
  yield


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"


async def _log_db_state(*, logger: logging.Logger) -> None:
  """Log whether the jobs table is reachable."""
  engine = get_db_engine()
  if engine is None:
    logger.warning("Database engine unavailable; job endpoints will fail until MONOGATARI_PG_DSN is set.")
    return

  try:
    async with engine.connect() as connection:
      result = await connection.execute(text("SELECT count(*) FROM jobs WHERE status IN ('pending', 'processing')"))
      active = int(result.scalar_one())
  except SQLAlchemyError as exc:
    logger.warning("Jobs table not reachable at startup (run `alembic upgrade head`): %s", exc)
    return
  logger.info("Runtime DB state active_jobs=%s", active)
