"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Monogatari jobs service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  task_secret: str | None
  job_default_priority: int
  job_max_retries: int
  job_stall_seconds: int
  job_heartbeat_seconds: int
  job_max_stalls: int
  worker_jobs_per_tick: int
  worker_max_backoff_seconds: int
  gemini_api_key: str | None
  story_model: str
  tts_model: str
  image_base_url: str
  image_model: str
  image_api_key: str | None
  media_bucket: str
  gcs_storage_host: str | None
  gcp_project_id: str | None
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  origins = [origin.strip() for origin in (raw or "http://localhost:5173").split(",") if origin.strip()]

  if not origins:
    raise ValueError("MONOGATARI_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("MONOGATARI_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("MONOGATARI_ENV", "development").lower()
  debug = _parse_bool(os.getenv("MONOGATARI_DEBUG"))

  log_max_bytes = _positive_int("MONOGATARI_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("MONOGATARI_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("MONOGATARI_LOG_BACKUP_COUNT must be zero or a positive integer.")

  job_default_priority = int(os.getenv("MONOGATARI_JOB_DEFAULT_PRIORITY", "100"))
  job_max_retries = int(os.getenv("MONOGATARI_JOB_MAX_RETRIES", "3"))
  if job_max_retries < 0:
    raise ValueError("MONOGATARI_JOB_MAX_RETRIES must be zero or a positive integer.")

  # A heartbeat slower than the stall threshold would let healthy jobs be reclaimed.
  job_stall_seconds = _positive_int("MONOGATARI_JOB_STALL_SECONDS", "300")
  job_heartbeat_seconds = _positive_int("MONOGATARI_JOB_HEARTBEAT_SECONDS", "30")
  if job_heartbeat_seconds >= job_stall_seconds:
    raise ValueError("MONOGATARI_JOB_HEARTBEAT_SECONDS must be smaller than MONOGATARI_JOB_STALL_SECONDS.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("MONOGATARI_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("MONOGATARI_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("MONOGATARI_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("MONOGATARI_PG_CONNECT_TIMEOUT", "5"),
    task_secret=_optional_str(os.getenv("MONOGATARI_TASK_SECRET")),
    job_default_priority=job_default_priority,
    job_max_retries=job_max_retries,
    job_stall_seconds=job_stall_seconds,
    job_heartbeat_seconds=job_heartbeat_seconds,
    job_max_stalls=_positive_int("MONOGATARI_JOB_MAX_STALLS", "5"),
    worker_jobs_per_tick=_positive_int("MONOGATARI_WORKER_JOBS_PER_TICK", "1"),
    worker_max_backoff_seconds=_positive_int("MONOGATARI_WORKER_MAX_BACKOFF_SECONDS", "60"),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    story_model=os.getenv("MONOGATARI_STORY_MODEL", "gemini-2.5-flash-lite"),
    tts_model=os.getenv("MONOGATARI_TTS_MODEL", "gemini-2.5-flash-preview-tts"),
    image_base_url=(os.getenv("MONOGATARI_IMAGE_BASE_URL") or "https://gen.pollinations.ai").strip().rstrip("/"),
    image_model=os.getenv("MONOGATARI_IMAGE_MODEL", "zimage"),
    image_api_key=_optional_str(os.getenv("POLLINATIONS_API_KEY")),
    media_bucket=os.getenv("MONOGATARI_MEDIA_BUCKET", "monogatari-media"),
    gcs_storage_host=_optional_str(os.getenv("GCS_STORAGE_HOST")),
    gcp_project_id=_optional_str(os.getenv("GCP_PROJECT_ID")),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  debug = _parse_bool(os.getenv("MONOGATARI_DEBUG"))
  pg_connect_timeout = _positive_int("MONOGATARI_PG_CONNECT_TIMEOUT", "5")

  # Support fallback to DATABASE_URL for hosted Postgres providers.
  pg_dsn = os.getenv("MONOGATARI_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
