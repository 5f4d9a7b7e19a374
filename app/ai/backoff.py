"""Retry-after hint parsing and HTTP failure classification for content producers."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from app.ai.providers.base import ProviderError, RateLimitedError, TerminalProviderError, TransientProviderError

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")
_MESSAGE_PATTERN = re.compile(r"retry in\s+(\d+(?:\.\d+)?)\s*(ms|s)\b", re.IGNORECASE)
# Statuses worth another attempt; everything else in 4xx is the caller's fault.
_TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 500, 502, 503, 504})


def parse_duration(raw: Any) -> float | None:
  """Parse a protobuf duration such as "12s" or "0.5s"."""
  if isinstance(raw, int | float) and not isinstance(raw, bool):
    return float(raw) if raw >= 0 else None
  if not isinstance(raw, str):
    return None
  match = _DURATION_PATTERN.match(raw)
  if match is None:
    return None
  return float(match.group(1))


def parse_retry_after_header(raw: str | None, *, now: datetime | None = None) -> float | None:
  """Parse an HTTP Retry-After header in delta-seconds or HTTP-date form."""
  if raw is None or raw.strip() == "":
    return None
  value = raw.strip()
  if value.isdigit():
    return float(value)
  try:
    target = parsedate_to_datetime(value)
  except (TypeError, ValueError):
    return None
  if target.tzinfo is None:
    target = target.replace(tzinfo=UTC)
  reference = now or datetime.now(UTC)
  return max(0.0, (target - reference).total_seconds())


def retry_delay_from_details(payload: Any) -> float | None:
  """Find a RetryInfo.retryDelay in a Google API error payload."""
  if not isinstance(payload, dict):
    return None
  error = payload.get("error", payload)
  if not isinstance(error, dict):
    return None
  for entry in error.get("details") or []:
    if isinstance(entry, dict) and entry.get("@type") == _RETRY_INFO_TYPE:
      return parse_duration(entry.get("retryDelay"))
  return None


def retry_delay_from_message(message: str | None) -> float | None:
  """Last-resort hint extraction from messages like "Please retry in 12.5s."."""
  if not message:
    return None
  match = _MESSAGE_PATTERN.search(message)
  if match is None:
    return None
  value = float(match.group(1))
  if match.group(2).lower() == "ms":
    return value / 1000.0
  return value


def classify_status(status_code: int, message: str, *, retry_after: float | None = None, details: dict[str, Any] | None = None) -> ProviderError:
  """Map an HTTP-style status code onto the provider failure taxonomy."""
  if status_code == 429:
    return RateLimitedError(message, retry_after=retry_after, details=details)
  if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
    return TransientProviderError(message, details=details)
  return TerminalProviderError(message, details=details)
