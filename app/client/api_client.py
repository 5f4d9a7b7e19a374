"""Async HTTP client for the jobs API."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

import httpx
import msgspec

from app.client.models import JobCreated, JobList, JobQueueError, JobSnapshot, NotAuthenticatedError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]

_JOB_DECODER = msgspec.json.Decoder(JobSnapshot)
_LIST_DECODER = msgspec.json.Decoder(JobList)
_CREATED_DECODER = msgspec.json.Decoder(JobCreated)


class JobsBackend(Protocol):
  """What the queue manager needs from the server; the HTTP client is one implementation."""

  async def has_session(self) -> bool: ...

  async def list_jobs(self, *, statuses: Iterable[str] | None = None, limit: int = 50) -> list[JobSnapshot]: ...

  async def create_job(self, job_type: str, parameters: dict[str, Any], priority: int | None = None) -> JobCreated: ...

  async def retry_job(self, job_id: str) -> JobSnapshot: ...

  async def cancel_job(self, job_id: str) -> JobSnapshot: ...


def _error_detail(response: httpx.Response) -> str:
  try:
    payload = response.json()
  except ValueError:
    return response.text or response.reason_phrase
  if isinstance(payload, dict) and payload.get("detail"):
    detail = payload["detail"]
    return detail if isinstance(detail, str) else str(detail)
  return response.reason_phrase


class JobsApiClient:
  """Thin wrapper over `/v1/jobs` that attaches the session's bearer token."""

  def __init__(self, base_url: str, token_provider: TokenProvider, *, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._token_provider = token_provider
    self._timeout = timeout
    self._transport = transport
    self._client: httpx.AsyncClient | None = None

  def _get_client(self) -> httpx.AsyncClient:
    if self._client is None:
      self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)
    return self._client

  async def has_session(self) -> bool:
    return bool(await self._token_provider())

  async def _request(self, method: str, path: str, *, params: Any = None, json: Any = None) -> httpx.Response:
    token = await self._token_provider()
    if not token:
      raise NotAuthenticatedError("No active session.")
    response = await self._get_client().request(method, path, params=params, json=json, headers={"Authorization": f"Bearer {token}"})
    if response.is_error:
      raise JobQueueError(_error_detail(response), status_code=response.status_code)
    return response

  async def list_jobs(self, *, statuses: Iterable[str] | None = None, limit: int = 50) -> list[JobSnapshot]:
    params: list[tuple[str, Any]] = [("limit", limit)]
    params.extend(("status", status) for status in statuses or ())
    response = await self._request("GET", "/v1/jobs", params=params)
    return _LIST_DECODER.decode(response.content).jobs

  async def get_job(self, job_id: str) -> JobSnapshot:
    response = await self._request("GET", f"/v1/jobs/{job_id}")
    return _JOB_DECODER.decode(response.content)

  async def create_job(self, job_type: str, parameters: dict[str, Any], priority: int | None = None) -> JobCreated:
    payload: dict[str, Any] = {"job_type": job_type, "parameters": parameters}
    if priority is not None:
      payload["priority"] = priority
    response = await self._request("POST", "/v1/jobs", json=payload)
    return _CREATED_DECODER.decode(response.content)

  async def retry_job(self, job_id: str) -> JobSnapshot:
    response = await self._request("POST", f"/v1/jobs/{job_id}/retry")
    return _JOB_DECODER.decode(response.content)

  async def cancel_job(self, job_id: str) -> JobSnapshot:
    response = await self._request("POST", f"/v1/jobs/{job_id}/cancel")
    return _JOB_DECODER.decode(response.content)

  async def aclose(self) -> None:
    if self._client is not None:
      await self._client.aclose()
      self._client = None
