"""Pollinations image producer over plain HTTP."""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from app.ai.backoff import classify_status, parse_retry_after_header
from app.ai.providers.base import GeneratedImage, ImageModel, TransientProviderError

logger = logging.getLogger(__name__)


class PollinationsImageModel(ImageModel):
  """Renders illustrations via `GET {base_url}/image/{prompt}?model=...`."""

  def __init__(self, *, base_url: str, name: str = "zimage", api_key: str | None = None, timeout: float = 120.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self.name = name
    self._base_url = base_url.rstrip("/")
    self._api_key = api_key
    self._timeout = timeout
    self._transport = transport

  def _build_client(self) -> httpx.AsyncClient:
    # Never trust environment proxy variables for producer calls.
    return httpx.AsyncClient(timeout=self._timeout, transport=self._transport, trust_env=False)

  def _headers(self) -> dict[str, str]:
    if not self._api_key:
      return {}
    return {"authorization": f"Bearer {self._api_key}"}

  async def generate_image(self, prompt: str) -> GeneratedImage:
    url = f"{self._base_url}/image/{quote(prompt, safe='')}"
    try:
      async with self._build_client() as client:
        response = await client.get(url, params={"model": self.name}, headers=self._headers())
    except httpx.RequestError as exc:
      raise TransientProviderError(f"Image request failed: {exc}") from exc

    if response.status_code >= 400:
      retry_after = parse_retry_after_header(response.headers.get("retry-after"))
      logger.warning("Image producer returned %s retry_after=%s", response.status_code, retry_after)
      raise classify_status(response.status_code, f"Image producer returned HTTP {response.status_code}", retry_after=retry_after, details={"status_code": response.status_code})

    content_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not response.content or not content_type.startswith("image/"):
      raise TransientProviderError(f"Image producer returned no image data (content-type={content_type or 'unknown'})")
    return GeneratedImage(data=response.content, mime_type=content_type)
