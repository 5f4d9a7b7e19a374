"""Image helpers for generated illustrations."""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError


def convert_to_webp(image_bytes: bytes) -> bytes:
  """Convert provider image bytes into a WebP payload."""
  try:
    image = Image.open(io.BytesIO(image_bytes))
    image.load()
  except (UnidentifiedImageError, OSError) as exc:
    raise ValueError(f"Unreadable image payload: {exc}") from exc
  # Convert alpha-free and alpha images consistently to avoid mode-related encoder errors.
  converted = image.convert("RGBA") if image.mode not in {"RGB", "RGBA"} else image
  output = io.BytesIO()
  converted.save(output, format="WEBP", quality=88, method=6)
  return output.getvalue()
