"""
HTTP client for the external vision service (element detection and visual verification).

Transport problems surface as ServiceUnavailableError so callers can tell
"the service said no" (a JSON body with success=false) apart from "the service
could not be asked".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from actuator.config import vision_service_retries, vision_service_url
from actuator.vision.screenshot import ScreenSnapshot

logger = logging.getLogger(__name__)

DETECT_PATH = "/api/omniparser/detect"
VERIFY_PATH = "/api/vision/verify"
BACKOFF_SECONDS = 0.5


class ServiceUnavailableError(RuntimeError):
    """The vision service could not be reached or returned an unreadable reply."""


async def post_json(
    path: str,
    payload: Dict[str, Any],
    timeout_ms: int,
    *,
    base_url: Optional[str] = None,
    retries: Optional[int] = None,
) -> Dict[str, Any]:
    url = f"{base_url or vision_service_url()}{path}"
    timeout_sec = max(0.1, timeout_ms / 1000.0)
    # An explicit 0 still makes one attempt; only None falls back to the env setting.
    max_attempts = max(1, retries if retries is not None else vision_service_retries())

    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout_sec) as client:
                response = await client.post(url, json=payload)
            try:
                data = response.json()
            except ValueError as exc:
                raise ServiceUnavailableError(
                    f"Invalid JSON from {url} (HTTP {response.status_code}): {response.text[:200]}"
                ) from exc
            if not isinstance(data, dict):
                raise ServiceUnavailableError(f"Unexpected reply from {url}: {str(data)[:200]}")
            return data
        except httpx.TimeoutException as exc:
            last_error = ServiceUnavailableError(f"HTTP request to {url} timed out after {timeout_ms}ms")
            last_error.__cause__ = exc
        except httpx.HTTPError as exc:
            last_error = ServiceUnavailableError(f"Failed to contact {url}: {exc}")
            last_error.__cause__ = exc
        if attempt < max_attempts:
            logger.debug("Vision service attempt %s/%s failed: %s", attempt, max_attempts, last_error)
            await asyncio.sleep(BACKOFF_SECONDS * attempt)

    raise last_error or ServiceUnavailableError(f"Failed to contact {url}")


async def detect_element(
    description: str,
    snapshot: ScreenSnapshot,
    context: Optional[Dict[str, Any]] = None,
    timeout_ms: int = 60_000,
) -> Dict[str, Any]:
    """
    Ask the detector where `description` is on the snapshot.

    Returns the service reply: {success, coordinates: {x, y}, confidence,
    selectedElement} or {success: false, message}. Coordinates are in the
    snapshot's (possibly downscaled) pixel space.
    """
    body_context: Dict[str, Any] = {
        "screenWidth": snapshot.width,
        "screenHeight": snapshot.height,
        "screenshotWidth": snapshot.width,
        "screenshotHeight": snapshot.height,
    }
    for key, value in (context or {}).items():
        if value:
            body_context[key] = value
    payload = {
        "screenshot": snapshot.to_payload(),
        "description": description,
        "context": body_context,
    }
    return await post_json(DETECT_PATH, payload, timeout_ms)


async def verify_screen(
    snapshot: ScreenSnapshot,
    prompt: str,
    step_description: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
    timeout_ms: int = 30_000,
) -> Dict[str, Any]:
    """Returns {success, verified: bool|None, confidence, reasoning, suggestion, provider}."""
    payload = {
        "screenshot": snapshot.to_payload(),
        "prompt": prompt,
        "stepDescription": step_description or prompt,
        "context": context or {},
    }
    return await post_json(VERIFY_PATH, payload, timeout_ms)


__all__ = ["ServiceUnavailableError", "post_json", "detect_element", "verify_screen"]
