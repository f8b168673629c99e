"""
ui.waitFor: poll the screen state until a condition matches or the timeout expires.

Conditions (case-insensitive substring match against `value`):
- text:        OCR of the screen; a cached reading younger than maxAgeMs is used first
- app:         foreground application name
- windowTitle: foreground window title
- url:         URL of the given browser session, or of any open session
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from actuator.contracts.skills import ErrorKind, skill_failure
from actuator.executor.sessions import SessionRegistry
from actuator.vision.ocr import OcrCache, read_screen_text
from actuator.vision.window_context import get_window_context

if TYPE_CHECKING:
    from actuator.executor.dispatch import SkillContext

logger = logging.getLogger(__name__)

CONDITIONS = ("text", "app", "url", "windowTitle")
DEFAULT_POLL_MS = 500
MIN_POLL_MS = 250
DEFAULT_TIMEOUT_MS = 30_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 300_000


def _to_int(raw: Any, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return default


async def _observe(
    condition: str,
    sessions: Optional[SessionRegistry],
    session_id: Optional[str],
    ocr_cache: OcrCache,
    max_age_ms: int,
) -> Dict[str, Any]:
    """One observation of the state relevant to `condition`."""
    if condition == "text":
        reading = await read_screen_text(ocr_cache, max_age_ms)
        return {"text": reading.text}
    if condition == "url":
        if sessions is None:
            return {"urls": []}
        if session_id:
            url = sessions.current_url(session_id)
            return {"urls": [url] if url else []}
        return {"urls": [u for u in sessions.urls().values() if u]}
    window = await asyncio.to_thread(get_window_context)
    return {"app": window.get("activeApp", ""), "windowTitle": window.get("windowTitle", "")}


def check_condition(observation: Dict[str, Any], condition: str, value: str) -> Optional[str]:
    """Return the matched string, or None."""
    needle = value.lower()
    if condition == "url":
        for url in observation.get("urls") or []:
            if needle in url.lower():
                return url
        return None
    haystack = str(observation.get(condition) or "")
    return haystack if needle in haystack.lower() else None


async def wait_for(
    args: Dict[str, Any],
    ocr_cache: OcrCache,
    sessions: Optional[SessionRegistry] = None,
) -> Dict[str, Any]:
    condition = args.get("condition")
    value = args.get("value")
    if condition not in CONDITIONS:
        return skill_failure(
            f'Unknown condition "{condition}". Must be: text | app | url | windowTitle',
            ErrorKind.INVALID_REQUEST,
        )
    if not isinstance(value, str) or not value:
        return skill_failure("value is required (the string to match against)", ErrorKind.INVALID_REQUEST)

    poll_ms = max(MIN_POLL_MS, _to_int(args.get("pollMs"), DEFAULT_POLL_MS))
    timeout_ms = max(MIN_TIMEOUT_MS, min(_to_int(args.get("timeoutMs"), DEFAULT_TIMEOUT_MS), MAX_TIMEOUT_MS))
    max_age_ms = max(0, _to_int(args.get("maxAgeMs"), poll_ms + 1000))
    session_id = args.get("sessionId")

    logger.info("ui.waitFor %s=%r poll=%sms timeout=%sms", condition, value, poll_ms, timeout_ms)
    started = time.monotonic()
    poll_count = 0

    while True:
        elapsed = int((time.monotonic() - started) * 1000)
        if elapsed >= timeout_ms:
            logger.info("ui.waitFor timed out: %s=%r after %s polls", condition, value, poll_count)
            return skill_failure(
                f'Condition "{condition}={value}" not met within {timeout_ms}ms ({poll_count} polls)',
                ErrorKind.TIMEOUT,
                matched=False,
                reason=f'Condition "{condition}={value}" not met within {timeout_ms}ms ({poll_count} polls)',
                elapsed=elapsed,
                pollCount=poll_count,
            )

        poll_count += 1
        try:
            observation = await _observe(condition, sessions, session_id, ocr_cache, max_age_ms)
        except Exception as exc:  # noqa: BLE001
            logger.debug("ui.waitFor poll %s observation failed: %s", poll_count, exc)
            observation = None

        if observation is not None:
            matched_on = check_condition(observation, condition, value)
            if matched_on is not None:
                elapsed = int((time.monotonic() - started) * 1000)
                logger.info("ui.waitFor condition met: %s=%r in %sms", condition, value, elapsed)
                return {
                    "success": True,
                    "matched": True,
                    "condition": condition,
                    "value": value,
                    "matchedOn": matched_on if condition != "text" else condition,
                    "elapsed": elapsed,
                    "pollCount": poll_count,
                }

        remaining = timeout_ms - int((time.monotonic() - started) * 1000)
        if remaining > 0:
            await asyncio.sleep(min(poll_ms, remaining) / 1000.0)


async def handle_wait_for(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await wait_for(args, ctx.ocr_cache, ctx.sessions)


__all__ = ["CONDITIONS", "check_condition", "wait_for", "handle_wait_for"]
