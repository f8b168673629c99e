"""
Native UI skills: ui.findAndClick, ui.moveMouse, ui.click, ui.typeText, ui.screen.verify.

Blocking pyautogui/mss work runs in worker threads; the event loop only awaits.
When a target cannot be located the skills return a manual-step request
instead of guessing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Dict, Optional

from actuator.contracts.skills import ErrorKind, skill_failure
from actuator.executor.input import type_text
from actuator.executor.mouse import BUTTONS, controller
from actuator.vision.coordinate_resolver import DEFAULT_MIN_CONFIDENCE, Resolution, resolve
from actuator.vision.screenshot import capture_snapshot
from actuator.vision.service_client import ServiceUnavailableError, verify_screen
from actuator.vision.window_context import get_window_context

if TYPE_CHECKING:
    from actuator.executor.dispatch import SkillContext

logger = logging.getLogger(__name__)

MAX_SETTLE_MS = 5_000
MIN_DETECT_TIMEOUT_MS = 5_000
MAX_DETECT_TIMEOUT_MS = 300_000
DEFAULT_DETECT_TIMEOUT_MS = 60_000
DEFAULT_VERIFY_TIMEOUT_MS = 30_000
HOVER_MIN_CONFIDENCE = 0.3
HOVER_SETTLE_MS = 500
CLICK_SETTLE_MS = 150


def _int_arg(args: Dict[str, Any], key: str, default: int, lo: int, hi: int) -> int:
    raw = args.get(key)
    if raw is None:
        return default
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        return default
    return max(lo, min(value, hi))


def _float_arg(args: Dict[str, Any], key: str, default: float) -> float:
    raw = args.get(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _click_verb(button: str) -> str:
    return "double-click" if button == "double" else f"{button}-click"


def manual_step(label: str, verb: str, resolution: Resolution) -> Dict[str, Any]:
    payload = skill_failure(
        resolution.reason or "Element not found",
        ErrorKind.EXECUTION_FAILURE,
        needsManualStep=True,
        instruction=f'Please {verb} "{label}" on screen, then confirm when done.',
        reason=resolution.reason,
    )
    payload.update({k: v for k, v in resolution.to_dict().items() if k not in {"ok", "reason"}})
    return payload


async def _settle(ms: int) -> None:
    if ms > 0:
        await asyncio.sleep(ms / 1000.0)


async def find_and_click(args: Dict[str, Any]) -> Dict[str, Any]:
    label = args.get("label")
    button = args.get("button") or "left"
    if not isinstance(label, str) or not label.strip():
        return skill_failure(
            "label is required (natural-language description of the element to find)",
            ErrorKind.INVALID_REQUEST,
        )
    if button not in BUTTONS:
        return skill_failure(f'Unknown button "{button}". Must be: left | right | double', ErrorKind.INVALID_REQUEST)

    min_conf = _float_arg(args, "confidence", DEFAULT_MIN_CONFIDENCE)
    timeout_ms = _int_arg(args, "timeoutMs", DEFAULT_DETECT_TIMEOUT_MS, MIN_DETECT_TIMEOUT_MS, MAX_DETECT_TIMEOUT_MS)
    settle_ms = _int_arg(args, "settleMs", 0, 0, MAX_SETTLE_MS)
    started = time.monotonic()

    await _settle(settle_ms)
    window = await asyncio.to_thread(get_window_context)
    resolution = await resolve(
        label,
        window,
        role=args.get("role"),
        min_confidence=min_conf,
        timeout_ms=timeout_ms,
    )
    if not resolution.ok:
        logger.warning("ui.findAndClick could not locate %r: %s; requesting manual step", label, resolution.reason)
        return manual_step(label, _click_verb(button), resolution)

    moved = await asyncio.to_thread(controller.move_to, resolution.x, resolution.y)
    if not moved.get("success"):
        return skill_failure(moved.get("error") or "Mouse move failed", ErrorKind.EXECUTION_FAILURE)
    await _settle(CLICK_SETTLE_MS)
    try:
        clicked = await asyncio.to_thread(controller.click, button)
    except Exception as exc:  # noqa: BLE001
        logger.error("ui.findAndClick mouse click failed: %s", exc)
        return skill_failure(
            f"Mouse click failed: {exc}",
            ErrorKind.EXECUTION_FAILURE,
            x=resolution.x,
            y=resolution.y,
        )
    if not clicked.get("success"):
        return skill_failure(clicked.get("error") or "Mouse click failed", ErrorKind.EXECUTION_FAILURE)

    return {
        "success": True,
        "x": resolution.x,
        "y": resolution.y,
        "confidence": resolution.confidence,
        "selectedElement": resolution.selected_element,
        "button": button,
        "pixelScale": resolution.pixel_scale,
        "elapsed": int((time.monotonic() - started) * 1000),
    }


async def move_mouse(args: Dict[str, Any]) -> Dict[str, Any]:
    label = args.get("label")
    if not isinstance(label, str) or not label.strip():
        return skill_failure("label is required", ErrorKind.INVALID_REQUEST)
    min_conf = _float_arg(args, "confidence", HOVER_MIN_CONFIDENCE)
    timeout_ms = _int_arg(args, "timeoutMs", DEFAULT_DETECT_TIMEOUT_MS, MIN_DETECT_TIMEOUT_MS, MAX_DETECT_TIMEOUT_MS)
    settle_ms = _int_arg(args, "settleMs", HOVER_SETTLE_MS, 0, MAX_SETTLE_MS)
    started = time.monotonic()

    window = await asyncio.to_thread(get_window_context)
    resolution = await resolve(label, window, role=args.get("role"), min_confidence=min_conf, timeout_ms=timeout_ms)
    if not resolution.ok:
        return manual_step(label, "hover over", resolution)

    moved = await asyncio.to_thread(controller.move_to, resolution.x, resolution.y)
    if not moved.get("success"):
        return skill_failure(moved.get("error") or "Mouse move failed", ErrorKind.EXECUTION_FAILURE)
    await _settle(settle_ms)
    return {
        "success": True,
        "x": resolution.x,
        "y": resolution.y,
        "confidence": resolution.confidence,
        "selectedElement": resolution.selected_element,
        "elapsed": int((time.monotonic() - started) * 1000),
    }


async def click(args: Dict[str, Any]) -> Dict[str, Any]:
    button = args.get("button") or "left"
    modifier: Optional[str] = str(args["modifier"]).lower() if args.get("modifier") else None
    settle_ms = _int_arg(args, "settleMs", CLICK_SETTLE_MS, 0, MAX_SETTLE_MS)
    x, y = args.get("x"), args.get("y")
    if (x is None) != (y is None):
        return skill_failure("x and y must be given together", ErrorKind.INVALID_REQUEST)
    started = time.monotonic()

    await _settle(settle_ms)
    try:
        result = await asyncio.to_thread(controller.click, button, modifier, x, y)
    except Exception as exc:  # noqa: BLE001
        logger.error("ui.click failed: %s", exc)
        return skill_failure(f"Mouse click failed: {exc}", ErrorKind.EXECUTION_FAILURE)
    if not result.get("success"):
        return skill_failure(result.get("error") or "Mouse click failed", ErrorKind.INVALID_REQUEST)
    result["elapsed"] = int((time.monotonic() - started) * 1000)
    return result


async def type_keys(args: Dict[str, Any]) -> Dict[str, Any]:
    text = args.get("text")
    if not isinstance(text, str):
        return skill_failure("text is required", ErrorKind.INVALID_REQUEST)
    delay_ms = _int_arg(args, "delayMs", 0, 0, 500)
    result = await asyncio.to_thread(type_text, text, delay_ms)
    if not result.get("success"):
        result.setdefault("errorKind", ErrorKind.EXECUTION_FAILURE.value)
    return result


def _degraded(reason: str, started: float) -> Dict[str, Any]:
    return {
        "success": True,
        "verified": None,
        "confidence": 0,
        "reasoning": reason,
        "suggestion": "Vision unavailable, skipping verification",
        "provider": "none",
        "elapsed": int((time.monotonic() - started) * 1000),
        "degraded": True,
        "errorKind": ErrorKind.VERIFICATION_INCONCLUSIVE.value,
    }


async def screen_verify(args: Dict[str, Any]) -> Dict[str, Any]:
    prompt = args.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return skill_failure("prompt is required (describe what to verify visually)", ErrorKind.INVALID_REQUEST)
    timeout_ms = _int_arg(args, "timeoutMs", DEFAULT_VERIFY_TIMEOUT_MS, MIN_DETECT_TIMEOUT_MS, MAX_DETECT_TIMEOUT_MS)
    settle_ms = _int_arg(args, "settleMs", 0, 0, MAX_SETTLE_MS)
    started = time.monotonic()

    await _settle(settle_ms)
    try:
        snapshot = await asyncio.to_thread(capture_snapshot)
    except Exception as exc:  # noqa: BLE001
        logger.error("ui.screen.verify capture failed: %s", exc)
        return skill_failure(f"Screenshot capture failed: {exc}", ErrorKind.EXECUTION_FAILURE)

    try:
        reply = await verify_screen(snapshot, prompt, args.get("stepDescription"), timeout_ms=timeout_ms)
    except ServiceUnavailableError as exc:
        logger.warning("Visual verifier unavailable, returning degraded result: %s", exc)
        return _degraded(f"Vision check unavailable: {exc}", started)

    if not reply.get("success"):
        logger.warning("Visual verifier returned failure, returning degraded result: %s", reply.get("error"))
        return _degraded(f"Vision check failed: {reply.get('error') or 'unknown error'}", started)

    return {
        "success": True,
        "verified": reply.get("verified"),
        "confidence": reply.get("confidence"),
        "reasoning": reply.get("reasoning"),
        "suggestion": reply.get("suggestion"),
        "provider": reply.get("provider"),
        "elapsed": int((time.monotonic() - started) * 1000),
    }


async def handle_find_and_click(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await find_and_click(args)


async def handle_move_mouse(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await move_mouse(args)


async def handle_click(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await click(args)


async def handle_type_text(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await type_keys(args)


async def handle_screen_verify(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await screen_verify(args)


__all__ = [
    "manual_step",
    "find_and_click",
    "move_mouse",
    "click",
    "type_keys",
    "screen_verify",
    "handle_find_and_click",
    "handle_move_mouse",
    "handle_click",
    "handle_type_text",
    "handle_screen_verify",
]
