"""
Label -> logical screen point.

Pipeline: fresh capture, downscale to at most 1280 px wide, detector call,
then map the detected point back to input space:

    logical = round_half_up(detected / resize_ratio / pixel_scale)

The detector answers in the coordinate space of the image it was sent
(downscaled); the mouse expects logical units (points on HiDPI displays).
Both divisions are always applied, in that order.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from actuator.vision.screenshot import ScreenSnapshot, capture_snapshot
from actuator.vision.service_client import ServiceUnavailableError, detect_element

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.65
DEFAULT_TIMEOUT_MS = 60_000
MAX_TIMEOUT_MS = 300_000

_INTENT_RULES = (
    ("desktop_folder", re.compile(r"\b(folder|file|icon|desktop|drive|disk)\b")),
    ("type_text", re.compile(r"\b(input|text field|search box|search field|type here|enter text)\b")),
    ("browser_navigation", re.compile(r"\b(address bar|url|navigate|browser)\b")),
    ("spotlight_search", re.compile(r"\b(spotlight|search result|finder result)\b")),
)


@dataclass
class Resolution:
    ok: bool
    x: Optional[int] = None
    y: Optional[int] = None
    confidence: float = 0.0
    selected_element: Any = None
    detected: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    unavailable: bool = False
    pixel_scale: float = 1.0
    resize_ratio: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": self.ok,
            "confidence": self.confidence,
            "selectedElement": self.selected_element,
            "pixelScale": self.pixel_scale,
            "resizeRatio": self.resize_ratio,
        }
        if self.x is not None and self.y is not None:
            payload["x"] = self.x
            payload["y"] = self.y
        if self.detected is not None:
            payload["coordinates"] = self.detected
        if self.reason:
            payload["reason"] = self.reason
        if self.unavailable:
            payload["unavailable"] = True
        return payload


def infer_intent_type(label: str) -> Optional[str]:
    text = (label or "").lower()
    for intent, pattern in _INTENT_RULES:
        if pattern.search(text):
            return intent
    return None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def to_logical(x: float, y: float, snapshot: ScreenSnapshot) -> Tuple[int, int]:
    """Map a point in snapshot (downscaled) space to logical input coordinates."""
    ratio = snapshot.resize_ratio or 1.0
    scale = snapshot.pixel_scale or 1.0
    return round_half_up(x / ratio / scale), round_half_up(y / ratio / scale)


def _extract_point(detection: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    coords = detection.get("coordinates")
    if not isinstance(coords, dict):
        return None
    x, y = coords.get("x"), coords.get("y")
    if x is None or y is None:
        return None
    if isinstance(x, bool) or isinstance(y, bool):
        return None
    try:
        return float(x), float(y)
    except (TypeError, ValueError):
        return None


async def resolve(
    label: str,
    window_context: Optional[Dict[str, str]] = None,
    *,
    role: Optional[str] = None,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> Resolution:
    """Locate `label` on the current screen. Never raises; failures come back with ok=False."""
    try:
        snapshot = await asyncio.to_thread(capture_snapshot)
    except Exception as exc:  # noqa: BLE001
        logger.error("Screenshot capture failed while resolving %r: %s", label, exc)
        return Resolution(ok=False, reason=f"Screenshot capture failed: {exc}")

    context: Dict[str, Any] = dict(window_context or {})
    intent = infer_intent_type(label)
    if intent:
        context["intentType"] = intent
    if role:
        context["role"] = role

    timeout_ms = max(1, min(int(timeout_ms), MAX_TIMEOUT_MS))
    try:
        detection = await detect_element(label, snapshot, context, timeout_ms=timeout_ms)
    except ServiceUnavailableError as exc:
        logger.warning("Detector unavailable for %r: %s", label, exc)
        return Resolution(
            ok=False,
            reason=f"Detector unavailable: {exc}",
            unavailable=True,
            pixel_scale=snapshot.pixel_scale,
            resize_ratio=snapshot.resize_ratio,
        )

    base = {"pixel_scale": snapshot.pixel_scale, "resize_ratio": snapshot.resize_ratio}
    if not detection.get("success"):
        message = str(detection.get("message") or detection.get("error") or "detector returned no result")
        lowered = message.lower()
        unavailable = "not available" in lowered or "configure" in lowered
        return Resolution(
            ok=False,
            reason="Detector is not configured" if unavailable else f"Element not found: {message}",
            unavailable=unavailable,
            **base,
        )

    confidence = float(detection.get("confidence") or 0.0)
    selected = detection.get("selectedElement")
    point = _extract_point(detection)
    if point is None:
        return Resolution(
            ok=False,
            reason="Detector returned no coordinates",
            confidence=confidence,
            selected_element=selected,
            **base,
        )

    detected = {"x": point[0], "y": point[1]}
    if confidence < min_confidence:
        return Resolution(
            ok=False,
            reason=f"Low confidence: {confidence * 100:.0f}% (threshold {min_confidence * 100:.0f}%)",
            confidence=confidence,
            selected_element=selected,
            detected=detected,
            **base,
        )

    x, y = to_logical(point[0], point[1], snapshot)
    logger.info(
        "Resolved %r at detector (%s, %s) -> logical (%s, %s) [ratio %.4f, scale %.2f, conf %.3f]",
        label,
        point[0],
        point[1],
        x,
        y,
        snapshot.resize_ratio,
        snapshot.pixel_scale,
        confidence,
    )
    return Resolution(
        ok=True,
        x=x,
        y=y,
        confidence=confidence,
        selected_element=selected,
        detected=detected,
        **base,
    )


__all__ = [
    "DEFAULT_MIN_CONFIDENCE",
    "Resolution",
    "infer_intent_type",
    "round_half_up",
    "to_logical",
    "resolve",
]
