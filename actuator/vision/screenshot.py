"""
Screen capture for detection and verification.

Every call grabs a fresh frame; coordinate resolution never reuses a snapshot
because display state changes between steps.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Tuple

import mss
from PIL import Image

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_WIDTH = 1280


@dataclass(frozen=True)
class ScreenSnapshot:
    """Encoded screenshot plus the two factors needed to map points back to input space."""

    base64_image: str
    mime_type: str
    width: int
    height: int
    physical_width: int
    physical_height: int
    pixel_scale: float
    resize_ratio: float

    def to_payload(self) -> dict:
        return {"base64": self.base64_image, "mimeType": self.mime_type}


def capture_image() -> Image.Image:
    """Grab the primary monitor at physical resolution."""
    with mss.mss() as sct:
        monitors = sct.monitors
        monitor = monitors[1] if len(monitors) > 1 else monitors[0]
        raw = sct.grab(monitor)
        return Image.frombytes("RGB", raw.size, raw.bgra, "raw", "BGRX")


def logical_screen_size() -> Tuple[int, int]:
    """Screen size in input-device (logical) units as seen by pyautogui."""
    import pyautogui  # type: ignore

    width, height = pyautogui.size()
    return int(width), int(height)


def _pixel_scale(physical_width: int) -> float:
    try:
        logical_width, _ = logical_screen_size()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Logical screen size unavailable, assuming 1.0 scale: %s", exc)
        return 1.0
    if logical_width <= 0:
        return 1.0
    return physical_width / logical_width


def build_snapshot(image: Image.Image, pixel_scale: float, max_width: int = MAX_SNAPSHOT_WIDTH) -> ScreenSnapshot:
    """Downscale (if wider than max_width) and PNG-encode a captured frame."""
    physical_width, physical_height = image.size
    resize_ratio = 1.0
    encoded = image
    if physical_width > max_width:
        resize_ratio = max_width / physical_width
        encoded = image.resize((max_width, round(physical_height * resize_ratio)))

    buffer = io.BytesIO()
    encoded.save(buffer, format="PNG")
    return ScreenSnapshot(
        base64_image=base64.b64encode(buffer.getvalue()).decode("ascii"),
        mime_type="image/png",
        width=encoded.size[0],
        height=encoded.size[1],
        physical_width=physical_width,
        physical_height=physical_height,
        pixel_scale=pixel_scale or 1.0,
        resize_ratio=resize_ratio,
    )


def capture_snapshot(max_width: int = MAX_SNAPSHOT_WIDTH) -> ScreenSnapshot:
    """Capture the screen and return an encoded snapshot. Raises on capture failure."""
    image = capture_image()
    snapshot = build_snapshot(image, _pixel_scale(image.size[0]), max_width=max_width)
    logger.debug(
        "Snapshot captured: %sx%s (physical %sx%s, scale %.2f, ratio %.4f)",
        snapshot.width,
        snapshot.height,
        snapshot.physical_width,
        snapshot.physical_height,
        snapshot.pixel_scale,
        snapshot.resize_ratio,
    )
    return snapshot


__all__ = [
    "MAX_SNAPSHOT_WIDTH",
    "ScreenSnapshot",
    "capture_image",
    "logical_screen_size",
    "build_snapshot",
    "capture_snapshot",
]
