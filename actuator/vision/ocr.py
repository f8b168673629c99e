from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import pytesseract
from PIL import Image

from actuator.vision.screenshot import capture_image

logger = logging.getLogger(__name__)


@dataclass
class OcrReading:
    text: str
    captured_at: float

    def age_ms(self, now: Optional[float] = None) -> int:
        return int(((now if now is not None else time.monotonic()) - self.captured_at) * 1000)


class OcrCache:
    """Last full-screen OCR reading; served to pollers while it is fresh enough."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reading: Optional[OcrReading] = None

    def get(self, max_age_ms: int) -> Optional[OcrReading]:
        with self._lock:
            reading = self._reading
        if reading is None or reading.age_ms() > max_age_ms:
            return None
        return reading

    def put(self, text: str) -> OcrReading:
        reading = OcrReading(text=text or "", captured_at=time.monotonic())
        with self._lock:
            self._reading = reading
        return reading

    def clear(self) -> None:
        with self._lock:
            self._reading = None


def run_ocr_image(image: Image.Image) -> str:
    """Extract text from an in-memory image using Tesseract OCR."""
    return pytesseract.image_to_string(image)


def _capture_and_read() -> str:
    return run_ocr_image(capture_image())


async def read_screen_text(cache: OcrCache, max_age_ms: int) -> OcrReading:
    """Return a cached reading no older than max_age_ms, or OCR the screen now."""
    cached = cache.get(max_age_ms)
    if cached is not None:
        return cached
    text = await asyncio.to_thread(_capture_and_read)
    logger.debug("OCR captured %s chars", len(text))
    return cache.put(text)


__all__ = ["OcrReading", "OcrCache", "run_ocr_image", "read_screen_text"]
