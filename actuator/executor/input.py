"""
Input helpers for simulated typing and key presses.

Text may embed key tokens:
    {ENTER} {TAB} {ESC} {BACKSPACE} {UP} {DOWN} {LEFT} {RIGHT}
    {DELETE} {HOME} {END} {PAGEUP} {PAGEDOWN} {SPACE}
and modifier combos such as {CMD+K}, {CTRL+A} or {CTRL+SHIFT+T}.
A literal newline is sent as {SHIFT+ENTER} so chat inputs do not submit early.
Unrecognized tokens are typed literally.
"""

from __future__ import annotations

import logging
import re
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_DELAY_MS = 500

TOKEN_MAP: Dict[str, str] = {
    "{ENTER}": "enter",
    "{TAB}": "tab",
    "{ESC}": "esc",
    "{BACKSPACE}": "backspace",
    "{UP}": "up",
    "{DOWN}": "down",
    "{LEFT}": "left",
    "{RIGHT}": "right",
    "{DELETE}": "delete",
    "{HOME}": "home",
    "{END}": "end",
    "{PAGEUP}": "pageup",
    "{PAGEDOWN}": "pagedown",
    "{SPACE}": "space",
}

COMBO_PATTERN = re.compile(r"^\{(CMD|CTRL|ALT|SHIFT)\+(.+)\}$", re.IGNORECASE)
_TOKEN_PATTERN = re.compile(r"\{[^}]+\}")


def modifier_key(name: str) -> Optional[str]:
    """pyautogui key name for a modifier token (CMD/META map to the platform super key)."""
    name = name.strip().upper()
    if name in {"CMD", "META"}:
        return "command" if sys.platform == "darwin" else "win"
    return {"CTRL": "ctrl", "ALT": "alt", "SHIFT": "shift"}.get(name)


def parse_text_segments(text: str) -> List[Tuple[str, str]]:
    """Split text into ("text", chunk) and ("token", "{...}") segments."""
    segments: List[Tuple[str, str]] = []
    last = 0
    for match in _TOKEN_PATTERN.finditer(text):
        if match.start() > last:
            segments.append(("text", text[last : match.start()]))
        segments.append(("token", match.group(0)))
        last = match.end()
    if last < len(text):
        segments.append(("text", text[last:]))
    return segments


def parse_combo(token: str) -> Optional[List[str]]:
    """{CTRL+SHIFT+T} -> ["ctrl", "shift", "t"]; None when the token is not a combo."""
    match = COMBO_PATTERN.match(token)
    if not match:
        return None
    parts = [match.group(1)] + match.group(2).split("+")
    keys: List[str] = []
    for idx, part in enumerate(parts):
        mod = modifier_key(part)
        if mod and idx < len(parts) - 1:
            keys.append(mod)
            continue
        if idx < len(parts) - 1:
            return None
        keys.append(TOKEN_MAP.get("{" + part.upper() + "}", part.lower()))
    return keys


def type_text(text: str, delay_ms: int = 0) -> Dict[str, Any]:
    """
    Type text, honoring key tokens and combos.

    Returns:
        {success, typed, elapsed} or {success: False, error}.
    """
    import pyautogui  # type: ignore

    if not isinstance(text, str):
        return {"success": False, "error": "text is required"}

    interval = max(0, min(int(delay_ms or 0), MAX_DELAY_MS)) / 1000.0
    started = time.monotonic()
    normalized = text.replace("\n", "{SHIFT+ENTER}")

    try:
        for kind, value in parse_text_segments(normalized):
            if kind == "text":
                if value:
                    pyautogui.write(value, interval=interval)
                continue
            combo = parse_combo(value)
            if combo:
                pyautogui.hotkey(*combo)
                continue
            key = TOKEN_MAP.get(value.upper())
            if key:
                pyautogui.press(key)
                continue
            logger.warning("Unrecognized key token %s; typing literally", value)
            pyautogui.write(value, interval=interval)
    except Exception as exc:  # noqa: BLE001
        logger.error("Keyboard input failed: %s", exc)
        return {"success": False, "error": f"Keyboard input failed: {exc}"}

    return {"success": True, "typed": text, "elapsed": int((time.monotonic() - started) * 1000)}


__all__ = [
    "TOKEN_MAP",
    "COMBO_PATTERN",
    "modifier_key",
    "parse_text_segments",
    "parse_combo",
    "type_text",
]
