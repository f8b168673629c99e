"""
Mouse helpers for simulated moves and clicks.

Thin wrapper around pyautogui. Coordinates are logical (input-device) units,
as produced by the coordinate resolver.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

from actuator.executor.input import modifier_key

BUTTONS = ("left", "right", "double")
MODIFIERS = ("ctrl", "cmd", "shift", "alt", "meta")
DOUBLE_CLICK_GAP_S = 0.08


def _validate_coords(x: Any, y: Any) -> bool:
    import pyautogui  # type: ignore

    if isinstance(x, bool) or isinstance(y, bool):
        return False
    if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
        return False
    width, height = pyautogui.size()
    return 0 <= x < width and 0 <= y < height


class MouseController:
    """Centralized mouse operations."""

    def move_to(self, x: int, y: int) -> Dict[str, Any]:
        import pyautogui  # type: ignore

        if not _validate_coords(x, y):
            return {"success": False, "error": f"coordinates ({x}, {y}) are outside the screen"}
        pyautogui.moveTo(x, y)
        return {"success": True, "x": x, "y": y}

    def click(
        self,
        button: str = "left",
        modifier: Optional[str] = None,
        x: Optional[int] = None,
        y: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Click at the current position, or at (x, y) when both are given.

        The modifier key, if any, is held for the duration of the click and
        always released, even when the click raises.
        """
        import pyautogui  # type: ignore

        if button not in BUTTONS:
            return {"success": False, "error": f'Unknown button "{button}". Must be: left | right | double'}
        mod_key = None
        if modifier:
            if modifier not in MODIFIERS:
                return {"success": False, "error": f'Unknown modifier "{modifier}". Must be: ctrl | cmd | shift | alt'}
            mod_key = modifier_key(modifier)

        if x is not None and y is not None:
            moved = self.move_to(x, y)
            if not moved["success"]:
                return moved

        if mod_key:
            pyautogui.keyDown(mod_key)
        try:
            if button == "double":
                pyautogui.click(button="left")
                time.sleep(DOUBLE_CLICK_GAP_S)
                pyautogui.click(button="left")
            else:
                pyautogui.click(button=button)
        finally:
            if mod_key:
                pyautogui.keyUp(mod_key)

        result: Dict[str, Any] = {"success": True, "button": button, "modifier": modifier}
        if x is not None and y is not None:
            result.update({"x": x, "y": y})
        return result


controller = MouseController()


__all__ = ["BUTTONS", "MODIFIERS", "MouseController", "controller"]
