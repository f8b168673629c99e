"""Foreground window title / app name, used as detector context and by ui.waitFor."""

from __future__ import annotations

import logging
from typing import Dict

logger = logging.getLogger(__name__)


def app_from_title(title: str) -> str:
    """Most desktop apps title windows as '<document> - <App>'; take the last segment."""
    title = (title or "").strip()
    if not title:
        return ""
    if " - " in title:
        return title.rsplit(" - ", 1)[-1].strip()
    return title


def get_window_context() -> Dict[str, str]:
    """Return {windowTitle, activeApp}; both empty when the platform cannot tell."""
    try:
        import pygetwindow as gw  # type: ignore

        win = gw.getActiveWindow()
        title = (getattr(win, "title", "") or "").strip() if win else ""
    except Exception as exc:  # noqa: BLE001
        logger.debug("Active window unavailable: %s", exc)
        return {"windowTitle": "", "activeApp": ""}
    return {"windowTitle": title, "activeApp": app_from_title(title)}


__all__ = ["app_from_title", "get_window_context"]
