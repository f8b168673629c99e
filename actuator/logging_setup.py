from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
LOG_DIR = Path(os.getenv("ACTUATOR_LOG_DIR") or (ROOT / "logs"))
SERVICE_LOG = LOG_DIR / "actuator.log"
SERVICE_EVENTS_LOG = LOG_DIR / "actuator_events.log"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _safe_mkdir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        return True
    except OSError:
        # Logging falls back to the console handler.
        return False


def _flag_from_env(var: str, default: bool) -> bool:
    value = os.getenv(var)
    if value is None:
        return default
    return str(value).strip().lower() not in {"0", "false", "off", "no", "none"}


def _level_from_env(var: str, default: int) -> int:
    value = (os.getenv(var) or "").strip().upper()
    if not value:
        return default
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else default


def _rotating_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=1_000_000,
        backupCount=2,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def setup_logging() -> None:
    """Configure rotating file logging (plus optional console) for the service."""
    level = _level_from_env("ACTUATOR_LOG_LEVEL", logging.INFO)
    handlers = []
    if _safe_mkdir(LOG_DIR):
        try:
            handlers.append(_rotating_handler(SERVICE_LOG, level))
        except OSError:
            # If file logging fails, continue with the console to avoid crashes.
            pass

    if _flag_from_env("ACTUATOR_LOG_CONSOLE", True) or not handlers:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(level)
        console.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
        handlers.append(console)

    logging.basicConfig(level=level, handlers=handlers)

    # Dedicated structured event logger (JSON lines).
    event_logger = logging.getLogger("actuator.events")
    event_logger.setLevel(logging.INFO)
    try:
        if LOG_DIR.exists():
            event_logger.addHandler(_rotating_handler(SERVICE_EVENTS_LOG, logging.INFO))
            event_logger.propagate = False
    except OSError:
        # Events keep propagating to the root handlers.
        pass

    # Align uvicorn loggers to use same handlers/format.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.setLevel(logging.INFO)
        for h in handlers:
            logger.addHandler(h)
        logger.propagate = False
