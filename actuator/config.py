"""Shared configuration helpers for host/port selection and service endpoints."""

from __future__ import annotations

import os
from typing import Tuple

# Dedicated ports for different runtimes to avoid clashes and lingering sockets.
DEV_HOST = os.getenv("ACTUATOR_DEV_HOST", "127.0.0.1")
DEV_PORT = int(os.getenv("ACTUATOR_DEV_PORT", "5004"))
TEST_HOST = os.getenv("ACTUATOR_TEST_HOST", DEV_HOST)
TEST_PORT = int(os.getenv("ACTUATOR_TEST_PORT", "5015"))

DEFAULT_VISION_SERVICE_URL = "http://127.0.0.1:4000"
DEFAULT_PARTIAL_SUCCESS_THRESHOLD = 0.7
DEFAULT_SESSION_IDLE_MS = 10 * 60 * 1000


def flag_from_env(var: str, default: bool) -> bool:
    value = os.getenv(var)
    if value is None:
        return default
    return str(value).strip().lower() not in {"0", "false", "off", "no", "none", ""}


def int_from_env(var: str, default: int) -> int:
    value = os.getenv(var)
    if value is None or not str(value).strip():
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def float_from_env(var: str, default: float) -> float:
    value = os.getenv(var)
    if value is None or not str(value).strip():
        return default
    try:
        return float(str(value).strip())
    except ValueError:
        return default


def is_test_mode() -> bool:
    """Detect pytest/ACTUATOR_TEST_MODE runs."""
    return os.getenv("ACTUATOR_TEST_MODE") == "1" or bool(os.getenv("PYTEST_CURRENT_TEST"))


def resolve_host_port(host: str | None = None, port: int | None = None) -> Tuple[str, int]:
    """Return the host/port tuple for the current mode, honoring overrides."""
    if host and port:
        return host, int(port)

    if is_test_mode():
        resolved_host = host or TEST_HOST
        resolved_port = int(port or TEST_PORT)
    else:
        resolved_host = host or DEV_HOST
        resolved_port = int(port or DEV_PORT)

    return resolved_host, resolved_port


def vision_service_url() -> str:
    """Base URL of the element-detection / visual-verification service."""
    explicit = (os.getenv("VISION_SERVICE_URL") or "").strip()
    if explicit:
        return explicit.rstrip("/")
    host = os.getenv("VISION_SERVICE_HOST")
    port = os.getenv("VISION_SERVICE_PORT")
    if host or port:
        return f"http://{host or '127.0.0.1'}:{port or '4000'}"
    return DEFAULT_VISION_SERVICE_URL


def vision_service_retries() -> int:
    return max(1, min(int_from_env("VISION_SERVICE_RETRIES", 1), 5))


def partial_success_threshold() -> float:
    """Completion ratio at or above which a failed plan is reported as partial success."""
    value = float_from_env("ACTUATOR_PARTIAL_SUCCESS_THRESHOLD", DEFAULT_PARTIAL_SUCCESS_THRESHOLD)
    if value <= 0 or value > 1:
        return DEFAULT_PARTIAL_SUCCESS_THRESHOLD
    return value


def session_idle_ms() -> int:
    return max(1000, int_from_env("SESSION_IDLE_MS", DEFAULT_SESSION_IDLE_MS))


def browser_headless() -> bool:
    return flag_from_env("BROWSER_HEADLESS", False)


__all__ = [
    "DEV_HOST",
    "DEV_PORT",
    "TEST_HOST",
    "TEST_PORT",
    "flag_from_env",
    "int_from_env",
    "float_from_env",
    "is_test_mode",
    "resolve_host_port",
    "vision_service_url",
    "vision_service_retries",
    "partial_success_threshold",
    "session_idle_ms",
    "browser_headless",
]
