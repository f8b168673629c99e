import time
from datetime import datetime, timezone


def now_iso_utc() -> str:
    """Return current UTC time as ISO-8601 string with timezone."""
    return datetime.now(timezone.utc).isoformat()


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def elapsed_ms(start_ms: int) -> int:
    """Milliseconds since a monotonic_ms() reading."""
    return max(0, monotonic_ms() - start_ms)


__all__ = ["now_iso_utc", "monotonic_ms", "elapsed_ms"]
