from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Iterable, List

from actuator.utils.time_utils import now_iso_utc

# Structured event logger configured in logging_setup.
event_logger = logging.getLogger("actuator.events")

_IMAGE_KEYS = {"base64", "base64Image", "base64_image", "screenshot_base64", "image_base64"}
_DATA_URL_PREFIX = "data:image/"
_SECRET_KEYS = {"stdin", "env"}


def generate_request_id() -> str:
    """Return a short, collision-resistant request id."""
    return uuid.uuid4().hex


def _truncate(value: str, max_len: int = 2000) -> str:
    if len(value) <= max_len:
        return value
    return f"{value[:max_len]}...<truncated {len(value) - max_len} chars>"


def _sanitize_obj(obj: Any, max_len: int = 2000, keep_full: Iterable[str] | None = None) -> Any:
    keep_full = set(keep_full or [])
    if isinstance(obj, dict):
        sanitized: Dict[str, Any] = {}
        for key, val in obj.items():
            if key in _IMAGE_KEYS:
                sanitized[key] = "<redacted:image>"
                continue
            if key in _SECRET_KEYS:
                sanitized[key] = "<redacted>" if val else val
                continue
            if key in keep_full:
                sanitized[key] = val
                continue
            sanitized[key] = _sanitize_obj(val, max_len=max_len, keep_full=keep_full)
        return sanitized
    if isinstance(obj, (list, tuple)):
        return [_sanitize_obj(item, max_len=max_len, keep_full=keep_full) for item in list(obj)[:50]]
    if isinstance(obj, str):
        if obj.startswith(_DATA_URL_PREFIX):
            return "<redacted:image>"
        return _truncate(obj, max_len=max_len)
    return obj


def sanitize_payload(payload: Dict[str, Any], keep_full: Iterable[str] | None = None) -> Dict[str, Any]:
    """Return a sanitized shallow copy safe for logging."""
    try:
        return dict(_sanitize_obj(payload, keep_full=keep_full or []))
    except Exception:  # noqa: BLE001
        return {"error": "failed_to_sanitize"}


def summarize_plan(plan: Dict[str, Any] | None) -> Dict[str, Any]:
    if not isinstance(plan, dict):
        return {"present": False}
    raw_steps = plan.get("steps") if isinstance(plan.get("steps"), list) else []
    steps: List[Dict[str, Any]] = []
    for step in raw_steps[:15]:
        if not isinstance(step, dict):
            continue
        action = step.get("action") or {}
        args = action.get("args") if isinstance(action, dict) else None
        steps.append(
            {
                "id": step.get("id"),
                "skill": action.get("skill") if isinstance(action, dict) else None,
                "args_keys": sorted(args.keys()) if isinstance(args, dict) else [],
                "verification": step.get("verification"),
            }
        )
    return {
        "present": True,
        "plan_id": plan.get("planId") or plan.get("plan_id"),
        "original_command": plan.get("originalCommand") or plan.get("original_command"),
        "total_steps": len(raw_steps),
        "steps_preview": steps,
    }


def summarize_plan_result(result: Dict[str, Any] | None) -> Dict[str, Any]:
    if not isinstance(result, dict):
        return {"present": False}
    steps = result.get("steps") or []
    failed = [s for s in steps if isinstance(s, dict) and s.get("status") == "failed"]
    return {
        "present": True,
        "status": result.get("status"),
        "step_count": len(steps) if isinstance(steps, list) else None,
        "summary": result.get("summary"),
        "failed_step": result.get("failedStep"),
        "last_error": _sanitize_obj(failed[-1], max_len=500) if failed else result.get("error"),
        "total_time": result.get("totalTime"),
    }


def log_event(event: str, request_id: str, payload: Dict[str, Any] | None = None) -> None:
    """Log a structured event as JSON; never raise."""
    body = {"event": event, "request_id": request_id, "ts": now_iso_utc()}
    if payload:
        body.update(sanitize_payload(payload, keep_full={"original_command"}))
    try:
        event_logger.info(json.dumps(body, ensure_ascii=True, default=str))
    except Exception:  # noqa: BLE001
        # Fallback to best-effort string logging.
        event_logger.info(f"{event} {request_id} {body}")
