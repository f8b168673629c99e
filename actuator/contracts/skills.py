from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SkillKind(str, Enum):
    SHELL_RUN = "shell.run"
    BROWSER_ACT = "browser.act"
    UI_FIND_AND_CLICK = "ui.findAndClick"
    UI_MOVE_MOUSE = "ui.moveMouse"
    UI_CLICK = "ui.click"
    UI_TYPE_TEXT = "ui.typeText"
    UI_WAIT_FOR = "ui.waitFor"
    UI_SCREEN_VERIFY = "ui.screen.verify"


HEALTH_SKILL = "health"


class ErrorKind(str, Enum):
    POLICY_REJECTION = "policy_rejection"
    EXECUTION_FAILURE = "execution_failure"
    VERIFICATION_INCONCLUSIVE = "verification_inconclusive"
    VERIFICATION_FAILED = "verification_failed"
    TIMEOUT = "timeout"
    SECURITY_BOUNDARY = "security_boundary"
    INVALID_REQUEST = "invalid_request"


# Failures that retrying cannot fix.
TERMINAL_ERROR_KINDS = frozenset(
    {ErrorKind.POLICY_REJECTION.value, ErrorKind.SECURITY_BOUNDARY.value, ErrorKind.INVALID_REQUEST.value}
)


class SkillInvocation(BaseModel):
    """Inbound request envelope: {skill, args}."""

    model_config = ConfigDict(frozen=True)

    skill: str = Field(min_length=1)
    args: Dict[str, Any] = Field(default_factory=dict)


def result_ok(result: Dict[str, Any]) -> bool:
    """Skills report either `ok` (process/browser) or `success` (UI); accept both."""
    if not isinstance(result, dict):
        return False
    if "ok" in result:
        return bool(result["ok"])
    return bool(result.get("success"))


def skill_failure(error: str, kind: ErrorKind, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"ok": False, "success": False, "error": error, "errorKind": kind.value}
    payload.update(extra)
    return payload


def error_kind_of(result: Dict[str, Any]) -> Optional[str]:
    if not isinstance(result, dict):
        return None
    kind = result.get("errorKind")
    return str(kind) if kind else None


__all__ = [
    "SkillKind",
    "HEALTH_SKILL",
    "ErrorKind",
    "TERMINAL_ERROR_KINDS",
    "SkillInvocation",
    "result_ok",
    "skill_failure",
    "error_kind_of",
]
