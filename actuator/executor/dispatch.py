from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from actuator.contracts.skills import HEALTH_SKILL, ErrorKind, SkillKind, error_kind_of, result_ok
from actuator.executor.browser import handle_browser_act
from actuator.executor.sessions import SessionRegistry
from actuator.executor.shell import handle_shell_run
from actuator.executor.ui_skills import (
    handle_click,
    handle_find_and_click,
    handle_move_mouse,
    handle_screen_verify,
    handle_type_text,
)
from actuator.executor.wait import handle_wait_for
from actuator.logging_utils import generate_request_id, log_event
from actuator.security.policy import CommandPolicy
from actuator.utils.time_utils import elapsed_ms, monotonic_ms
from actuator.vision.ocr import OcrCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkillContext:
    """Shared collaborators handed to every skill handler."""

    policy: CommandPolicy
    sessions: SessionRegistry
    ocr_cache: OcrCache
    request_id: str = ""


SkillHandler = Callable[[Dict[str, Any], SkillContext], Awaitable[Dict[str, Any]]]

DEFAULT_HANDLERS: Dict[SkillKind, SkillHandler] = {
    SkillKind.SHELL_RUN: handle_shell_run,
    SkillKind.BROWSER_ACT: handle_browser_act,
    SkillKind.UI_FIND_AND_CLICK: handle_find_and_click,
    SkillKind.UI_MOVE_MOUSE: handle_move_mouse,
    SkillKind.UI_CLICK: handle_click,
    SkillKind.UI_TYPE_TEXT: handle_type_text,
    SkillKind.UI_WAIT_FOR: handle_wait_for,
    SkillKind.UI_SCREEN_VERIFY: handle_screen_verify,
}


class SkillRouter:
    """
    Single entry point from an abstract {skill, args} request to a concrete actuator.

    The handler table must cover every SkillKind; a gap is a startup error, not
    a runtime "unknown skill". ``route`` never raises: every outcome, including a
    handler crash, comes back as an envelope {ok, skill, result, error?, errorKind?}.
    """

    def __init__(self, handlers: Mapping[SkillKind, SkillHandler], context: SkillContext) -> None:
        missing = [kind.value for kind in SkillKind if kind not in handlers]
        if missing:
            raise ValueError(f"no handler registered for skill(s): {', '.join(missing)}")
        self._handlers = dict(handlers)
        self.context = context

    @property
    def skills(self) -> list:
        return [kind.value for kind in SkillKind]

    def health(self) -> Dict[str, Any]:
        policy = self.context.policy.to_dict()
        return {
            "ok": True,
            "skills": self.skills,
            "validatorEnabled": policy["validatorEnabled"],
            "allowedCategories": policy["allowedCategories"],
            "sessions": self.context.sessions.list_sessions(),
        }

    async def route(self, request: Any, request_id: Optional[str] = None) -> Dict[str, Any]:
        request_id = request_id or generate_request_id()
        skill = request.get("skill") if isinstance(request, dict) else None
        args = request.get("args", {}) if isinstance(request, dict) else None
        if args is None:
            args = {}

        if skill == HEALTH_SKILL:
            return {"ok": True, "skill": HEALTH_SKILL, "result": self.health()}

        try:
            kind = SkillKind(skill)
        except ValueError:
            log_event("skill.rejected", request_id, {"skill": skill, "reason": "unknown_skill"})
            return {
                "ok": False,
                "skill": skill,
                "result": None,
                "error": f"Unknown skill: {skill}",
                "errorKind": ErrorKind.INVALID_REQUEST.value,
            }
        if not isinstance(args, dict):
            return {
                "ok": False,
                "skill": skill,
                "result": None,
                "error": "args must be an object",
                "errorKind": ErrorKind.INVALID_REQUEST.value,
            }

        started = monotonic_ms()
        log_event("skill.start", request_id, {"skill": skill, "args": args})
        context = replace(self.context, request_id=request_id)
        try:
            result = await self._handlers[kind](args, context)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Skill %s raised", skill)
            envelope = {
                "ok": False,
                "skill": skill,
                "result": None,
                "error": f"{type(exc).__name__}: {exc}",
                "errorKind": ErrorKind.EXECUTION_FAILURE.value,
            }
        else:
            ok = result_ok(result)
            envelope = {"ok": ok, "skill": skill, "result": result}
            if not ok:
                envelope["error"] = (result or {}).get("error") or (result or {}).get("reason") or "skill failed"
                envelope["errorKind"] = error_kind_of(result) or ErrorKind.EXECUTION_FAILURE.value

        log_event(
            "skill.finished",
            request_id,
            {
                "skill": skill,
                "ok": envelope["ok"],
                "error": envelope.get("error"),
                "errorKind": envelope.get("errorKind"),
                "elapsed_ms": elapsed_ms(started),
            },
        )
        return envelope


def build_router(
    policy: CommandPolicy,
    sessions: SessionRegistry,
    *,
    ocr_cache: Optional[OcrCache] = None,
    handlers: Optional[Mapping[SkillKind, SkillHandler]] = None,
) -> SkillRouter:
    context = SkillContext(policy=policy, sessions=sessions, ocr_cache=ocr_cache or OcrCache())
    return SkillRouter(handlers if handlers is not None else DEFAULT_HANDLERS, context)


__all__ = ["SkillContext", "SkillHandler", "DEFAULT_HANDLERS", "SkillRouter", "build_router"]
