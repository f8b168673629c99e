"""
Alternative strategies tried after a step fails verification.

Strategies are data: an ordered list of records, each with an applicability
predicate and a coroutine that issues skill requests through the same action
runner the step itself uses. The first strategy whose actions succeed and whose
re-verification passes wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from actuator.contracts.plan import Step
from actuator.contracts.skills import SkillKind
from actuator.executor.verify import VerificationOutcome

logger = logging.getLogger(__name__)

TAB_SETTLE_MS = 300

ActionRunner = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
Verifier = Callable[[Step], Awaitable[VerificationOutcome]]


@dataclass(frozen=True)
class Strategy:
    name: str
    applies: Callable[[Step], bool]
    run: Callable[[Step, ActionRunner], Awaitable[bool]]


def _invoke(skill: SkillKind, **args: Any) -> Dict[str, Any]:
    return {"skill": skill.value, "args": {k: v for k, v in args.items() if v is not None}}


async def _alternative_label(step: Step, execute: ActionRunner) -> bool:
    envelope = await execute(_invoke(SkillKind.UI_FIND_AND_CLICK, label=step.alternative_label, role=step.role))
    return bool(envelope.get("ok"))


async def _alternative_role(step: Step, execute: ActionRunner) -> bool:
    envelope = await execute(_invoke(SkillKind.UI_FIND_AND_CLICK, label=step.target, role=step.alternative_role))
    return bool(envelope.get("ok"))


async def _keyboard_shortcut(step: Step, execute: ActionRunner) -> bool:
    envelope = await execute(_invoke(SkillKind.UI_TYPE_TEXT, text=step.keyboard_shortcut))
    return bool(envelope.get("ok"))


async def _extra_tabs(step: Step, execute: ActionRunner) -> bool:
    envelope = await execute(_invoke(SkillKind.UI_TYPE_TEXT, text="{TAB}"))
    if not envelope.get("ok"):
        return False
    await asyncio.sleep(TAB_SETTLE_MS / 1000.0)
    envelope = await execute(_invoke(SkillKind.UI_TYPE_TEXT, text=step.value))
    return bool(envelope.get("ok"))


DEFAULT_STRATEGIES: List[Strategy] = [
    Strategy(
        name="alternative_label",
        applies=lambda s: bool(s.alternative_label) and s.kind == "click_button",
        run=_alternative_label,
    ),
    Strategy(
        name="alternative_role",
        applies=lambda s: bool(s.alternative_role) and bool(s.target) and s.kind == "click_button",
        run=_alternative_role,
    ),
    Strategy(
        name="keyboard_shortcut",
        applies=lambda s: bool(s.keyboard_shortcut),
        run=_keyboard_shortcut,
    ),
    Strategy(
        name="extra_tabs",
        applies=lambda s: s.kind == "fill_field" and bool(s.value),
        run=_extra_tabs,
    ),
]


async def run_alternatives(
    step: Step,
    execute: ActionRunner,
    verifier: Verifier,
    settle_ms: int,
    strategies: Optional[List[Strategy]] = None,
) -> Optional[str]:
    """Try each applicable strategy in order; return the name of the first that verifies."""
    for strategy in strategies if strategies is not None else DEFAULT_STRATEGIES:
        if not strategy.applies(step):
            continue
        logger.info("Step %s: trying alternative strategy %s", step.id, strategy.name)
        try:
            if not await strategy.run(step, execute):
                logger.info("Step %s: strategy %s action failed", step.id, strategy.name)
                continue
            await asyncio.sleep(max(0, settle_ms) / 1000.0)
            outcome = await verifier(step)
        except Exception as exc:  # noqa: BLE001
            logger.info("Step %s: strategy %s raised: %s", step.id, strategy.name, exc)
            continue
        if outcome.passed:
            return strategy.name
    return None


__all__ = ["TAB_SETTLE_MS", "Strategy", "DEFAULT_STRATEGIES", "run_alternatives"]
