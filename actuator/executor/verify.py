"""
Post-action verification for plan steps.

Every check runs against a fresh snapshot. A failed capture, or an unreachable
detector/verifier, cannot prove the step wrong: the step passes and the
outcome is flagged as degraded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from actuator.contracts.plan import Step
from actuator.contracts.skills import ErrorKind
from actuator.vision.screenshot import ScreenSnapshot, capture_snapshot
from actuator.vision.service_client import ServiceUnavailableError, detect_element, verify_screen

logger = logging.getLogger(__name__)

VERIFY_MIN_CONFIDENCE = 0.5
VERIFY_TIMEOUT_MS = 30_000


@dataclass(frozen=True)
class VerificationOutcome:
    passed: bool
    degraded: bool = False
    reason: Optional[str] = None

    @property
    def kind(self) -> Optional[str]:
        if self.degraded:
            return ErrorKind.VERIFICATION_INCONCLUSIVE.value
        if not self.passed:
            return ErrorKind.VERIFICATION_FAILED.value
        return None


PASS = VerificationOutcome(passed=True)


async def _element_detected(name: str, snapshot: ScreenSnapshot) -> bool:
    reply = await detect_element(name, snapshot, timeout_ms=VERIFY_TIMEOUT_MS)
    if not reply.get("success"):
        return False
    try:
        confidence = float(reply.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    return confidence >= VERIFY_MIN_CONFIDENCE


def _names(step: Step, key: str):
    raw = step.verification_context.get(key) or []
    if isinstance(raw, str):
        raw = [raw]
    return [str(item) for item in raw if item]


async def check_element_visible(step: Step, snapshot: ScreenSnapshot) -> VerificationOutcome:
    name = step.verification_context.get("shouldSeeElement")
    if not name:
        return PASS
    if await _element_detected(str(name), snapshot):
        return PASS
    return VerificationOutcome(passed=False, reason=f'Element "{name}" not found')


async def check_all_visible(step: Step, snapshot: ScreenSnapshot) -> VerificationOutcome:
    for name in _names(step, "shouldSeeElements"):
        if not await _element_detected(name, snapshot):
            return VerificationOutcome(passed=False, reason=f'Element "{name}" not found')
    return PASS


async def check_none_visible(step: Step, snapshot: ScreenSnapshot) -> VerificationOutcome:
    for name in _names(step, "shouldNotSeeElements"):
        if await _element_detected(name, snapshot):
            return VerificationOutcome(passed=False, reason=f'Element "{name}" is still visible')
    return PASS


async def check_screen_verified(step: Step, snapshot: ScreenSnapshot) -> VerificationOutcome:
    prompt = step.verification_context.get("prompt")
    if not prompt:
        return PASS
    reply = await verify_screen(snapshot, str(prompt), step.description, timeout_ms=VERIFY_TIMEOUT_MS)
    if not reply.get("success") or reply.get("verified") is None:
        return VerificationOutcome(passed=True, degraded=True, reason="Visual verifier gave no verdict")
    if reply.get("verified"):
        return PASS
    return VerificationOutcome(passed=False, reason=reply.get("reasoning") or "Visual verification failed")


async def check_field_filled(step: Step, snapshot: ScreenSnapshot) -> VerificationOutcome:
    return PASS


CheckFn = Callable[[Step, ScreenSnapshot], Awaitable[VerificationOutcome]]

CHECKS: Dict[str, CheckFn] = {
    "element_visible": check_element_visible,
    "all_visible": check_all_visible,
    "none_visible": check_none_visible,
    "screen_verified": check_screen_verified,
    "field_filled": check_field_filled,
}


async def verify_step(step: Step) -> VerificationOutcome:
    if not step.verification or step.verification == "none":
        return PASS

    check = CHECKS.get(step.verification)
    if check is None:
        logger.warning("Step %s: unknown verification type %r, treating as passed", step.id, step.verification)
        return PASS

    try:
        snapshot = await asyncio.to_thread(capture_snapshot)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Step %s: screenshot failed, cannot verify: %s", step.id, exc)
        return VerificationOutcome(passed=True, degraded=True, reason=f"cannot verify: {exc}")

    try:
        outcome = await check(step, snapshot)
    except ServiceUnavailableError as exc:
        logger.warning("Step %s: verification inconclusive (degraded pass): %s", step.id, exc)
        return VerificationOutcome(passed=True, degraded=True, reason=str(exc))

    if outcome.degraded:
        logger.warning("Step %s: verification degraded: %s", step.id, outcome.reason)
    return outcome


__all__ = ["VERIFY_MIN_CONFIDENCE", "VerificationOutcome", "CHECKS", "verify_step"]
