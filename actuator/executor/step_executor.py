"""
Step execution: act, settle, verify, fall back, retry.

Per attempt:
    Executing -> (action failed) -> back off, next attempt
              -> settle -> Verifying -> passed            -> success
                                     -> failed -> strategies -> success_retry
                                                             -> next attempt
Policy, boundary and malformed-request failures end the step on the spot.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from actuator.contracts.plan import DEFAULT_MAX_RETRIES, PlanContext, Step, StepResult, StepStatus
from actuator.contracts.skills import TERMINAL_ERROR_KINDS, ErrorKind
from actuator.executor.strategies import ActionRunner, Strategy, run_alternatives
from actuator.executor.verify import VerificationOutcome, verify_step

logger = logging.getLogger(__name__)

DEFAULT_RETRY_BACKOFF_S = 1.0
DEFAULT_SETTLE_MS = 1_000


class StepFailedError(RuntimeError):
    """A step exhausted its attempts (or hit a terminal failure)."""

    def __init__(self, result: StepResult, reason: str, kind: str = ErrorKind.EXECUTION_FAILURE.value):
        self.result = result
        self.reason = reason
        self.kind = kind
        super().__init__(f"Step {result.step_id} failed: {reason}")


class StepExecutor:
    def __init__(
        self,
        execute_action: ActionRunner,
        *,
        verifier: Callable[[Step], Awaitable[VerificationOutcome]] = verify_step,
        strategies: Optional[List[Strategy]] = None,
        retry_backoff_s: float = DEFAULT_RETRY_BACKOFF_S,
        default_settle_ms: int = DEFAULT_SETTLE_MS,
    ) -> None:
        self._execute_action = execute_action
        self._verifier = verifier
        self._strategies = strategies
        self.retry_backoff_s = retry_backoff_s
        self.default_settle_ms = default_settle_ms

    async def _run_action(self, step: Step) -> Dict[str, Any]:
        try:
            return await self._execute_action(step.action.model_dump())
        except Exception as exc:  # noqa: BLE001
            logger.exception("Step %s: action runner raised", step.id)
            return {"ok": False, "error": str(exc), "errorKind": ErrorKind.EXECUTION_FAILURE.value}

    async def execute(self, step: Step, plan_context: Optional[PlanContext] = None) -> StepResult:
        """Run one step; returns a success result or raises StepFailedError."""
        plan_context = plan_context or PlanContext()
        started = time.monotonic()
        max_retries = step.max_retries or plan_context.max_retries_per_step or DEFAULT_MAX_RETRIES
        last_error = "no attempt made"
        last_kind = ErrorKind.EXECUTION_FAILURE.value
        attempts = 0

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        logger.info("Step %s: %s", step.id, step.description or step.action.skill)
        for attempt in range(1, max_retries + 1):
            attempts = attempt
            logger.info("Step %s: attempt %s/%s", step.id, attempt, max_retries)

            envelope = await self._run_action(step)
            if not envelope.get("ok"):
                last_error = str(envelope.get("error") or "action failed")
                last_kind = str(envelope.get("errorKind") or ErrorKind.EXECUTION_FAILURE.value)
                logger.warning("Step %s: execution error (%s): %s", step.id, last_kind, last_error)
                if last_kind in TERMINAL_ERROR_KINDS:
                    break
                if attempt < max_retries:
                    await asyncio.sleep(self.retry_backoff_s)
                continue

            if step.wait_after:
                await asyncio.sleep(step.wait_after / 1000.0)

            outcome = await self._verifier(step)
            if outcome.passed:
                logger.info("Step %s: success%s", step.id, f" ({outcome.kind})" if outcome.degraded else "")
                return StepResult(
                    step_id=step.id,
                    status=StepStatus.SUCCESS,
                    retries=attempt - 1,
                    execution_time=_elapsed(),
                )

            last_error = outcome.reason or "Verification failed"
            last_kind = outcome.kind or ErrorKind.VERIFICATION_FAILED.value
            logger.warning("Step %s: verification failed: %s", step.id, last_error)

            if attempt < max_retries:
                method = await run_alternatives(
                    step,
                    self._execute_action,
                    self._verifier,
                    step.wait_after or self.default_settle_ms,
                    self._strategies,
                )
                if method:
                    logger.info("Step %s: success with alternative %s", step.id, method)
                    return StepResult(
                        step_id=step.id,
                        status=StepStatus.SUCCESS_RETRY,
                        method=method,
                        retries=attempt,
                        execution_time=_elapsed(),
                    )

        reason = f"Step {step.id} failed after {attempts} attempts: {last_error}"
        logger.error(reason)
        failed = StepResult(
            step_id=step.id,
            status=StepStatus.FAILED,
            retries=max(0, attempts - 1),
            execution_time=_elapsed(),
            error=last_error,
        )
        raise StepFailedError(failed, reason, last_kind)


__all__ = ["StepFailedError", "StepExecutor"]
