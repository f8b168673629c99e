"""
Plan execution: steps in order under one overall deadline.

The deadline is raced with asyncio.wait. When it fires, a stop flag keeps any
further step from starting; the step already in flight is left to finish on
its own (its task is tracked, not cancelled) so no half-performed UI action is
torn down mid-way. The plan result reports the steps recorded so far.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Set, Tuple

from actuator.config import partial_success_threshold
from actuator.contracts.plan import (
    CompletedSummary,
    FailedSummary,
    Plan,
    PlanContext,
    PlanResult,
    PlanStatus,
    StepResult,
    StepStatus,
)
from actuator.executor.step_executor import StepExecutor, StepFailedError
from actuator.utils.time_utils import elapsed_ms, monotonic_ms

logger = logging.getLogger(__name__)

PARTIAL_SUCCESS_THRESHOLD = partial_success_threshold()


class PlanExecutor:
    def __init__(self, step_executor: StepExecutor, *, partial_success_threshold: Optional[float] = None):
        self.step_executor = step_executor
        self.partial_success_threshold = (
            PARTIAL_SUCCESS_THRESHOLD if partial_success_threshold is None else partial_success_threshold
        )
        self._orphans: Set[asyncio.Task] = set()

    @property
    def orphaned_steps(self) -> int:
        """Steps still running after their plan hit its deadline."""
        return len(self._orphans)

    def is_partial_success(self, result: PlanResult) -> bool:
        return result.is_partial_success(self.partial_success_threshold)

    def summarize(self, result: PlanResult) -> str:
        return generate_summary(result, self.partial_success_threshold)

    def _on_orphan_done(self, task: asyncio.Task) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Step finishing after plan deadline raised: %s", exc)

    async def execute(self, plan: Plan) -> PlanResult:
        started = monotonic_ms()
        context = PlanContext.from_plan(plan)
        results: List[StepResult] = []
        failure: List[Tuple[int, StepFailedError]] = []
        stop = asyncio.Event()

        def total_time() -> int:
            return elapsed_ms(started)

        logger.info(
            "Plan %s starting: %s steps, timeout %sms, command=%r",
            plan.plan_id,
            len(plan.steps),
            plan.total_timeout,
            plan.original_command,
        )

        async def _run_steps() -> None:
            for index, step in enumerate(plan.steps, start=1):
                if stop.is_set():
                    return
                try:
                    result = await self.step_executor.execute(step, context)
                except StepFailedError as exc:
                    if not stop.is_set():
                        results.append(exc.result)
                        failure.append((index, exc))
                    return
                if stop.is_set():
                    return
                results.append(result)
                logger.info("Plan %s progress: %s/%s steps", plan.plan_id, len(results), len(plan.steps))

        task = asyncio.create_task(_run_steps())
        done, _ = await asyncio.wait({task}, timeout=plan.total_timeout / 1000.0)

        if task not in done:
            stop.set()
            self._orphans.add(task)
            task.add_done_callback(self._on_orphan_done)
            recorded = list(results)
            completed = _count_completed(recorded)
            error = f"Plan execution timeout after {plan.total_timeout}ms"
            logger.error("Plan %s: %s (%s/%s steps completed)", plan.plan_id, error, completed, len(plan.steps))
            return PlanResult(
                plan_id=plan.plan_id,
                status=PlanStatus.FAILED,
                steps=recorded,
                total_time=total_time(),
                failed_step=completed + 1,
                error=error,
                summary=FailedSummary(total_steps=len(plan.steps), completed=completed, failed=completed + 1),
            )

        # Surfaces unexpected errors from the step executor.
        task.result()

        if failure:
            index, exc = failure[0]
            completed = _count_completed(results)
            logger.error("Plan %s failed at step %s: %s", plan.plan_id, index, exc.reason)
            return PlanResult(
                plan_id=plan.plan_id,
                status=PlanStatus.FAILED,
                steps=list(results),
                total_time=total_time(),
                failed_step=completed + 1,
                error=exc.reason,
                summary=FailedSummary(total_steps=len(plan.steps), completed=completed, failed=completed + 1),
            )

        summary = CompletedSummary(
            total_steps=len(plan.steps),
            successful=sum(1 for r in results if r.status == StepStatus.SUCCESS),
            with_retries=sum(1 for r in results if r.status == StepStatus.SUCCESS_RETRY),
            total_retries=sum(r.retries for r in results),
        )
        logger.info("Plan %s completed in %sms: %s", plan.plan_id, total_time(), summary.model_dump())
        return PlanResult(
            plan_id=plan.plan_id,
            status=PlanStatus.COMPLETED,
            steps=list(results),
            total_time=total_time(),
            summary=summary,
        )


def _count_completed(results: List[StepResult]) -> int:
    return sum(1 for r in results if r.status in (StepStatus.SUCCESS, StepStatus.SUCCESS_RETRY))


def generate_summary(result: PlanResult, threshold: float = PARTIAL_SUCCESS_THRESHOLD) -> str:
    """Human-readable one-liner distinguishing full success, partial success and failure."""
    seconds = result.total_time / 1000.0
    total = result.summary.total_steps
    if result.status == PlanStatus.COMPLETED:
        retry_info = ""
        if isinstance(result.summary, CompletedSummary) and result.summary.total_retries > 0:
            retry_info = f" ({result.summary.with_retries} steps needed retries)"
        return f"Command completed successfully in {seconds:.1f}s. Executed {total} steps{retry_info}."

    completed = result.completed_count()
    if result.is_partial_success(threshold):
        return (
            f"Command partially completed: {completed}/{total} steps "
            f"({result.completion_ratio() * 100:.0f}%) before failing at step {result.failed_step}: {result.error}."
        )
    return (
        f"Command failed at step {result.failed_step}/{total}: {result.error}. "
        f"Completed {completed} steps before failure."
    )


__all__ = ["PARTIAL_SUCCESS_THRESHOLD", "PlanExecutor", "generate_summary"]
