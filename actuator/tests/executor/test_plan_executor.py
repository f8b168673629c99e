import asyncio

from actuator.contracts.plan import CompletedSummary, FailedSummary, Plan, PlanStatus, StepStatus
from actuator.executor.plan_executor import PlanExecutor, generate_summary
from actuator.executor.step_executor import StepExecutor
from actuator.executor.verify import VerificationOutcome


async def _always_pass(step):
    return VerificationOutcome(passed=True)


def _plan(count, **extra):
    steps = [
        {"id": i, "description": f"step {i}", "action": {"skill": "ui.typeText", "args": {"text": f"s{i}"}}}
        for i in range(1, count + 1)
    ]
    return Plan.model_validate({"planId": "p-1", "originalCommand": "do things", "steps": steps, **extra})


def _runner(fail_text=None, delay=0.0):
    async def run(request):
        if delay:
            await asyncio.sleep(delay)
        if request["args"].get("text") == fail_text:
            return {"ok": False, "error": "element missing", "errorKind": "execution_failure"}
        return {"ok": True, "result": {"success": True}}

    return run


def _executor(runner, **kwargs):
    return PlanExecutor(
        StepExecutor(runner, verifier=_always_pass, strategies=[], retry_backoff_s=0, default_settle_ms=0),
        **kwargs,
    )


def test_all_steps_complete():
    executor = _executor(_runner())
    result = asyncio.run(executor.execute(_plan(3)))
    assert result.status == PlanStatus.COMPLETED
    assert isinstance(result.summary, CompletedSummary)
    assert result.summary.successful == 3
    assert result.summary.total_retries == 0
    assert result.failed_step is None
    assert executor.summarize(result).startswith("Command completed successfully in")


def test_failure_stops_plan_and_reports_partial_state():
    executor = _executor(_runner(fail_text="s3"))
    result = asyncio.run(executor.execute(_plan(5)))

    assert result.status == PlanStatus.FAILED
    assert result.failed_step == 3
    assert isinstance(result.summary, FailedSummary)
    assert result.summary.completed == 2
    assert result.summary.failed == 3
    assert [s.status for s in result.steps] == [StepStatus.SUCCESS, StepStatus.SUCCESS, StepStatus.FAILED]
    assert result.completion_ratio() == 0.4
    assert executor.is_partial_success(result) is False
    assert result.error == "Step 3 failed after 3 attempts: element missing"
    assert executor.summarize(result).startswith("Command failed at step 3/5: ")


def test_late_failure_counts_as_partial_success():
    executor = _executor(_runner(fail_text="s9"))
    result = asyncio.run(executor.execute(_plan(10)))
    assert result.summary.completed == 8
    assert executor.is_partial_success(result) is True
    assert executor.summarize(result).startswith("Command partially completed: 8/10 steps (80%) before failing at step 9")


def test_threshold_is_tunable():
    executor = _executor(_runner(fail_text="s3"), partial_success_threshold=0.4)
    result = asyncio.run(executor.execute(_plan(5)))
    assert executor.is_partial_success(result) is True


def test_deadline_returns_timeout_with_recorded_steps():
    async def scenario():
        executor = _executor(_runner(delay=0.2))
        result = await executor.execute(_plan(5, totalTimeout=500))
        orphans = executor.orphaned_steps
        await asyncio.sleep(0.4)
        return result, orphans, executor.orphaned_steps

    result, orphans_at_deadline, orphans_later = asyncio.run(scenario())
    assert result.status == PlanStatus.FAILED
    assert result.error == "Plan execution timeout after 500ms"
    assert result.summary.completed == 2
    assert result.failed_step == 3
    assert len(result.steps) == 2
    assert orphans_at_deadline == 1
    assert orphans_later == 0


def test_empty_plan_completes():
    result = asyncio.run(_executor(_runner()).execute(_plan(0)))
    assert result.status == PlanStatus.COMPLETED
    assert result.summary.total_steps == 0


def test_summary_without_retries():
    result = asyncio.run(_executor(_runner()).execute(_plan(2)))
    text = generate_summary(result)
    assert "Executed 2 steps." in text
    assert "retries" not in text


def test_result_wire_format_is_camel_case():
    result = asyncio.run(_executor(_runner(fail_text="s2")).execute(_plan(2)))
    wire = result.to_wire()
    assert wire["planId"] == "p-1"
    assert wire["failedStep"] == 2
    assert wire["summary"] == {"totalSteps": 2, "completed": 1, "failed": 2}
    assert wire["steps"][0]["stepId"] == 1
