import asyncio

import pytest

from actuator.contracts.plan import PlanContext, Step, StepStatus
from actuator.executor.step_executor import StepExecutor, StepFailedError
from actuator.executor.verify import VerificationOutcome


class ScriptedRunner:
    """Returns queued envelopes in order, repeating the last one."""

    def __init__(self, *envelopes):
        self.envelopes = list(envelopes)
        self.calls = []

    async def __call__(self, request):
        self.calls.append(request)
        if len(self.envelopes) > 1:
            return self.envelopes.pop(0)
        return self.envelopes[0]


class ScriptedVerifier:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, step):
        self.calls += 1
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


OK = {"ok": True, "skill": "ui.click", "result": {"success": True}}
PASSED = VerificationOutcome(passed=True)
FAILED = VerificationOutcome(passed=False, reason='Element "Send" not found')


def _step(**extra):
    base = {"id": 1, "description": "click send", "action": {"skill": "ui.click", "args": {}}}
    base.update(extra)
    return Step.model_validate(base)


def _executor(runner, verifier, strategies=None):
    return StepExecutor(runner, verifier=verifier, strategies=strategies, retry_backoff_s=0, default_settle_ms=0)


def test_first_attempt_success():
    runner = ScriptedRunner(OK)
    result = asyncio.run(_executor(runner, ScriptedVerifier(PASSED)).execute(_step()))
    assert result.status == StepStatus.SUCCESS
    assert result.retries == 0
    assert runner.calls == [{"skill": "ui.click", "args": {}}]


def test_execution_errors_are_retried():
    failure = {"ok": False, "error": "boom", "errorKind": "execution_failure"}
    runner = ScriptedRunner(failure, failure, OK)
    result = asyncio.run(_executor(runner, ScriptedVerifier(PASSED)).execute(_step()))
    assert result.status == StepStatus.SUCCESS
    assert result.retries == 2
    assert len(runner.calls) == 3


def test_policy_rejection_is_not_retried():
    runner = ScriptedRunner({"ok": False, "error": "Command 'nc' is not in the allowlist", "errorKind": "policy_rejection"})
    with pytest.raises(StepFailedError) as info:
        asyncio.run(_executor(runner, ScriptedVerifier(PASSED)).execute(_step()))
    assert len(runner.calls) == 1
    assert info.value.kind == "policy_rejection"
    assert info.value.result.status == StepStatus.FAILED
    assert info.value.result.retries == 0
    assert info.value.reason == "Step 1 failed after 1 attempts: Command 'nc' is not in the allowlist"


def test_exhausted_attempts_raise_with_last_error():
    runner = ScriptedRunner(OK)
    verifier = ScriptedVerifier(FAILED)
    with pytest.raises(StepFailedError) as info:
        asyncio.run(_executor(runner, verifier, strategies=[]).execute(_step(maxRetries=2)))
    assert len(runner.calls) == 2
    assert info.value.result.retries == 1
    assert info.value.result.error == 'Element "Send" not found'
    assert info.value.kind == "verification_failed"


def test_plan_context_max_retries_applies():
    runner = ScriptedRunner({"ok": False, "error": "boom", "errorKind": "execution_failure"})
    with pytest.raises(StepFailedError):
        asyncio.run(_executor(runner, ScriptedVerifier(PASSED)).execute(_step(), PlanContext(max_retries_per_step=4)))
    assert len(runner.calls) == 4


def test_alternative_strategy_gives_success_retry():
    runner = ScriptedRunner(OK)
    verifier = ScriptedVerifier(FAILED, PASSED)
    step = _step(kind="click_button", alternativeLabel="Submit")
    result = asyncio.run(_executor(runner, verifier).execute(step))

    assert result.status == StepStatus.SUCCESS_RETRY
    assert result.method == "alternative_label"
    assert result.retries == 1
    assert runner.calls[1] == {"skill": "ui.findAndClick", "args": {"label": "Submit"}}


def test_runner_exception_counts_as_execution_failure():
    calls = 0

    async def flaky(request):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("transport reset")
        return OK

    result = asyncio.run(_executor(flaky, ScriptedVerifier(PASSED)).execute(_step()))
    assert result.status == StepStatus.SUCCESS
    assert result.retries == 1
