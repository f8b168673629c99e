import asyncio

from actuator.contracts.plan import Step
from actuator.executor import strategies
from actuator.executor.strategies import Strategy, run_alternatives
from actuator.executor.verify import VerificationOutcome


def _step(**extra):
    base = {"id": 7, "action": {"skill": "ui.findAndClick", "args": {"label": "Send"}}}
    base.update(extra)
    return Step.model_validate(base)


class Recorder:
    def __init__(self, ok=True):
        self.ok = ok
        self.requests = []

    async def __call__(self, request):
        self.requests.append(request)
        return {"ok": self.ok}


async def _pass(step):
    return VerificationOutcome(passed=True)


async def _fail(step):
    return VerificationOutcome(passed=False, reason="nope")


def test_no_applicable_strategy(monkeypatch):
    runner = Recorder()
    assert asyncio.run(run_alternatives(_step(), runner, _pass, 0)) is None
    assert runner.requests == []


def test_alternative_role_uses_target():
    runner = Recorder()
    step = _step(kind="click_button", target="Send", alternativeRole="menuitem")
    assert asyncio.run(run_alternatives(step, runner, _pass, 0)) == "alternative_role"
    assert runner.requests == [{"skill": "ui.findAndClick", "args": {"label": "Send", "role": "menuitem"}}]


def test_keyboard_shortcut_typed():
    runner = Recorder()
    step = _step(keyboardShortcut="{CMD+ENTER}")
    assert asyncio.run(run_alternatives(step, runner, _pass, 0)) == "keyboard_shortcut"
    assert runner.requests == [{"skill": "ui.typeText", "args": {"text": "{CMD+ENTER}"}}]


def test_extra_tabs_for_fill_field(monkeypatch):
    monkeypatch.setattr(strategies, "TAB_SETTLE_MS", 0)
    runner = Recorder()
    step = _step(kind="fill_field", value="alice@example.com")
    assert asyncio.run(run_alternatives(step, runner, _pass, 0)) == "extra_tabs"
    assert [r["args"]["text"] for r in runner.requests] == ["{TAB}", "alice@example.com"]


def test_strategies_tried_in_order_until_one_verifies():
    runner = Recorder()
    verdicts = iter([VerificationOutcome(passed=False), VerificationOutcome(passed=True)])

    async def verifier(step):
        return next(verdicts)

    step = _step(kind="click_button", alternativeLabel="Submit", keyboardShortcut="{ENTER}")
    assert asyncio.run(run_alternatives(step, runner, verifier, 0)) == "keyboard_shortcut"
    assert [r["skill"] for r in runner.requests] == ["ui.findAndClick", "ui.typeText"]


def test_failed_actions_and_raising_strategies_are_skipped():
    async def boom(step, execute):
        raise RuntimeError("driver crashed")

    custom = [
        Strategy(name="explodes", applies=lambda s: True, run=boom),
        Strategy(name="never", applies=lambda s: False, run=boom),
    ]
    assert asyncio.run(run_alternatives(_step(), Recorder(), _pass, 0, custom)) is None
    step = _step(keyboardShortcut="{ENTER}")
    assert asyncio.run(run_alternatives(step, Recorder(ok=False), _pass, 0)) is None
    assert asyncio.run(run_alternatives(step, Recorder(), _fail, 0)) is None
