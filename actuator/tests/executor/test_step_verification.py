import asyncio

from actuator.contracts.plan import Step
from actuator.executor import verify
from actuator.vision.service_client import ServiceUnavailableError


def _step(verification, **context):
    return Step.model_validate(
        {
            "id": "s1",
            "description": "open settings",
            "action": {"skill": "ui.click", "args": {}},
            "verification": verification,
            "verificationContext": context,
        }
    )


def _patch_detector(monkeypatch, visible):
    async def fake_detect(description, snapshot, context=None, timeout_ms=60000):
        confidence = visible.get(description, 0.0)
        return {"success": confidence > 0, "confidence": confidence, "coordinates": {"x": 1, "y": 1}}

    monkeypatch.setattr(verify, "capture_snapshot", lambda: object())
    monkeypatch.setattr(verify, "detect_element", fake_detect)


def test_none_passes_without_capture(monkeypatch):
    def unexpected():
        raise AssertionError("captured")

    monkeypatch.setattr(verify, "capture_snapshot", unexpected)
    assert asyncio.run(verify.verify_step(_step("none"))).passed is True


def test_unknown_verification_passes():
    outcome = asyncio.run(verify.verify_step(_step("pixel_perfect")))
    assert outcome.passed is True


def test_element_visible_uses_confidence_floor(monkeypatch):
    _patch_detector(monkeypatch, {"Settings window": 0.8, "Faint": 0.3})
    assert asyncio.run(verify.verify_step(_step("element_visible", shouldSeeElement="Settings window"))).passed
    faint = asyncio.run(verify.verify_step(_step("element_visible", shouldSeeElement="Faint")))
    assert faint.passed is False
    assert faint.reason == 'Element "Faint" not found'


def test_all_and_none_visible(monkeypatch):
    _patch_detector(monkeypatch, {"Save": 0.9, "Cancel": 0.9})
    assert asyncio.run(verify.verify_step(_step("all_visible", shouldSeeElements=["Save", "Cancel"]))).passed
    assert not asyncio.run(verify.verify_step(_step("all_visible", shouldSeeElements=["Save", "Help"]))).passed
    assert asyncio.run(verify.verify_step(_step("none_visible", shouldNotSeeElements=["Error dialog"]))).passed
    still = asyncio.run(verify.verify_step(_step("none_visible", shouldNotSeeElements=["Save"])))
    assert still.passed is False
    assert still.reason == 'Element "Save" is still visible'


def test_unreachable_detector_is_degraded_pass(monkeypatch):
    async def down(*args, **kwargs):
        raise ServiceUnavailableError("connection refused")

    monkeypatch.setattr(verify, "capture_snapshot", lambda: object())
    monkeypatch.setattr(verify, "detect_element", down)
    outcome = asyncio.run(verify.verify_step(_step("element_visible", shouldSeeElement="Save")))
    assert outcome.passed is True
    assert outcome.degraded is True


def test_capture_failure_is_degraded_pass(monkeypatch):
    def broken():
        raise OSError("no display")

    monkeypatch.setattr(verify, "capture_snapshot", broken)
    outcome = asyncio.run(verify.verify_step(_step("element_visible", shouldSeeElement="Save")))
    assert outcome.passed is True
    assert outcome.degraded is True
    assert outcome.reason == "cannot verify: no display"


def test_screen_verified(monkeypatch):
    replies = iter(
        [
            {"success": True, "verified": True},
            {"success": True, "verified": False, "reasoning": "dialog still open"},
            {"success": False, "error": "model offline"},
        ]
    )

    async def fake_verify(snapshot, prompt, step_description=None, context=None, timeout_ms=30000):
        return next(replies)

    monkeypatch.setattr(verify, "capture_snapshot", lambda: object())
    monkeypatch.setattr(verify, "verify_screen", fake_verify)
    step = _step("screen_verified", prompt="Is the dialog closed?")
    assert asyncio.run(verify.verify_step(step)).passed is True
    rejected = asyncio.run(verify.verify_step(step))
    assert rejected.passed is False
    assert rejected.reason == "dialog still open"
    inconclusive = asyncio.run(verify.verify_step(step))
    assert inconclusive.passed is True
    assert inconclusive.degraded is True
    assert inconclusive.kind == "verification_inconclusive"
    assert rejected.kind == "verification_failed"
