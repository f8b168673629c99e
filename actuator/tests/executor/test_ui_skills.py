import asyncio

import pytest

from actuator.executor import ui_skills
from actuator.vision.coordinate_resolver import Resolution
from actuator.vision.service_client import ServiceUnavailableError


class FakeController:
    def __init__(self):
        self.calls = []

    def move_to(self, x, y):
        self.calls.append(("move", x, y))
        return {"success": True, "x": x, "y": y}

    def click(self, button="left", modifier=None, x=None, y=None):
        self.calls.append(("click", button, modifier, x, y))
        return {"success": True, "button": button, "modifier": modifier}


@pytest.fixture
def desktop(monkeypatch):
    controller = FakeController()
    monkeypatch.setattr(ui_skills, "controller", controller)
    monkeypatch.setattr(ui_skills, "get_window_context", lambda: {"windowTitle": "Inbox - Mail", "activeApp": "Mail"})
    monkeypatch.setattr(ui_skills, "CLICK_SETTLE_MS", 0)
    return controller


def _resolver(resolution, seen=None):
    async def fake_resolve(label, window=None, *, role=None, min_confidence=0.65, timeout_ms=60000):
        if seen is not None:
            seen.update({"label": label, "window": window, "role": role, "min_confidence": min_confidence})
        return resolution

    return fake_resolve


def test_find_and_click_moves_then_clicks(monkeypatch, desktop):
    seen = {}
    monkeypatch.setattr(ui_skills, "resolve", _resolver(Resolution(ok=True, x=640, y=320, confidence=0.9), seen))
    result = asyncio.run(ui_skills.find_and_click({"label": "Send", "button": "double", "role": "button"}))

    assert result["success"] is True
    assert (result["x"], result["y"]) == (640, 320)
    assert desktop.calls == [("move", 640, 320), ("click", "double", None, None, None)]
    assert seen["window"]["activeApp"] == "Mail"
    assert seen["role"] == "button"


def test_find_and_click_requests_manual_step(monkeypatch, desktop):
    failure = Resolution(ok=False, reason="Low confidence: 40% (threshold 65%)", confidence=0.4)
    monkeypatch.setattr(ui_skills, "resolve", _resolver(failure))
    result = asyncio.run(ui_skills.find_and_click({"label": "Send"}))

    assert result["success"] is False
    assert result["needsManualStep"] is True
    assert result["instruction"] == 'Please left-click "Send" on screen, then confirm when done.'
    assert result["reason"] == "Low confidence: 40% (threshold 65%)"
    assert desktop.calls == []


def test_find_and_click_validates_arguments(desktop):
    assert asyncio.run(ui_skills.find_and_click({}))["errorKind"] == "invalid_request"
    assert asyncio.run(ui_skills.find_and_click({"label": "x", "button": "middle"}))["errorKind"] == "invalid_request"


def test_move_mouse_uses_hover_defaults(monkeypatch, desktop):
    seen = {}
    monkeypatch.setattr(ui_skills, "resolve", _resolver(Resolution(ok=True, x=5, y=6, confidence=0.35), seen))
    result = asyncio.run(ui_skills.move_mouse({"label": "Profile menu", "settleMs": 0}))
    assert result["success"] is True
    assert seen["min_confidence"] == 0.3
    assert desktop.calls == [("move", 5, 6)]


def test_click_with_modifier_and_coordinates(desktop):
    result = asyncio.run(ui_skills.click({"button": "left", "modifier": "CTRL", "x": 10, "y": 20, "settleMs": 0}))
    assert result["success"] is True
    assert desktop.calls == [("click", "left", "ctrl", 10, 20)]


def test_click_requires_both_coordinates(desktop):
    result = asyncio.run(ui_skills.click({"x": 10, "settleMs": 0}))
    assert result["errorKind"] == "invalid_request"
    assert desktop.calls == []


def test_type_keys_delegates_to_input(monkeypatch):
    typed = []

    def fake_type(text, delay_ms=0):
        typed.append((text, delay_ms))
        return {"success": True, "typed": text, "elapsed": 0}

    monkeypatch.setattr(ui_skills, "type_text", fake_type)
    result = asyncio.run(ui_skills.type_keys({"text": "hi{ENTER}", "delayMs": 20}))
    assert result["success"] is True
    assert typed == [("hi{ENTER}", 20)]
    assert asyncio.run(ui_skills.type_keys({}))["errorKind"] == "invalid_request"


def test_screen_verify_passes_verdict_through(monkeypatch):
    async def fake_verify(snapshot, prompt, step_description=None, context=None, timeout_ms=30000):
        return {"success": True, "verified": False, "confidence": 0.8, "reasoning": "dialog open", "provider": "vlm"}

    monkeypatch.setattr(ui_skills, "capture_snapshot", lambda: object())
    monkeypatch.setattr(ui_skills, "verify_screen", fake_verify)
    result = asyncio.run(ui_skills.screen_verify({"prompt": "Is the dialog closed?"}))
    assert result["success"] is True
    assert result["verified"] is False
    assert result["provider"] == "vlm"


def test_screen_verify_degrades_when_service_down(monkeypatch):
    async def down(*args, **kwargs):
        raise ServiceUnavailableError("connection refused")

    monkeypatch.setattr(ui_skills, "capture_snapshot", lambda: object())
    monkeypatch.setattr(ui_skills, "verify_screen", down)
    result = asyncio.run(ui_skills.screen_verify({"prompt": "Is the dialog closed?"}))
    assert result["success"] is True
    assert result["verified"] is None
    assert result["degraded"] is True
    assert result["provider"] == "none"
    assert result["errorKind"] == "verification_inconclusive"
