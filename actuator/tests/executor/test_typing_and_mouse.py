import sys

import pytest

from actuator.executor import input as input_mod
from actuator.executor.mouse import MouseController


class FakePyAutoGUI:
    def __init__(self, width=1920, height=1080, fail_click=False):
        self.calls = []
        self._size = (width, height)
        self.fail_click = fail_click

    def size(self):
        return self._size

    def write(self, text, interval=0.0):
        self.calls.append(("write", text))

    def hotkey(self, *keys):
        self.calls.append(("hotkey", keys))

    def press(self, key):
        self.calls.append(("press", key))

    def moveTo(self, x, y):
        self.calls.append(("moveTo", x, y))

    def click(self, button="left"):
        if self.fail_click:
            raise RuntimeError("display lost")
        self.calls.append(("click", button))

    def keyDown(self, key):
        self.calls.append(("keyDown", key))

    def keyUp(self, key):
        self.calls.append(("keyUp", key))


@pytest.fixture
def fake_gui(monkeypatch):
    fake = FakePyAutoGUI()
    monkeypatch.setitem(sys.modules, "pyautogui", fake)
    return fake


def test_parse_segments_and_combos():
    assert input_mod.parse_text_segments("hi{ENTER}there") == [
        ("text", "hi"),
        ("token", "{ENTER}"),
        ("text", "there"),
    ]
    assert input_mod.parse_combo("{CTRL+SHIFT+T}") == ["ctrl", "shift", "t"]
    assert input_mod.parse_combo("{CTRL+ENTER}") == ["ctrl", "enter"]
    assert input_mod.parse_combo("{ENTER}") is None


def test_cmd_maps_to_platform_super_key(monkeypatch):
    monkeypatch.setattr(input_mod.sys, "platform", "darwin")
    assert input_mod.parse_combo("{CMD+K}") == ["command", "k"]
    monkeypatch.setattr(input_mod.sys, "platform", "linux")
    assert input_mod.parse_combo("{CMD+K}") == ["win", "k"]


def test_type_text_mixes_text_tokens_and_combos(fake_gui):
    result = input_mod.type_text("hello{TAB}{CTRL+A}world")
    assert result["success"] is True
    assert result["typed"] == "hello{TAB}{CTRL+A}world"
    assert fake_gui.calls == [
        ("write", "hello"),
        ("press", "tab"),
        ("hotkey", ("ctrl", "a")),
        ("write", "world"),
    ]


def test_newline_becomes_shift_enter(fake_gui):
    input_mod.type_text("line one\nline two")
    assert ("hotkey", ("shift", "enter")) in fake_gui.calls
    assert ("press", "enter") not in fake_gui.calls


def test_unknown_token_typed_literally(fake_gui):
    input_mod.type_text("{WHATEVER}")
    assert fake_gui.calls == [("write", "{WHATEVER}")]


def test_double_click_is_two_clicks(fake_gui):
    result = MouseController().click("double", x=10, y=20)
    assert result["success"] is True
    assert fake_gui.calls == [("moveTo", 10, 20), ("click", "left"), ("click", "left")]


def test_modifier_released_when_click_raises(monkeypatch):
    fake = FakePyAutoGUI(fail_click=True)
    monkeypatch.setitem(sys.modules, "pyautogui", fake)
    with pytest.raises(RuntimeError):
        MouseController().click("left", modifier="shift")
    assert fake.calls == [("keyDown", "shift"), ("keyUp", "shift")]


def test_out_of_screen_coordinates_rejected(fake_gui):
    result = MouseController().move_to(5000, 10)
    assert result["success"] is False
    assert fake_gui.calls == []


def test_unknown_button_and_modifier_rejected(fake_gui):
    assert MouseController().click("middle")["success"] is False
    assert MouseController().click("left", modifier="hyper")["success"] is False
    assert fake_gui.calls == []
