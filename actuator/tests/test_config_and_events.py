import json
import logging

from actuator import config
from actuator.logging_utils import log_event, sanitize_payload, summarize_plan, summarize_plan_result


def test_resolve_host_port_prefers_test_profile(monkeypatch):
    monkeypatch.setenv("ACTUATOR_TEST_MODE", "1")
    assert config.resolve_host_port() == (config.TEST_HOST, config.TEST_PORT)
    assert config.resolve_host_port("0.0.0.0", 9000) == ("0.0.0.0", 9000)


def test_vision_service_url_resolution(monkeypatch):
    monkeypatch.delenv("VISION_SERVICE_URL", raising=False)
    monkeypatch.delenv("VISION_SERVICE_HOST", raising=False)
    monkeypatch.delenv("VISION_SERVICE_PORT", raising=False)
    assert config.vision_service_url() == "http://127.0.0.1:4000"
    monkeypatch.setenv("VISION_SERVICE_PORT", "4100")
    assert config.vision_service_url() == "http://127.0.0.1:4100"
    monkeypatch.setenv("VISION_SERVICE_URL", "http://vision.local:9000/")
    assert config.vision_service_url() == "http://vision.local:9000"


def test_partial_success_threshold_override(monkeypatch):
    monkeypatch.delenv("ACTUATOR_PARTIAL_SUCCESS_THRESHOLD", raising=False)
    assert config.partial_success_threshold() == 0.7
    monkeypatch.setenv("ACTUATOR_PARTIAL_SUCCESS_THRESHOLD", "0.5")
    assert config.partial_success_threshold() == 0.5
    monkeypatch.setenv("ACTUATOR_PARTIAL_SUCCESS_THRESHOLD", "1.5")
    assert config.partial_success_threshold() == 0.7
    monkeypatch.setenv("ACTUATOR_PARTIAL_SUCCESS_THRESHOLD", "lots")
    assert config.partial_success_threshold() == 0.7


def test_retries_and_idle_bounds(monkeypatch):
    monkeypatch.setenv("VISION_SERVICE_RETRIES", "50")
    assert config.vision_service_retries() == 5
    monkeypatch.setenv("SESSION_IDLE_MS", "10")
    assert config.session_idle_ms() == 1000


def test_sanitize_payload_redacts_images_and_secrets():
    payload = {
        "screenshot": {"base64": "A" * 10_000, "mimeType": "image/png"},
        "stdin": "password123",
        "env": {"TOKEN": "x"},
        "note": "y" * 3_000,
        "preview": ["data:image/png;base64,iVBORw0KGgo"],
    }
    clean = sanitize_payload(payload)
    assert clean["screenshot"]["base64"] == "<redacted:image>"
    assert clean["stdin"] == "<redacted>"
    assert clean["env"] == "<redacted>"
    assert clean["preview"] == ["<redacted:image>"]
    assert clean["note"].endswith("...<truncated 1000 chars>")


def test_plan_summaries():
    plan = {"planId": "p1", "steps": [{"id": 1, "action": {"skill": "ui.click", "args": {"x": 1, "y": 2}}}]}
    summary = summarize_plan(plan)
    assert summary["plan_id"] == "p1"
    assert summary["steps_preview"][0] == {"id": 1, "skill": "ui.click", "args_keys": ["x", "y"], "verification": None}
    result = summarize_plan_result({"status": "failed", "steps": [{"status": "failed", "error": "boom"}], "failedStep": 1})
    assert result["failed_step"] == 1
    assert result["last_error"]["error"] == "boom"


def test_log_event_emits_json(caplog, monkeypatch):
    monkeypatch.setattr(logging.getLogger("actuator.events"), "propagate", True)
    with caplog.at_level(logging.INFO, logger="actuator.events"):
        log_event("skill.start", "req-9", {"skill": "ui.click"})
    record = next(r for r in caplog.records if r.name == "actuator.events")
    body = json.loads(record.getMessage())
    assert body["event"] == "skill.start"
    assert body["request_id"] == "req-9"
    assert body["skill"] == "ui.click"
    assert body["ts"]
