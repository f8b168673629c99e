from fastapi.testclient import TestClient

from actuator.app import app


def test_health_lists_skills():
    with TestClient(app) as client:
        data = client.get("/health").json()
    assert data["ok"] is True
    assert "shell.run" in data["skills"]
    assert "ui.screen.verify" in data["skills"]
    assert data["sessions"] == []


def test_unknown_skill_returns_envelope():
    with TestClient(app) as client:
        resp = client.post("/api/skills", json={"skill": "ui.teleport", "args": {}})
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is False
    assert data["errorKind"] == "invalid_request"


def test_shell_skill_through_http():
    with TestClient(app) as client:
        data = client.post("/api/skills", json={"skill": "shell.run", "args": {"cmd": "echo", "argv": ["hi"]}}).json()
    assert data["ok"] is True
    assert data["result"]["stdout"].strip() == "hi"


def test_invalid_plan_reports_validation_errors():
    with TestClient(app) as client:
        data = client.post("/api/plans/execute", json={"steps": [{"id": 1}]}).json()
    assert data["error"] == "invalid plan"
    fields = {err["field"] for err in data["validation_errors"]}
    assert "planId" in fields
    assert "steps.0.action" in fields
    assert data["request_id"]


def test_plan_executes_and_summarizes():
    plan = {
        "planId": "plan-http-1",
        "originalCommand": "say hello twice",
        "steps": [
            {"id": 1, "action": {"skill": "shell.run", "args": {"cmd": "echo", "argv": ["one"]}}},
            {"id": 2, "action": {"skill": "shell.run", "args": {"cmd": "nc", "argv": ["-l"]}}},
        ],
    }
    with TestClient(app) as client:
        data = client.post("/api/plans/execute", json=plan).json()
    assert data["planId"] == "plan-http-1"
    assert data["status"] == "failed"
    assert data["failedStep"] == 2
    assert data["summary"] == {"totalSteps": 2, "completed": 1, "failed": 2}
    assert data["partialSuccess"] is False
    assert data["summaryText"].startswith("Command failed at step 2/2: Step 2 failed after 1 attempts")
    assert data["request_id"]
