import asyncio

from actuator.executor import wait
from actuator.vision.ocr import OcrCache


class FakeSessions:
    def __init__(self, urls):
        self._urls = urls

    def current_url(self, session_id):
        return self._urls.get(session_id)

    def urls(self):
        return dict(self._urls)


def test_text_condition_served_from_fresh_ocr_cache():
    cache = OcrCache()
    cache.put("Upload complete: 3 files")
    result = asyncio.run(wait.wait_for({"condition": "text", "value": "UPLOAD COMPLETE", "maxAgeMs": 60_000}, cache))
    assert result["success"] is True
    assert result["matched"] is True
    assert result["matchedOn"] == "text"
    assert result["pollCount"] == 1


def test_app_condition_polls_until_match(monkeypatch):
    titles = iter(["Loading", "Loading", "report.pdf - Preview"])

    def fake_window():
        title = next(titles)
        return {"windowTitle": title, "activeApp": title.rsplit(" - ", 1)[-1]}

    monkeypatch.setattr(wait, "get_window_context", fake_window)
    result = asyncio.run(wait.wait_for({"condition": "app", "value": "preview", "pollMs": 250}, OcrCache()))
    assert result["success"] is True
    assert result["matchedOn"] == "Preview"
    assert result["pollCount"] == 3


def test_url_condition_reads_browser_sessions():
    sessions = FakeSessions({"default": "https://example.com/login", "s2": "https://mail.example.com/inbox"})
    result = asyncio.run(wait.wait_for({"condition": "url", "value": "/inbox"}, OcrCache(), sessions))
    assert result["matchedOn"] == "https://mail.example.com/inbox"

    scoped = asyncio.run(
        wait.wait_for({"condition": "url", "value": "login", "sessionId": "default"}, OcrCache(), sessions)
    )
    assert scoped["success"] is True


def test_timeout_reports_poll_count(monkeypatch):
    monkeypatch.setattr(wait, "get_window_context", lambda: {"windowTitle": "Desktop", "activeApp": "Finder"})
    result = asyncio.run(
        wait.wait_for({"condition": "windowTitle", "value": "Settings", "pollMs": 250, "timeoutMs": 1000}, OcrCache())
    )
    assert result["success"] is False
    assert result["matched"] is False
    assert result["errorKind"] == "timeout"
    assert result["pollCount"] >= 2
    assert result["error"].startswith('Condition "windowTitle=Settings" not met within 1000ms')


def test_observation_errors_keep_polling(monkeypatch):
    calls = []

    def flaky_window():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("no display")
        return {"windowTitle": "Settings", "activeApp": "System Settings"}

    monkeypatch.setattr(wait, "get_window_context", flaky_window)
    result = asyncio.run(wait.wait_for({"condition": "windowTitle", "value": "settings", "pollMs": 250}, OcrCache()))
    assert result["success"] is True
    assert result["pollCount"] == 2


def test_invalid_arguments_rejected():
    bad_condition = asyncio.run(wait.wait_for({"condition": "color", "value": "red"}, OcrCache()))
    assert bad_condition["errorKind"] == "invalid_request"
    missing_value = asyncio.run(wait.wait_for({"condition": "text"}, OcrCache()))
    assert missing_value["errorKind"] == "invalid_request"
