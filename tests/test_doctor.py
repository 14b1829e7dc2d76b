from pathlib import Path

from hostwatch.workflows.doctor import build_doctor_report, format_doctor_report, redact_value
from hostwatch.workflows.harvest_config import HarvestSettings
from hostwatch.workflows.storage import JsonFileStore


def _check(report, name):
    return next(c for c in report["checks"] if c["name"] == name)


def test_redact_value_keeps_both_ends():
    url = "https://script.example.com/macros/s/" + "x" * 40 + "/exec"
    redacted = redact_value(url)
    assert redacted.startswith("https://scri")
    assert redacted.endswith("/exec")
    assert "..." in redacted
    assert redact_value("short") == "short"
    assert redact_value("") == ""


def test_doctor_flags_missing_sink(tmp_path: Path):
    report = build_doctor_report(HarvestSettings(sink_url=None, state_path=tmp_path / "state.json"))
    assert report["ok"] is False
    assert _check(report, "HOSTWATCH_SINK_URL")["status"] == "missing"
    assert _check(report, "HOSTWATCH_STATE_PATH")["status"] == "ok"
    text = format_doctor_report(report)
    assert "remedy: Set HOSTWATCH_SINK_URL" in text


def test_doctor_pings_sink_and_reads_snapshot(tmp_path: Path):
    state = tmp_path / "state.json"
    store = JsonFileStore(state)
    store.set("pendingSync", [{"domain": "a.example.com"}, {"domain": "b.example.com"}])
    store.set("subdomains", [{"domain": "a.example.com"}])
    pinged = []

    def ping(endpoint):
        pinged.append(endpoint)
        return {"endpoint": endpoint, "ok": True, "status": 200}

    settings = HarvestSettings(sink_url="https://sink.example.com/exec", state_path=state)
    report = build_doctor_report(settings, ping=ping)

    assert report["ok"] is True
    assert pinged == ["https://sink.example.com/exec"]
    assert _check(report, "sink_reachable")["detail"] == "HTTP 200"
    assert _check(report, "state_snapshot")["detail"] == "1 hosts in session, 2 pending sync"


def test_doctor_reports_unreachable_sink(tmp_path: Path):
    settings = HarvestSettings(sink_url="https://sink.example.com/exec", state_path=tmp_path / "s.json")
    report = build_doctor_report(settings, ping=lambda endpoint: {"ok": False, "error": "timed out"})
    assert report["ok"] is False
    assert _check(report, "sink_reachable")["detail"] == "timed out"
