"""Tests for the JSON report feature (--report)."""

import json
import sys
from unittest.mock import patch

import pytest

from nanocode import agent
from nanocode.conversation import Usage
from nanocode.report import AgentError, ConfigError, ReportCollector, TransportError


def _build(rc, **overrides):
    kwargs = dict(
        task="hello",
        model="m",
        settings={},
        outcome="success",
        answer="done",
        exit_code=0,
        turns=0,
    )
    kwargs.update(overrides)
    return rc.build_report(**kwargs)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TestErrors:
    def test_hierarchy(self):
        assert issubclass(ConfigError, AgentError)
        assert issubclass(TransportError, AgentError)

    def test_transport_status(self):
        e = TransportError("API error: 429 slow down", status_code=429)
        assert e.status_code == 429
        assert str(e) == "API error: 429 slow down"
        assert TransportError("x").status_code is None


# ---------------------------------------------------------------------------
# ReportCollector unit tests
# ---------------------------------------------------------------------------


class TestReportCollector:
    def test_empty_report(self):
        r = _build(ReportCollector())
        assert r["version"] == 1
        assert r["task"] == "hello"
        assert r["result"] == {"outcome": "success", "answer": "done", "exit_code": 0}
        assert r["stats"]["tool_calls_total"] == 0
        assert r["stats"]["llm_calls"] == 0
        assert r["timeline"] == []

    def test_llm_call_tracking(self):
        rc = ReportCollector()
        rc.record_llm_call(1, 2.5, "tool_calls", Usage(100, 10, 110, 0.002))
        rc.record_llm_call(2, 1.3, "stop")
        assert rc.llm_calls == 2
        assert rc.total_llm_time == pytest.approx(3.8)
        assert rc.max_turn_seen == 2
        assert rc.prompt_tokens == 100
        assert rc.total_cost == pytest.approx(0.002)
        assert rc.events[0]["finish_reason"] == "tool_calls"
        assert rc.events[0]["cost"] == 0.002
        assert "prompt_tokens" not in rc.events[1]

    def test_tool_stats(self):
        rc = ReportCollector()
        rc.record_tool_call(1, "read", {"path": "a"}, True, 0.01, 20)
        rc.record_tool_call(1, "read", {"path": "b"}, False, 0.01, 30, error="error: x")
        rc.record_tool_call(2, "bash", {"cmd": "ls"}, False, 0.0, 14, denied=True)
        r = _build(rc, turns=2)
        assert r["stats"]["tool_calls_total"] == 3
        assert r["stats"]["tool_calls_succeeded"] == 1
        assert r["stats"]["tool_calls_failed"] == 1
        assert r["stats"]["tool_calls_denied"] == 1
        assert r["stats"]["tool_calls_by_name"]["read"] == {
            "succeeded": 1,
            "failed": 1,
            "denied": 0,
        }
        assert rc.events[1]["error"] == "error: x"
        assert rc.events[2]["denied"] is True

    def test_error_message(self):
        r = _build(ReportCollector(), outcome="error", exit_code=1, error_message="boom")
        assert r["result"]["error_message"] == "boom"

    def test_write_requires_finalize(self, tmp_path):
        with pytest.raises(AgentError):
            ReportCollector().write(str(tmp_path / "r.json"))

    def test_write(self, tmp_path):
        rc = ReportCollector()
        rc.finalize(
            task="t",
            model="m",
            settings={"yolo": False},
            outcome="success",
            answer="a",
            exit_code=0,
            turns=1,
        )
        path = tmp_path / "r.json"
        rc.write(str(path))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["settings"] == {"yolo": False}
        assert data["result"]["answer"] == "a"


# ---------------------------------------------------------------------------
# CLI integration
# ---------------------------------------------------------------------------


def _run_main(monkeypatch, argv, llm):
    monkeypatch.setattr(sys, "argv", ["nanocode", *argv])
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    monkeypatch.setenv("XDG_CONFIG_HOME", "/nonexistent-nanocode-config")
    with patch("nanocode.agent.call_llm", side_effect=llm):
        agent.main()


class TestReportCli:
    def test_success_report(self, tmp_path, monkeypatch, capsys):
        out = tmp_path / "report.json"
        replies = [({"role": "assistant", "content": "42"}, "stop", None)]
        _run_main(
            monkeypatch,
            ["-q", "--base-dir", str(tmp_path), "--report", str(out), "answer?"],
            replies,
        )
        assert capsys.readouterr().out.strip() == "42"
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["result"]["outcome"] == "success"
        assert data["result"]["exit_code"] == 0
        assert data["stats"]["llm_calls"] == 1

    def test_exhausted_report(self, tmp_path, monkeypatch):
        out = tmp_path / "report.json"
        call = {
            "id": "c1",
            "type": "function",
            "function": {"name": "glob", "arguments": '{"pattern": "*"}'},
        }
        replies = [({"role": "assistant", "content": None, "tool_calls": [call]}, "tool_calls", None)]
        with pytest.raises(SystemExit) as exc_info:
            _run_main(
                monkeypatch,
                [
                    "-q",
                    "--max-turns",
                    "1",
                    "--base-dir",
                    str(tmp_path),
                    "--report",
                    str(out),
                    "loop",
                ],
                replies,
            )
        assert exc_info.value.code == 2
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["result"]["outcome"] == "exhausted"
        assert data["stats"]["tool_calls_succeeded"] == 1

    def test_error_report(self, tmp_path, monkeypatch):
        out = tmp_path / "report.json"
        replies = [TransportError("API error: 500 down", status_code=500)]
        with pytest.raises(SystemExit) as exc_info:
            _run_main(
                monkeypatch,
                ["-q", "--base-dir", str(tmp_path), "--report", str(out), "hi"],
                replies,
            )
        assert exc_info.value.code == 1
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["result"]["outcome"] == "error"
        assert data["result"]["error_message"] == "API error: 500 down"

    def test_report_requires_question(self, monkeypatch, tmp_path):
        monkeypatch.setattr(
            sys, "argv", ["nanocode", "--report", str(tmp_path / "r.json")]
        )
        with pytest.raises(SystemExit) as exc_info:
            agent.main()
        assert exc_info.value.code == 2
