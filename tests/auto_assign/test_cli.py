# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
from types import SimpleNamespace

import pytest

from detention.auto_assign import cli
from detention.auto_assign.config import ServiceConfig
from detention.auto_assign.contracts import AssignmentResult
from detention.auto_assign.errors import SessionNotScheduledError
from detention.auto_assign.logging_utils import build_logger
from detention.auto_assign.rules import DetentionRule

from tests.factories import make_entry


@pytest.fixture(autouse=True)
def quiet_bootstrap(monkeypatch):
    config = ServiceConfig(
        db_url="sqlite+pysqlite:///:memory:",
        min_points=10,
        default_capacity=20,
        default_duration_minutes=60,
        timezone="UTC",
        log_level="INFO",
        log_file=None,
        env="dev",
    )
    monkeypatch.setattr(cli, "load_from_env", lambda: config)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


def test_auto_assign_prints_result(monkeypatch, capsys):
    captured = {}

    def fake_assign(session_id: int) -> AssignmentResult:
        captured["session_id"] = session_id
        return AssignmentResult(assigned_count=2, queued_count=1, qualifying_students=3, total_count=2, capacity=2)

    monkeypatch.setattr(cli, "auto_assign", fake_assign)
    exit_code = cli.main(["auto-assign", "7"])
    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert captured["session_id"] == 7
    assert payload["assigned_count"] == 2
    assert payload["error_code"] is None


def test_auto_assign_partial_result_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(
        cli,
        "auto_assign",
        lambda session_id: AssignmentResult(1, 0, 3, 1, 2, error_code="PERSISTENCE_FAILED"),
    )
    assert cli.main(["auto-assign", "1"]) == 3
    assert json.loads(capsys.readouterr().out)["error_code"] == "PERSISTENCE_FAILED"


def test_auto_assign_error_envelope(monkeypatch, capsys):
    def rejecting(session_id: int) -> AssignmentResult:
        raise SessionNotScheduledError(session_id, "completed")

    monkeypatch.setattr(cli, "auto_assign", rejecting)
    assert cli.main(["auto-assign", "4"]) == 1
    payload = json.loads(capsys.readouterr().err)
    assert payload["error"]["code"] == "SESSION_NOT_SCHEDULED"


def test_queue_command(monkeypatch, capsys):
    store = SimpleNamespace(get_queue=lambda: [make_entry(1, 12), make_entry(2, 11, minutes=1)])
    monkeypatch.setattr(cli, "get_components", lambda: SimpleNamespace(store=store))
    assert cli.main(["queue", "--limit", "1"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["depth"] == 2
    assert [entry["student_id"] for entry in payload["entries"]] == [1]


def test_rules_command(monkeypatch, capsys, rule_repository):
    monkeypatch.setattr(cli, "get_components", lambda: SimpleNamespace(rules=rule_repository))
    rule_repository.save_rule(DetentionRule(id=None, min_points=12))
    assert cli.main(["rules"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["threshold"] == 12
    assert payload["rules"][0]["min_points"] == 12


def test_rules_command_sets_threshold(monkeypatch, capsys, rule_repository):
    monkeypatch.setattr(cli, "get_components", lambda: SimpleNamespace(rules=rule_repository))
    assert cli.main(["rules", "--set-min-points", "7"]) == 0
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert lines[0]["saved"]["min_points"] == 7
    assert lines[1]["threshold"] == 7


def test_rules_command_rejects_invalid(monkeypatch, capsys, rule_repository):
    monkeypatch.setattr(cli, "get_components", lambda: SimpleNamespace(rules=rule_repository))
    assert cli.main(["rules", "--set-min-points", "-2"]) == 2
    assert "RULE_MIN_POINTS_INVALID" in capsys.readouterr().err


def test_logging_configured_before_bootstrap(monkeypatch, capsys):
    calls = []
    monkeypatch.setattr(cli, "setup_logging", lambda level, log_file: calls.append(("logging", level)))

    def fake_assign(session_id: int) -> AssignmentResult:
        calls.append(("assign", session_id))
        return AssignmentResult(0, 0, 0, 0, 2)

    monkeypatch.setattr(cli, "auto_assign", fake_assign)
    assert cli.main(["auto-assign", "5"]) == 0
    capsys.readouterr()
    assert calls == [("logging", "INFO"), ("assign", 5)]


def test_build_logger_defers_to_configured_root():
    root = logging.getLogger()
    sentinel = logging.NullHandler()
    root.addHandler(sentinel)
    try:
        build_logger("detention.cli-configured-root")
    finally:
        root.removeHandler(sentinel)
    assert logging.getLogger("detention.cli-configured-root").handlers == []
