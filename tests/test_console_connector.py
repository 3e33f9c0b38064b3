# tests/test_console_connector.py

from __future__ import annotations

import logging

from jac_agents.connectors import console_connector
from jac_agents.connectors.console_connector import console_notify, run_console_loop
from jac_agents.logging_setup import _ConsoleNoiseFilter


def _feed_input(monkeypatch, lines: list[str]) -> None:
    it = iter(lines)

    def fake_input(_prompt: str = "") -> str:
        try:
            return next(it)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)


def test_console_runs_commands_and_dispatches(state, monkeypatch, capsys) -> None:
    _feed_input(monkeypatch, ["/status", "", "hello there", "/exit", "never reached"])

    run_console_loop(state)

    out = capsys.readouterr().out
    assert "User: user-1" in out
    # FakeLLMClient("ok") is not router JSON, so the dispatcher answers inline.
    assert "<<< JAC: I'm on it.  [task " in out
    assert "never reached" not in out
    assert [m.content for m in state.tasks.list_messages(state.user_id)] == ["hello there", "I'm on it."]


def test_console_survives_a_crashing_command(state, monkeypatch, capsys) -> None:
    def boom(_state, _args):
        raise RuntimeError("bug")

    monkeypatch.setitem(console_connector.command_registry._handlers, "boom-test", boom)
    _feed_input(monkeypatch, ["/boom-test"])

    run_console_loop(state)

    assert "Internal error while handling a command." in capsys.readouterr().out


def test_console_notify(capsys) -> None:
    console_notify("success", "Task completed: x")
    console_notify("warning", "careful")
    out = capsys.readouterr().out
    assert "[OK] Task completed: x" in out
    assert "[WARNING] careful" in out


def test_console_noise_filter() -> None:
    f = _ConsoleNoiseFilter()
    assert f.threshold_for("jac_agents.agents.dispatcher") == logging.DEBUG
    assert f.threshold_for("jac_agents.tasks.task_scheduler") == logging.WARNING
    assert f.threshold_for("jac_agents.cron.manager") == logging.WARNING
    assert f.threshold_for("httpx") == logging.ERROR

    record = logging.LogRecord("jac_agents.cron.manager", logging.INFO, __file__, 1, "tick", None, None)
    assert f.filter(record) is False
