# tests/test_console_connector.py

from __future__ import annotations

import pytest

from focus_sync.connectors.console_connector import ConsoleNotifier, run_console_loop
from focus_sync.core.ports import NoticeLevel


@pytest.mark.asyncio
async def test_console_loop_runs_commands_until_exit(state, monkeypatch, capsys) -> None:
    lines = iter(["/add Buy milk", "", "Call the bank", "/list", "/exit", "/add never reached"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))

    await run_console_loop(state)

    out = capsys.readouterr().out
    assert "Added: Buy milk" in out
    assert "Added: Call the bank" in out
    assert "2. [ ] Call the bank" in out
    assert "never reached" not in out


@pytest.mark.asyncio
async def test_console_loop_stops_on_eof(state, monkeypatch) -> None:
    def _eof(prompt=""):
        raise EOFError

    monkeypatch.setattr("builtins.input", _eof)

    await run_console_loop(state)


def test_console_notifier_prints_level_and_title(capsys) -> None:
    ConsoleNotifier().notify(NoticeLevel.WARNING, "Conflict detected", "Please refresh.")

    out = capsys.readouterr().out
    assert "[WARNING] Conflict detected: Please refresh." in out
