from __future__ import annotations

import subprocess

from ccmon_mcp.focus import escape_applescript, focus_commands, focus_session
from ccmon_mcp.lifecycle import EMPTY_RECORD
from ccmon_mcp.sessions import AgentStatus, Heartbeat, SessionView


def _view(**heartbeat) -> SessionView:
    fields = {"session_id": "s1", "project_name": "api", "last_updated": 1.0}
    fields.update(heartbeat)
    return SessionView(
        heartbeat=Heartbeat.model_validate(fields),
        lifecycle=EMPTY_RECORD,
        status=AgentStatus.READY,
        process_alive=True,
    )


def test_tmux_target_selects_window_then_pane() -> None:
    commands = focus_commands(_view(tmux_target="work:2.1"), platform="linux")

    assert commands == [
        (["tmux", "select-window", "-t", "work:2"], True),
        (["tmux", "select-pane", "-t", "work:2.1"], True),
    ]


def test_tmux_on_macos_also_activates_terminal() -> None:
    commands = focus_commands(_view(tmux_target="work:2"), platform="darwin")

    assert commands[0] == (["tmux", "select-window", "-t", "work:2"], True)
    assert commands[-1][0][0] == "osascript"
    assert commands[-1][1] is False


def test_malformed_tmux_target_is_ignored() -> None:
    assert focus_commands(_view(tmux_target="no-colon"), platform="darwin") == []


def test_terminal_tab_script_on_macos() -> None:
    commands = focus_commands(_view(project_name='my "quoted" app'), platform="darwin")

    assert len(commands) == 1
    command, wait = commands[0]
    assert command[:2] == ["osascript", "-e"]
    assert 'my \\"quoted\\" app' in command[2]
    assert wait is False


def test_no_strategy_without_tmux_off_macos() -> None:
    assert focus_commands(_view(), platform="linux") == []
    assert focus_session(_view(), platform="linux") is None


def test_escape_applescript() -> None:
    assert escape_applescript('a\\b"c') == 'a\\\\b\\"c'


def test_focus_runs_in_background_and_swallows_errors(caplog) -> None:
    calls: list[list[str]] = []

    def failing_runner(command, wait):
        calls.append(list(command))
        raise subprocess.TimeoutExpired(command, 3)

    with caplog.at_level("WARNING"):
        thread = focus_session(_view(tmux_target="work:2.1"), runner=failing_runner, platform="linux")
        assert thread is not None
        thread.join(5)

    assert not thread.is_alive()
    assert calls == [["tmux", "select-window", "-t", "work:2"]]
    assert "Focus command failed" in caplog.text
