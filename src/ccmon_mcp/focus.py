"""Bring the terminal running a session to the foreground.

Focusing is best effort and never blocks the caller: the work runs on a
daemon thread and every failure is logged and dropped.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
import threading
from typing import Callable, Sequence

from .sessions.models import SessionView

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str], bool], None]

FOCUS_TIMEOUT = 3.0

_GHOSTTY_TAB_SCRIPT = """
tell application "Ghostty" to activate
delay 0.1
tell application "System Events"
    tell process "ghostty"
        repeat with w in windows
            try
                repeat with t in (every radio button of UI element "tab bar" of w)
                    if name of t contains "{needle}" then
                        click t
                        set index of w to 1
                        return "found"
                    end if
                end repeat
            on error
                if name of w contains "{needle}" then
                    set index of w to 1
                    return "found"
                end if
            end try
        end repeat
    end tell
end tell
return "not_found"
"""


def escape_applescript(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def focus_commands(view: SessionView, *, platform: str | None = None) -> list[tuple[list[str], bool]]:
    """Commands that focus ``view``, each paired with whether to wait for it."""

    platform = platform or sys.platform
    target = view.heartbeat.tmux_target
    commands: list[tuple[list[str], bool]] = []

    if target:
        session_name, sep, window_pane = target.partition(":")
        if not sep or not session_name or not window_pane:
            return []
        window, _, pane = window_pane.partition(".")
        commands.append((["tmux", "select-window", "-t", f"{session_name}:{window}"], True))
        if pane:
            commands.append((["tmux", "select-pane", "-t", target], True))
        if platform == "darwin":
            commands.append((["osascript", "-e", 'tell application "Ghostty" to activate'], False))
        return commands

    if platform == "darwin":
        needle = escape_applescript(view.display_label or view.heartbeat.project_name)
        if needle:
            commands.append((["osascript", "-e", _GHOSTTY_TAB_SCRIPT.format(needle=needle)], False))
    return commands


def run_command(command: Sequence[str], wait: bool) -> None:
    if shutil.which(command[0]) is None:
        logger.debug("Focus command unavailable", extra={"command": command[0]})
        return
    if wait:
        subprocess.run(
            list(command),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=FOCUS_TIMEOUT,
            check=False,
        )
    else:
        subprocess.Popen(list(command), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)


def _focus_worker(commands: list[tuple[list[str], bool]], runner: Runner, session_id: str) -> None:
    for command, wait in commands:
        try:
            runner(command, wait)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning(
                "Focus command failed",
                extra={"session_id": session_id, "command": command[0], "error": str(exc)},
            )
            return


def focus_session(
    view: SessionView,
    *,
    runner: Runner | None = None,
    platform: str | None = None,
) -> threading.Thread | None:
    """Start focusing ``view`` in the background; returns the worker thread, if any."""

    commands = focus_commands(view, platform=platform)
    if not commands:
        logger.info("No focus strategy for session", extra={"session_id": view.session_id})
        return None

    thread = threading.Thread(
        target=_focus_worker,
        args=(commands, runner or run_command, view.session_id),
        name=f"ccmon-focus-{view.session_id}",
        daemon=True,
    )
    thread.start()
    return thread


__all__ = ["escape_applescript", "focus_commands", "focus_session", "run_command"]
