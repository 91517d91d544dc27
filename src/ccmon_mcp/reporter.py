"""Status-line reporter that writes one heartbeat file per session.

The agent runs ``ccmon-reporter`` as its status-line command, piping a JSON
description of the session on stdin. The reporter enriches it with git,
process and terminal details, writes ``<session_id>.json`` atomically and
prints a short status line back to the agent.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .lifecycle.dispatcher import atomic_write_text
from .sessions.models import Heartbeat, heartbeat_path

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 200_000
COMMAND_TIMEOUT = 2.0


@dataclass(slots=True)
class GitSnapshot:
    branch: str | None = None
    staged: int = 0
    modified: int = 0
    untracked: int = 0


def _run(command: list[str], *, cwd: str | None = None) -> str | None:
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Command failed", extra={"command": command[0], "error": str(exc)})
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def parse_git_status(output: str) -> GitSnapshot:
    """Parse ``git status --porcelain --branch`` output."""

    snapshot = GitSnapshot()
    for line in output.splitlines():
        if line.startswith("## "):
            header = line[3:]
            if header.startswith("No commits yet on "):
                snapshot.branch = header[len("No commits yet on "):].strip() or None
            elif header.startswith("HEAD (no branch)"):
                snapshot.branch = None
            else:
                snapshot.branch = header.split("...")[0].strip() or None
            continue
        if len(line) < 2:
            continue
        if line.startswith("??"):
            snapshot.untracked += 1
            continue
        index_flag, worktree_flag = line[0], line[1]
        if index_flag not in " ?!":
            snapshot.staged += 1
        if worktree_flag not in " ?!":
            snapshot.modified += 1
    return snapshot


def git_snapshot(project_dir: str) -> GitSnapshot | None:
    if not project_dir or not Path(project_dir).is_dir():
        return None
    output = _run(["git", "status", "--porcelain", "--branch"], cwd=project_dir)
    if output is None:
        return None
    return parse_git_status(output)


def process_tty(pid: int) -> str | None:
    """Controlling terminal of ``pid`` as a ``/dev`` path, if it has one."""

    output = _run(["ps", "-o", "tty=", "-p", str(pid)])
    name = (output or "").strip()
    if not name or name in {"?", "??"}:
        return None
    return name if name.startswith("/dev/") else f"/dev/{name}"


def parse_tmux_panes(output: str, tty: str) -> str | None:
    for line in output.splitlines():
        pane_tty, _, target = line.strip().partition(" ")
        if pane_tty == tty and target:
            return target.strip()
    return None


def tmux_target_for_tty(tty: str | None) -> str | None:
    """``session:window.pane`` of the tmux pane attached to ``tty``."""

    if not tty:
        return None
    output = _run(
        [
            "tmux",
            "list-panes",
            "-a",
            "-F",
            "#{pane_tty} #{session_name}:#{window_index}.#{pane_index}",
        ]
    )
    if output is None:
        return None
    return parse_tmux_panes(output, tty)


def _nested(payload: Mapping[str, Any], *keys: str) -> Any:
    value: Any = payload
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def build_heartbeat(
    status: Mapping[str, Any],
    *,
    now: float,
    pid: int | None = None,
    tty: str | None = None,
    tmux_target: str | None = None,
    git: GitSnapshot | None = None,
) -> Heartbeat:
    """Combine the status-line payload with locally gathered details."""

    project_dir = str(_nested(status, "workspace", "project_dir") or status.get("cwd") or "")
    return Heartbeat(
        session_id=str(status.get("session_id") or ""),
        project_name=os.path.basename(project_dir.rstrip("/")),
        working_directory=project_dir,
        git_branch=git.branch if git else None,
        git_staged=git.staged if git else None,
        git_modified=git.modified if git else None,
        git_untracked=git.untracked if git else None,
        model=str(_nested(status, "model", "display_name") or "unknown"),
        context_used_pct=_nested(status, "context_window", "used_percentage") or 0,
        context_window_size=_nested(status, "context_window", "context_window_size") or DEFAULT_CONTEXT_WINDOW,
        cost_usd=_nested(status, "cost", "total_cost_usd") or 0,
        last_updated=now,
        tty=tty,
        pid=pid,
        tmux_target=tmux_target,
    )


def write_heartbeat(directory: Path, heartbeat: Heartbeat) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = heartbeat_path(directory, heartbeat.session_id)
    atomic_write_text(path, heartbeat.model_dump_json())
    return path


def status_line(heartbeat: Heartbeat) -> str:
    return f"[{heartbeat.model}] {heartbeat.context_used_pct:g}%"


def report(status: Mapping[str, Any], directory: Path) -> Heartbeat | None:
    """Gather local details for ``status`` and persist the heartbeat."""

    if not str(status.get("session_id") or "").strip():
        return None

    project_dir = str(_nested(status, "workspace", "project_dir") or status.get("cwd") or "")
    agent_pid = os.getppid()
    tty = process_tty(agent_pid)
    heartbeat = build_heartbeat(
        status,
        now=time.time(),
        pid=agent_pid,
        tty=tty,
        tmux_target=tmux_target_for_tty(tty),
        git=git_snapshot(project_dir),
    )
    write_heartbeat(directory, heartbeat)
    return heartbeat


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``ccmon-reporter``."""

    from .config import get_settings

    try:
        status = json.loads(sys.stdin.read() or "{}")
    except json.JSONDecodeError:
        return
    if not isinstance(status, dict):
        return

    heartbeat = report(status, get_settings().monitor_dir)
    if heartbeat is not None:
        print(status_line(heartbeat))


__all__ = [
    "GitSnapshot",
    "build_heartbeat",
    "git_snapshot",
    "parse_git_status",
    "parse_tmux_panes",
    "process_tty",
    "report",
    "status_line",
    "tmux_target_for_tty",
    "write_heartbeat",
]
