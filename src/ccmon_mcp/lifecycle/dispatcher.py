"""Hook dispatcher that records lifecycle events for a session.

Invoked by the agent's hook mechanism as ``ccmon-hook <event>`` with the
hook payload on stdin. Each invocation performs a locked
read-modify-write of ``.<session_id>.state`` so concurrent hook firings
for the same session never lose an update.
"""

from __future__ import annotations

import argparse
import fcntl
import json
import logging
import os
import sys
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from ..parsing import is_safe_session_id
from .models import EMPTY_RECORD, LifecycleRecord, LifecycleState, Subtask
from .parser import lifecycle_path, merge_lifecycle, parse_lifecycle

logger = logging.getLogger(__name__)

_MESSAGE_PREFIX_CHARS = "#*>` -"


class HookEvent(str, Enum):
    """Event names accepted on the command line."""

    WORKING = "working"
    IDLE = "idle"
    WAITING_PERMISSION = "waiting_permission"
    WAITING_INPUT = "waiting_input"
    NOTIFICATION_PERMISSION = "notification_permission"
    COMPACTING = "compacting"
    SUBAGENT_START = "subagent_start"
    SUBAGENT_STOP = "subagent_stop"
    SESSION_START = "session_start"


def lock_path(directory: Path, session_id: str) -> Path:
    return Path(directory) / f".{session_id}.lock"


@contextmanager
def session_lock(directory: Path, session_id: str) -> Iterator[None]:
    """Hold an exclusive advisory lock scoped to one session id."""

    path = lock_path(directory, session_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a+", encoding="utf-8") as fh:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` so readers only ever observe the old or the new file."""

    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        fh.write(content)
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(tmp, path)


def _clip(value: Any, limit: int) -> str:
    return str(value or "")[:limit]


def describe_tool(tool_name: str, tool_input: dict[str, Any] | None) -> str:
    """Short human-readable description of a tool invocation."""

    if not tool_name:
        return ""
    tool_input = tool_input if isinstance(tool_input, dict) else {}

    if tool_name in {"Edit", "Write", "Read"}:
        file_path = str(tool_input.get("file_path") or "")
        if file_path:
            return f"{tool_name} {file_path.rstrip('/').split('/')[-1]}"
        return tool_name
    if tool_name == "Bash":
        command = str(tool_input.get("command") or "").split("\n")[0][:40]
        return f"$ {command}" if command else ""
    if tool_name in {"Grep", "Glob"}:
        pattern = _clip(tool_input.get("pattern"), 30)
        return f"Search: {pattern}" if pattern else ""
    if tool_name == "Task":
        description = _clip(tool_input.get("description"), 30)
        return f"Agent: {description}" if description else "Running agent"
    if tool_name == "WebSearch":
        query = _clip(tool_input.get("query"), 30)
        return f"Search: {query}" if query else "Web search"
    if tool_name == "WebFetch":
        return "Fetching web page"
    return tool_name


def summarize_message(message: Any) -> str:
    """First non-blank line of an assistant message, without markdown markers."""

    if not isinstance(message, str):
        return ""
    for line in message.split("\n"):
        if line:
            return line.lstrip(_MESSAGE_PREFIX_CHARS)[:100]
    return ""


def apply_event(
    event: HookEvent,
    payload: dict[str, Any],
    previous: LifecycleRecord,
) -> LifecycleRecord | None:
    """Compute the next lifecycle record, or ``None`` when the event must not be written.

    The result is not yet merged with ``previous``; :func:`dispatch` does that.
    """

    tool_name = str(payload.get("tool_name") or "")
    tool_input = payload.get("tool_input")
    subtasks = previous.subtasks

    if event is HookEvent.WORKING:
        if tool_name == "AskUserQuestion":
            return LifecycleRecord(state=LifecycleState.WAITING_INPUT, subtasks=subtasks)
        return LifecycleRecord(
            state=LifecycleState.WORKING,
            context=describe_tool(tool_name, tool_input),
            subtasks=subtasks,
        )

    if event in (HookEvent.IDLE, HookEvent.SESSION_START):
        return LifecycleRecord(
            state=LifecycleState.IDLE,
            last_message=summarize_message(payload.get("last_assistant_message")),
        )

    if event is HookEvent.WAITING_PERMISSION:
        return LifecycleRecord(
            state=LifecycleState.WAITING_PERMISSION,
            context=describe_tool(tool_name, tool_input),
            subtasks=subtasks,
        )

    if event is HookEvent.WAITING_INPUT:
        return LifecycleRecord(state=LifecycleState.WAITING_INPUT, subtasks=subtasks)

    if event is HookEvent.NOTIFICATION_PERMISSION:
        # Arrives seconds after the permission request; must not regress a newer state.
        if previous.state is not None and not previous.state.is_waiting:
            return None
        return LifecycleRecord(state=LifecycleState.WAITING_PERMISSION, subtasks=subtasks)

    if event is HookEvent.COMPACTING:
        return LifecycleRecord(state=LifecycleState.COMPACTING, subtasks=subtasks)

    agent_id = str(payload.get("agent_id") or "").strip()

    if event is HookEvent.SUBAGENT_START:
        updated = [subtask for subtask in subtasks if subtask.id != agent_id]
        if agent_id:
            kind = str(payload.get("agent_type") or "agent")
            updated.append(Subtask(id=agent_id, kind=kind))
        return LifecycleRecord(state=LifecycleState.WORKING, subtasks=tuple(updated))

    if event is HookEvent.SUBAGENT_STOP:
        remaining = tuple(subtask for subtask in subtasks if subtask.id != agent_id)
        return LifecycleRecord(
            state=previous.state or LifecycleState.WORKING,
            subtasks=remaining,
        )

    raise ValueError(f"Unsupported hook event '{event}'")


def _read_previous(path: Path) -> LifecycleRecord:
    try:
        return parse_lifecycle(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return EMPTY_RECORD
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("Ignoring unreadable lifecycle file", extra={"path": str(path), "error": str(exc)})
        return EMPTY_RECORD


def dispatch(event: HookEvent, payload: dict[str, Any], directory: Path) -> LifecycleRecord | None:
    """Apply ``event`` to the session named in ``payload`` and persist the result."""

    session_id = str(payload.get("session_id") or "").strip()
    if not session_id:
        return None
    if not is_safe_session_id(session_id):
        logger.warning("Ignoring hook for unusable session id", extra={"session_id": session_id})
        return None

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = lifecycle_path(directory, session_id)

    with session_lock(directory, session_id):
        previous = _read_previous(path)
        computed = apply_event(event, payload, previous)
        if computed is None:
            logger.debug(
                "Suppressed late permission notification",
                extra={"session_id": session_id, "state": previous.state},
            )
            return None
        record = merge_lifecycle(previous, computed)
        atomic_write_text(path, json.dumps(record.to_payload()))

    return record


def _hook_event(value: str) -> HookEvent:
    try:
        return HookEvent(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Unknown hook event '{value}'") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ccmon-hook", description="Record an agent hook event for its session.")
    parser.add_argument("event", type=_hook_event, help="One of: " + ", ".join(item.value for item in HookEvent))
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``ccmon-hook <event>``."""

    from ..config import get_settings

    args = build_parser().parse_args(argv)

    try:
        payload = json.loads(sys.stdin.read() or "{}")
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    dispatch(args.event, payload, get_settings().monitor_dir)


__all__ = [
    "HookEvent",
    "apply_event",
    "atomic_write_text",
    "build_parser",
    "describe_tool",
    "dispatch",
    "lock_path",
    "session_lock",
    "summarize_message",
]
