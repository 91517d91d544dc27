"""Parsing and merging of lifecycle state files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..parsing import Absent, Malformed, Parsed, ParseResult
from .models import LifecycleRecord, LifecycleState, Subtask


def lifecycle_path(directory: Path, session_id: str) -> Path:
    return Path(directory) / f".{session_id}.state"


def _parse_subtasks(raw: Any) -> tuple[Subtask, ...]:
    if not isinstance(raw, list):
        return ()
    subtasks: dict[str, Subtask] = {}
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        if not isinstance(entry.get("id"), str) or not isinstance(entry.get("type"), str):
            continue
        try:
            subtask = Subtask.model_validate(entry)
        except ValidationError:
            continue
        subtasks[subtask.id] = subtask
    return tuple(subtasks.values())


def _optional_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_lifecycle(content: str) -> LifecycleRecord:
    """Parse lifecycle file content.

    The structured JSON form is tried first. Anything else is read as a
    bare state keyword. Unknown keywords yield a record without a state,
    which callers must not confuse with ``LifecycleState.IDLE``.
    """

    trimmed = content.strip()

    if trimmed.startswith("{"):
        try:
            document = json.loads(trimmed)
        except json.JSONDecodeError:
            document = None
        if isinstance(document, dict) and isinstance(document.get("state"), str):
            return LifecycleRecord(
                state=LifecycleState.parse(document["state"]),
                context=_optional_text(document.get("context")),
                last_message=_optional_text(document.get("last_message")),
                subtasks=_parse_subtasks(document.get("agents")),
            )

    return LifecycleRecord(state=LifecycleState.parse(trimmed))


def merge_lifecycle(previous: LifecycleRecord | None, new: LifecycleRecord) -> LifecycleRecord:
    """Carry forward non-empty context strings; state and subtasks always come from ``new``."""

    if previous is None:
        return new
    return LifecycleRecord(
        state=new.state,
        context=new.context or previous.context,
        last_message=new.last_message or previous.last_message,
        subtasks=new.subtasks,
    )


def read_lifecycle(directory: Path, session_id: str, *, now: float) -> ParseResult[tuple[LifecycleRecord, float | None]]:
    """Read a session's lifecycle file and its age in seconds (from mtime)."""

    path = lifecycle_path(directory, session_id)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Absent()
    except (OSError, UnicodeDecodeError) as exc:
        return Malformed(f"Unreadable lifecycle file {path.name}: {exc}")

    try:
        age: float | None = now - path.stat().st_mtime
    except OSError:
        age = None
    return Parsed((parse_lifecycle(content), age))


__all__ = ["lifecycle_path", "merge_lifecycle", "parse_lifecycle", "read_lifecycle"]
