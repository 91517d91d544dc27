"""Heartbeat records and the consumer-facing session view."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..lifecycle.models import LifecycleRecord, LifecycleState
from ..parsing import Absent, Malformed, Parsed, ParseResult, is_safe_session_id
from .inference import AgentStatus, format_relative_time

HEARTBEAT_SUFFIX = ".json"


class Heartbeat(BaseModel):
    """Periodic snapshot written by the status-line reporter."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    session_id: str = Field(..., description="Stable identifier assigned by the agent.")
    project_name: str = Field(default="", description="Name derived from the working directory.")
    working_directory: str = Field(
        default="",
        validation_alias=AliasChoices("working_directory", "project_dir", "cwd"),
    )
    git_branch: str | None = None
    git_staged: int | None = None
    git_modified: int | None = None
    git_untracked: int | None = None
    model: str = ""
    context_used_pct: float = Field(default=0.0, ge=0.0)
    context_window_size: int = Field(default=0, ge=0)
    cost_usd: float = Field(default=0.0, ge=0.0)
    last_updated: float = Field(..., description="Seconds since the epoch of the last write.")
    tty: str | None = None
    pid: int | None = None
    tmux_target: str | None = None
    tmux_window_name: str | None = None
    tab_title: str | None = None

    @field_validator("session_id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Heartbeat session_id must not be empty")
        if not is_safe_session_id(normalized):
            raise ValueError(f"Heartbeat session_id {normalized!r} cannot name a file")
        return normalized

    @field_validator("git_branch", "tty", "tmux_target", "tmux_window_name", "tab_title", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("pid", mode="before")
    @classmethod
    def _ignore_placeholder_pid(cls, value: Any) -> Any:
        if value in (None, "", 0, "0"):
            return None
        return value

    @property
    def context_used_fraction(self) -> float:
        return self.context_used_pct / 100.0


def heartbeat_path(directory: Path, session_id: str) -> Path:
    return Path(directory) / f"{session_id}{HEARTBEAT_SUFFIX}"


def is_heartbeat_file(path: Path) -> bool:
    return path.suffix == HEARTBEAT_SUFFIX and not path.name.startswith(".")


def read_heartbeat(path: Path) -> ParseResult[Heartbeat]:
    """Parse one heartbeat file without letting any error escape."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Absent()
    except (OSError, UnicodeDecodeError) as exc:
        return Malformed(f"Unreadable heartbeat {path.name}: {exc}")

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        return Malformed(f"Invalid JSON in {path.name}: {exc}")
    if not isinstance(document, dict):
        return Malformed(f"Heartbeat {path.name} is not a JSON object")

    try:
        return Parsed(Heartbeat.model_validate(document))
    except ValidationError as exc:
        return Malformed(f"Heartbeat validation error in {path.name}: {exc}")


_STATE_TEXT = {
    LifecycleState.WORKING: ("Working", AgentStatus.WORKING),
    LifecycleState.COMPACTING: ("Compacting", AgentStatus.WORKING),
    LifecycleState.WAITING_PERMISSION: ("Waiting for Permission", AgentStatus.NEEDS_ATTENTION),
    LifecycleState.WAITING_INPUT: ("Waiting for Input", AgentStatus.NEEDS_ATTENTION),
    LifecycleState.IDLE: ("Ready", AgentStatus.READY),
}


@dataclass(frozen=True, slots=True)
class SessionView:
    """Immutable projection of one session for a single refresh cycle."""

    heartbeat: Heartbeat
    lifecycle: LifecycleRecord
    status: AgentStatus
    process_alive: bool
    age: float = field(default=0.0, compare=False)
    source: Path | None = field(default=None, compare=False, repr=False)

    @property
    def session_id(self) -> str:
        return self.heartbeat.session_id

    @property
    def display_label(self) -> str:
        if self.heartbeat.tab_title:
            return self.heartbeat.tab_title
        if self.heartbeat.tmux_window_name:
            return self.heartbeat.tmux_window_name
        return self.heartbeat.project_name

    @property
    def detailed_status_text(self) -> str:
        state = self.lifecycle.state
        if state is None or _STATE_TEXT[state][1] is not self.status:
            return self.status.label
        return _STATE_TEXT[state][0]

    @property
    def relative_time(self) -> str:
        return format_relative_time(self.age)

    @property
    def context_tier(self) -> str:
        if self.heartbeat.context_used_pct >= 85:
            return "critical"
        if self.heartbeat.context_used_pct >= 60:
            return "warning"
        return "healthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "label": self.display_label,
            "status": self.status.value,
            "status_text": self.detailed_status_text,
            "process_alive": self.process_alive,
            "age_seconds": round(self.age, 1),
            "relative_time": self.relative_time,
            "context_tier": self.context_tier,
            "context": self.lifecycle.context,
            "last_message": self.lifecycle.last_message,
            "subtasks": [subtask.model_dump(by_alias=True) for subtask in self.lifecycle.subtasks],
            "heartbeat": self.heartbeat.model_dump(),
        }


def group_by_status(views: Iterable[SessionView]) -> list[tuple[AgentStatus, list[SessionView]]]:
    """Group views in display order, skipping empty groups."""

    grouped: dict[AgentStatus, list[SessionView]] = {}
    for view in views:
        grouped.setdefault(view.status, []).append(view)
    return [(status, grouped[status]) for status in AgentStatus.display_order() if grouped.get(status)]


__all__ = [
    "Heartbeat",
    "SessionView",
    "group_by_status",
    "heartbeat_path",
    "is_heartbeat_file",
    "read_heartbeat",
]
