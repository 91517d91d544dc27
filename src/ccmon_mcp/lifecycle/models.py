"""Lifecycle record models written by the hook dispatcher."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LifecycleState(str, Enum):
    """Discrete agent states reported through hook callbacks."""

    WORKING = "working"
    IDLE = "idle"
    WAITING_PERMISSION = "waiting_permission"
    WAITING_INPUT = "waiting_input"
    COMPACTING = "compacting"

    @classmethod
    def parse(cls, value: Any) -> "LifecycleState | None":
        """Return the state for a keyword, or ``None`` when it is not recognised."""

        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None

    @property
    def is_waiting(self) -> bool:
        return self in (LifecycleState.WAITING_PERMISSION, LifecycleState.WAITING_INPUT)


class Subtask(BaseModel):
    """A sub-agent currently running inside a session."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., description="Identifier assigned by the agent to the sub-task.")
    kind: str = Field(default="agent", alias="type", description="Sub-agent type label.")

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Subtask id must not be empty")
        return normalized


class LifecycleRecord(BaseModel):
    """Latest lifecycle event for a session plus its contextual strings."""

    model_config = ConfigDict(frozen=True)

    state: LifecycleState | None = None
    context: str | None = None
    last_message: str | None = None
    subtasks: tuple[Subtask, ...] = ()

    @field_validator("context", "last_message")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        return value

    @property
    def has_active_subtasks(self) -> bool:
        return bool(self.subtasks)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape (``agents`` keeps the ``type`` key)."""

        return {
            "state": self.state.value if self.state is not None else "",
            "context": self.context or "",
            "last_message": self.last_message or "",
            "agents": [subtask.model_dump(by_alias=True) for subtask in self.subtasks],
        }


EMPTY_RECORD = LifecycleRecord()


__all__ = ["EMPTY_RECORD", "LifecycleRecord", "LifecycleState", "Subtask"]
