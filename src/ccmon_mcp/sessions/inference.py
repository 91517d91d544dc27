"""Pure status inference from lifecycle state, record ages and liveness.

Nothing here performs I/O. Ages are seconds since the corresponding file
was last written; ``lifecycle_age`` is ``None`` when the lifecycle file's
modification time could not be read.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..lifecycle.models import LifecycleState


class AgentStatus(str, Enum):
    """Resolved status published to consumers."""

    NEEDS_ATTENTION = "needs_attention"
    WORKING = "working"
    READY = "ready"
    DISCONNECTED = "disconnected"

    @classmethod
    def display_order(cls) -> list["AgentStatus"]:
        return [cls.NEEDS_ATTENTION, cls.WORKING, cls.READY, cls.DISCONNECTED]

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    AgentStatus.NEEDS_ATTENTION: "Needs Input",
    AgentStatus.WORKING: "Working",
    AgentStatus.READY: "Ready",
    AgentStatus.DISCONNECTED: "Disconnected",
}


class SessionPhase(str, Enum):
    ACTIVE = "active"
    PENDING_DELETE = "pending_delete"


@dataclass(frozen=True, slots=True)
class StatusThresholds:
    """Tunable staleness thresholds, in seconds."""

    work_grace: float = 3.0
    liveness_grace: float = 5.0
    stream_proof: float = 2.0
    stream_stop: float = 6.0
    think_stale: float = 12.0
    cleanup_after: float = 300.0


DEFAULT_THRESHOLDS = StatusThresholds()


def _idle_or_gone(process_alive: bool) -> AgentStatus:
    return AgentStatus.READY if process_alive else AgentStatus.DISCONNECTED


def _working_fallback(
    lifecycle_age: float | None,
    heartbeat_age: float,
    process_alive: bool,
    has_active_subtasks: bool,
    thresholds: StatusThresholds,
) -> AgentStatus:
    # Recovers from a turn-complete event that never fired.
    if lifecycle_age is None:
        return AgentStatus.WORKING

    streamed_after_event = lifecycle_age > heartbeat_age + thresholds.stream_proof
    if streamed_after_event:
        if heartbeat_age > thresholds.stream_stop:
            return _idle_or_gone(process_alive)
        return AgentStatus.WORKING

    if has_active_subtasks:
        return AgentStatus.WORKING

    if lifecycle_age > thresholds.think_stale and heartbeat_age > thresholds.think_stale:
        return _idle_or_gone(process_alive)

    return AgentStatus.WORKING


def infer_status(
    state: LifecycleState | None,
    lifecycle_age: float | None,
    heartbeat_age: float,
    process_alive: bool,
    has_active_subtasks: bool = False,
    *,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> AgentStatus:
    """Resolve one authoritative status for a session."""

    if not process_alive and heartbeat_age > thresholds.liveness_grace:
        return AgentStatus.DISCONNECTED

    if state is None:
        if heartbeat_age <= thresholds.work_grace:
            return AgentStatus.WORKING
        return _idle_or_gone(process_alive)

    if state is LifecycleState.COMPACTING:
        return AgentStatus.WORKING
    if state.is_waiting:
        return AgentStatus.NEEDS_ATTENTION
    if state is LifecycleState.IDLE:
        return AgentStatus.READY

    return _working_fallback(
        lifecycle_age, heartbeat_age, process_alive, has_active_subtasks, thresholds
    )


def session_phase(
    heartbeat_age: float,
    process_alive: bool,
    *,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> SessionPhase:
    """Dead sessions stay visible for ``cleanup_after`` seconds before their files are purged."""

    if not process_alive and heartbeat_age > thresholds.cleanup_after:
        return SessionPhase.PENDING_DELETE
    return SessionPhase.ACTIVE


def should_check_liveness(
    heartbeat_age: float,
    *,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> bool:
    return heartbeat_age > thresholds.liveness_grace


def format_relative_time(age: float) -> str:
    """Compact relative age such as ``just now``, ``45s``, ``2m``, ``1h`` or ``3d``."""

    if age < 10:
        return "just now"
    if age < 60:
        return f"{int(age)}s"
    if age < 3600:
        return f"{int(age / 60)}m"
    if age < 86400:
        return f"{int(age / 3600)}h"
    return f"{int(age / 86400)}d"


__all__ = [
    "AgentStatus",
    "DEFAULT_THRESHOLDS",
    "SessionPhase",
    "StatusThresholds",
    "format_relative_time",
    "infer_status",
    "session_phase",
    "should_check_liveness",
]
