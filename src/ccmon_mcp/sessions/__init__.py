"""Session status inference and the session registry."""

from .inference import (
    DEFAULT_THRESHOLDS,
    AgentStatus,
    SessionPhase,
    StatusThresholds,
    format_relative_time,
    infer_status,
    session_phase,
    should_check_liveness,
)
from .models import Heartbeat, SessionView, group_by_status, heartbeat_path, read_heartbeat
from .registry import MonitorDirectoryError, SessionRegistry, load_sessions

__all__ = [
    "AgentStatus",
    "DEFAULT_THRESHOLDS",
    "Heartbeat",
    "MonitorDirectoryError",
    "SessionPhase",
    "SessionRegistry",
    "SessionView",
    "StatusThresholds",
    "format_relative_time",
    "group_by_status",
    "heartbeat_path",
    "infer_status",
    "load_sessions",
    "read_heartbeat",
    "session_phase",
    "should_check_liveness",
]
