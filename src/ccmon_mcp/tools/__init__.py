"""Tool registration for the session monitor MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from fastmcp import Context, FastMCP

from ..focus import focus_session as start_focus
from ..sessions import AgentStatus, SessionRegistry, SessionView


@dataclass(slots=True)
class ToolHandles:
    list_sessions: Any
    session_status: Any
    refresh_sessions: Any
    focus_session: Any


def _parse_status(status: str | None) -> AgentStatus | None:
    if status is None or not status.strip():
        return None
    try:
        return AgentStatus(status.strip().lower())
    except ValueError as exc:
        valid = ", ".join(item.value for item in AgentStatus)
        raise ValueError(f"Unknown status '{status}'. Expected one of: {valid}") from exc


def register_tools(
    server: FastMCP,
    *,
    registry: SessionRegistry,
    focus: Callable[[SessionView], Any] | None = None,
) -> ToolHandles:
    """Register the session monitor's MCP tools on the server."""

    focus = focus or start_focus

    def _require_session(session_id: str) -> SessionView:
        view = registry.get(session_id)
        if view is None:
            raise ValueError(f"Unknown session '{session_id}'")
        return view

    def _list_sessions(status: str | None = None, context: Context | None = None) -> list[dict[str, Any]]:
        """List tracked sessions, newest first."""

        wanted = _parse_status(status)
        views = [view for view in registry.sessions if wanted is None or view.status is wanted]
        _emit_log(
            context,
            "debug",
            "Listing sessions",
            extra={"count": len(views), "status": wanted.value if wanted else None},
        )
        return [view.to_dict() for view in views]

    def _session_status(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Return the current view of one session."""

        view = _require_session(session_id)
        _emit_log(context, "debug", "Session status requested", extra={"session_id": session_id})
        return view.to_dict()

    def _refresh_sessions(check_liveness: bool = False, context: Context | None = None) -> dict[str, Any]:
        """Rescan the monitor directory immediately."""

        published = registry.refresh_now(check_liveness=check_liveness)
        sessions = registry.sessions
        counts = {status.value: 0 for status in AgentStatus.display_order()}
        for view in sessions:
            counts[view.status.value] += 1

        _emit_log(
            context,
            "info",
            "Manual refresh completed",
            extra={"published": published, "check_liveness": check_liveness, "count": len(sessions)},
        )
        return {
            "published": published,
            "check_liveness": check_liveness,
            "sequence": registry.published_sequence,
            "count": len(sessions),
            "status_counts": counts,
        }

    def _focus_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Bring the terminal running a session to the foreground."""

        view = _require_session(session_id)
        started = focus(view) is not None
        strategy = "tmux" if view.heartbeat.tmux_target else "terminal_tab"
        _emit_log(
            context,
            "info" if started else "warning",
            "Focus requested",
            extra={"session_id": session_id, "strategy": strategy, "started": started},
        )
        return {"session_id": session_id, "strategy": strategy, "started": started}

    tool_list = server.tool(
        name="list_sessions",
        description=(
            "List agent sessions with status (needs_attention, working, ready, disconnected), "
            "project, context usage and last activity. Optionally filter by status."
        ),
    )(_list_sessions)

    tool_status = server.tool(
        name="session_status",
        description="Fetch the current status and heartbeat details of one session by id.",
    )(_session_status)

    tool_refresh = server.tool(
        name="refresh_sessions",
        description=(
            "Rescan the monitor directory now. Set check_liveness to also verify that "
            "each session's process is still running."
        ),
    )(_refresh_sessions)

    tool_focus = server.tool(
        name="focus_session",
        description="Bring the terminal tab or tmux pane running a session to the foreground.",
        annotations={"readOnlyHint": False, "destructiveHint": False},
    )(_focus_session)

    return ToolHandles(
        list_sessions=tool_list,
        session_status=tool_status,
        refresh_sessions=tool_refresh,
        focus_session=tool_focus,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
