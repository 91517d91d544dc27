"""FastMCP server bootstrap for the session monitor."""

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import MonitorSettings, get_settings
from .sessions import AgentStatus, SessionRegistry
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the monitor server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_status_payload(
    registry: SessionRegistry,
    settings: MonitorSettings,
    *,
    request_id: Any = None,
) -> dict[str, Any]:
    """Summarize the registry for the status resource."""

    sessions = registry.sessions
    status_counts = {status.value: 0 for status in AgentStatus.display_order()}
    for view in sessions:
        status_counts[view.status.value] += 1

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "monitor_dir": str(registry.directory),
        "running": registry.running,
        "sequence": registry.published_sequence,
        "sessions": {
            "count": len(sessions),
            "status_counts": status_counts,
            "attention": [view.session_id for view in sessions if view.status is AgentStatus.NEEDS_ATTENTION],
        },
        "thresholds": asdict(registry.thresholds),
        "intervals": {
            "refresh": settings.refresh_interval,
            "liveness": settings.liveness_interval,
            "liveness_timeout": settings.liveness_timeout,
        },
        "request_id": request_id,
    }


def create_server(
    settings: Optional[MonitorSettings] = None,
    registry: SessionRegistry | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the session tools and status resource."""

    settings = settings or get_settings()
    registry = registry or SessionRegistry(settings)

    server = FastMCP(
        name="Session Monitor MCP",
        version=__version__,
        instructions=(
            "Tracks locally running coding-agent sessions. Use list_sessions to see which "
            "sessions need attention, are working, ready, or disconnected, and "
            "focus_session to jump to one."
        ),
    )

    handles = register_tools(server, registry=registry)

    @server.resource(
        "resource://ccmon/status",
        name="ccmon_status",
        title="Session Monitor Status",
        description="Session counts per status and the monitor's refresh configuration.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing the registry."""

        payload = build_status_payload(
            registry,
            settings,
            request_id=getattr(context, "request_id", None),
        )
        return json.dumps(payload)

    setattr(server, "registry", registry)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the session monitor MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    registry: SessionRegistry = getattr(server, "registry")
    registry.start()
    logging.getLogger(__name__).info(
        "Launching session monitor MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "monitor_dir": str(settings.monitor_dir),
        },
    )
    try:
        server.run()
    finally:
        registry.stop()


if __name__ == "__main__":
    main()
