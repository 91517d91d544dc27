"""List the sessions currently tracked in the monitor directory."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from ccmon_mcp.config import get_settings
from ccmon_mcp.sessions import AgentStatus, MonitorDirectoryError, SessionRegistry, SessionView, group_by_status


def load_registry(check_liveness: bool) -> SessionRegistry:
    registry = SessionRegistry(get_settings())
    try:
        registry.ensure_directory()
    except MonitorDirectoryError as exc:
        print(f"Monitor directory unavailable: {exc}")
        raise SystemExit(1)
    registry.refresh_now(check_liveness=check_liveness)
    return registry


def render_text(views: Sequence[SessionView]) -> str:
    if not views:
        return "No active sessions."
    lines: list[str] = []
    for status, group in group_by_status(views):
        lines.append(f"{status.label} ({len(group)})")
        for view in group:
            branch = f" [{view.heartbeat.git_branch}]" if view.heartbeat.git_branch else ""
            detail = view.lifecycle.context or view.lifecycle.last_message or ""
            line = (
                f"  {view.display_label}{branch}  {view.detailed_status_text}  "
                f"{view.heartbeat.context_used_pct:.0f}% ctx  {view.relative_time}  ({view.session_id})"
            )
            lines.append(line)
            if detail:
                lines.append(f"      {detail}")
    return "\n".join(lines)


def cmd_list(args: argparse.Namespace) -> None:
    registry = load_registry(args.check_liveness)
    views = list(registry.sessions)
    if args.status:
        wanted = AgentStatus(args.status)
        views = [view for view in views if view.status is wanted]
    if args.limit is not None and args.limit > 0:
        views = views[: args.limit]

    if args.format == "json":
        output = json.dumps([view.to_dict() for view in views], indent=2)
    else:
        output = render_text(views)

    if args.output:
        Path(args.output).write_text(output + "\n", encoding="utf-8")
        print(f"Wrote {len(views)} session(s) to {args.output}")
    else:
        print(output)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List tracked agent sessions")
    parser.add_argument("--format", choices=("text", "json"), default="text")
    parser.add_argument(
        "--status",
        choices=[status.value for status in AgentStatus],
        help="Only show sessions with this status",
    )
    parser.add_argument("--limit", type=int, default=None, help="Show at most N sessions")
    parser.add_argument("--output", help="Write to this file instead of stdout")
    parser.add_argument(
        "--check-liveness",
        action="store_true",
        help="Verify each stale session's process is still running",
    )
    parser.set_defaults(func=cmd_list)
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
