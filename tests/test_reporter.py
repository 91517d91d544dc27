from __future__ import annotations

import io
import json
from pathlib import Path

from ccmon_mcp import reporter
from ccmon_mcp.config import get_settings
from ccmon_mcp.reporter import GitSnapshot, build_heartbeat, parse_git_status, parse_tmux_panes, status_line, write_heartbeat
from ccmon_mcp.parsing import Parsed
from ccmon_mcp.sessions import read_heartbeat

STATUS = {
    "session_id": "abc-123",
    "cwd": "/ignored",
    "workspace": {"project_dir": "/home/dev/projects/api"},
    "model": {"display_name": "Opus"},
    "context_window": {"used_percentage": 37.5, "context_window_size": 1_000_000},
    "cost": {"total_cost_usd": 2.5},
}


def test_parse_git_status_counts_changes() -> None:
    output = "\n".join(
        [
            "## feature/login...origin/feature/login [ahead 1]",
            "M  staged.py",
            " M modified.py",
            "MM both.py",
            "A  added.py",
            "?? new.txt",
            "?? other.txt",
        ]
    )

    snapshot = parse_git_status(output)

    assert snapshot == GitSnapshot(branch="feature/login", staged=3, modified=2, untracked=2)


def test_parse_git_status_branch_variants() -> None:
    assert parse_git_status("## No commits yet on main\n").branch == "main"
    assert parse_git_status("## HEAD (no branch)\n").branch is None
    assert parse_git_status("## develop\n").branch == "develop"


def test_parse_tmux_panes_matches_tty() -> None:
    output = "/dev/ttys001 work:0.0\n/dev/ttys002 work:1.2\n"

    assert parse_tmux_panes(output, "/dev/ttys002") == "work:1.2"
    assert parse_tmux_panes(output, "/dev/ttys009") is None


def test_build_heartbeat_maps_status_fields() -> None:
    heartbeat = build_heartbeat(
        STATUS,
        now=1_700_000_000.0,
        pid=4242,
        tty="/dev/ttys002",
        tmux_target="work:1.2",
        git=GitSnapshot(branch="main", staged=1),
    )

    assert heartbeat.session_id == "abc-123"
    assert heartbeat.project_name == "api"
    assert heartbeat.working_directory == "/home/dev/projects/api"
    assert heartbeat.model == "Opus"
    assert heartbeat.context_used_pct == 37.5
    assert heartbeat.context_window_size == 1_000_000
    assert heartbeat.cost_usd == 2.5
    assert heartbeat.git_branch == "main"
    assert heartbeat.git_staged == 1
    assert heartbeat.pid == 4242
    assert heartbeat.tmux_target == "work:1.2"
    assert status_line(heartbeat) == "[Opus] 37.5%"


def test_build_heartbeat_defaults_for_sparse_payload() -> None:
    heartbeat = build_heartbeat({"session_id": "s1", "cwd": "/tmp/demo/"}, now=1.0)

    assert heartbeat.project_name == "demo"
    assert heartbeat.model == "unknown"
    assert heartbeat.context_window_size == 200_000
    assert heartbeat.git_branch is None
    assert status_line(heartbeat) == "[unknown] 0%"


def test_git_counts_stay_unknown_outside_a_repository(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(reporter, "_run", lambda command, cwd=None: None)

    snapshot = reporter.git_snapshot(str(tmp_path))
    heartbeat = build_heartbeat({"session_id": "s1", "cwd": str(tmp_path)}, now=1.0, git=snapshot)

    assert snapshot is None
    assert heartbeat.git_staged is None
    assert heartbeat.git_modified is None
    assert heartbeat.git_untracked is None


def test_clean_repository_reports_zero_counts() -> None:
    heartbeat = build_heartbeat({"session_id": "s1"}, now=1.0, git=parse_git_status("## main\n"))

    assert heartbeat.git_branch == "main"
    assert (heartbeat.git_staged, heartbeat.git_modified, heartbeat.git_untracked) == (0, 0, 0)


def test_written_heartbeat_reads_back(tmp_path: Path) -> None:
    heartbeat = build_heartbeat(STATUS, now=1_700_000_000.0, pid=4242)

    path = write_heartbeat(tmp_path / "monitor", heartbeat)

    assert path.name == "abc-123.json"
    parsed = read_heartbeat(path)
    assert isinstance(parsed, Parsed)
    assert parsed.value == heartbeat
    assert list(path.parent.glob("*.tmp")) == []


def test_main_writes_heartbeat_and_prints_status_line(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CCMON_DIR", str(tmp_path))
    monkeypatch.setattr(reporter, "process_tty", lambda pid: "/dev/ttys005")
    monkeypatch.setattr(reporter, "tmux_target_for_tty", lambda tty: None)
    monkeypatch.setattr(reporter, "git_snapshot", lambda project_dir: GitSnapshot(branch="main"))
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(STATUS)))
    get_settings.cache_clear()
    try:
        reporter.main([])
    finally:
        get_settings.cache_clear()

    assert capsys.readouterr().out.strip() == "[Opus] 37.5%"
    stored = json.loads((tmp_path / "abc-123.json").read_text(encoding="utf-8"))
    assert stored["tty"] == "/dev/ttys005"
    assert stored["git_branch"] == "main"
    assert stored["last_updated"] > 0


def test_main_ignores_payload_without_session(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CCMON_DIR", str(tmp_path))
    monkeypatch.setattr("sys.stdin", io.StringIO("{}"))
    get_settings.cache_clear()
    try:
        reporter.main([])
    finally:
        get_settings.cache_clear()

    assert capsys.readouterr().out == ""
    assert list(tmp_path.iterdir()) == []
