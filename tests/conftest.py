from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable

import pytest

from ccmon_mcp.config import MonitorSettings


@pytest.fixture
def monitor_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "monitor"
    directory.mkdir()
    return directory


@pytest.fixture
def make_settings(monkeypatch, monitor_dir: Path, tmp_path: Path) -> Callable[..., MonitorSettings]:
    def factory(**env: Any) -> MonitorSettings:
        monkeypatch.setenv("CCMON_DIR", str(monitor_dir))
        monkeypatch.setenv("CCMON_CLAUDE_DIR", str(tmp_path / "claude"))
        for key, value in env.items():
            monkeypatch.setenv(key, str(value))
        return MonitorSettings()

    return factory


@pytest.fixture
def write_heartbeat(monitor_dir: Path) -> Callable[..., Path]:
    def writer(session_id: str, last_updated: float, **fields: Any) -> Path:
        payload = {
            "session_id": session_id,
            "project_name": fields.pop("project_name", "demo"),
            "git_branch": "main",
            "model": "Opus",
            "context_used_pct": 42,
            "context_window_size": 200000,
            "cost_usd": 1.25,
            "last_updated": last_updated,
            "tty": fields.pop("tty", ""),
            **fields,
        }
        path = monitor_dir / f"{session_id}.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return writer


@pytest.fixture
def write_state(monitor_dir: Path) -> Callable[..., Path]:
    def writer(session_id: str, state: str, written_at: float, **fields: Any) -> Path:
        path = monitor_dir / f".{session_id}.state"
        if fields:
            path.write_text(json.dumps({"state": state, **fields}), encoding="utf-8")
        else:
            path.write_text(state, encoding="utf-8")
        os.utime(path, (written_at, written_at))
        return path

    return writer
