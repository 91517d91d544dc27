from __future__ import annotations

import argparse
import importlib.util
import json
import time
from pathlib import Path

import pytest

from ccmon_mcp.config import get_settings
from ccmon_mcp.diagnostics import CheckResult, CheckSeverity, DiagnosticReport, FixAction, FixKind

SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"


def _load_script(name: str):
    spec = importlib.util.spec_from_file_location(f"{name}_test_module", SCRIPTS / f"{name}.py")
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def cli_env(monkeypatch, monitor_dir: Path, tmp_path: Path):
    monkeypatch.setenv("CCMON_DIR", str(monitor_dir))
    monkeypatch.setenv("CCMON_CLAUDE_DIR", str(tmp_path / "claude"))
    get_settings.cache_clear()
    yield monitor_dir
    get_settings.cache_clear()


class StubEngine:
    def __init__(self, reports: list[DiagnosticReport]) -> None:
        self.reports = reports
        self.fixes: list[FixAction] = []

    def run_all_checks(self) -> DiagnosticReport:
        return self.reports.pop(0)

    def apply_fix(self, action: FixAction):
        self.fixes.append(action)
        return True, f"applied {action.kind.value}"


def test_doctor_reports_failures_with_exit_code(capsys) -> None:
    doctor = _load_script("ccmon_doctor")
    engine = StubEngine(
        [
            DiagnosticReport(
                [
                    CheckResult("git", CheckSeverity.PASS, "git installed"),
                    CheckResult("monitor-dir", CheckSeverity.FAIL, "monitor dir missing", detail="create it"),
                ]
            )
        ]
    )

    code = doctor.run(argparse.Namespace(fix=False, verbose=False), engine)

    out = capsys.readouterr().out
    assert code == 1
    assert "monitor dir missing" in out
    assert "git installed" not in out
    assert "Summary: 1 passed, 0 warnings, 1 error" in out


def test_doctor_fix_applies_each_action_once_and_rechecks(capsys) -> None:
    doctor = _load_script("ccmon_doctor")
    merge = FixAction(FixKind.MERGE_SETTINGS_HOOKS)
    engine = StubEngine(
        [
            DiagnosticReport(
                [
                    CheckResult("statusline", CheckSeverity.FAIL, "statusLine missing", fix=merge),
                    CheckResult("hook-Stop-.*", CheckSeverity.WARN, "Stop hook missing", fix=merge),
                ]
            ),
            DiagnosticReport([CheckResult("statusline", CheckSeverity.PASS, "statusLine configured")]),
        ]
    )

    code = doctor.run(argparse.Namespace(fix=True, verbose=True), engine)

    out = capsys.readouterr().out
    assert code == 0
    assert engine.fixes == [merge]
    assert "Re-running checks after fixes" in out
    assert "statusLine configured" in out


def test_doctor_main_against_real_directories(cli_env, monkeypatch, capsys) -> None:
    doctor = _load_script("ccmon_doctor")
    monkeypatch.setenv("PATH", "")

    with pytest.raises(SystemExit) as excinfo:
        doctor.main(["--fix"])

    assert excinfo.value.code == 1
    settings_path = Path(get_settings().claude_dir) / "settings.json"
    assert json.loads(settings_path.read_text(encoding="utf-8"))["statusLine"]["command"] == "ccmon-reporter"
    assert "Fixed:" in capsys.readouterr().out


def _write(monitor_dir: Path, session_id: str, age: float, state: str | None = None) -> None:
    now = time.time()
    (monitor_dir / f"{session_id}.json").write_text(
        json.dumps({"session_id": session_id, "project_name": session_id, "last_updated": now - age}),
        encoding="utf-8",
    )
    if state:
        (monitor_dir / f".{session_id}.state").write_text(state, encoding="utf-8")


def test_sessions_cli_json_output(cli_env, capsys) -> None:
    sessions = _load_script("ccmon_sessions")
    _write(cli_env, "alpha", 1, "waiting_input")
    _write(cli_env, "beta", 2, "idle")

    sessions.main(["--format", "json"])

    payload = json.loads(capsys.readouterr().out)
    assert [item["session_id"] for item in payload] == ["alpha", "beta"]
    assert payload[0]["status"] == "needs_attention"


def test_sessions_cli_filters_and_limits(cli_env, capsys) -> None:
    sessions = _load_script("ccmon_sessions")
    _write(cli_env, "alpha", 1, "idle")
    _write(cli_env, "beta", 2, "idle")
    _write(cli_env, "gamma", 3, "waiting_permission")

    sessions.main(["--format", "json", "--status", "ready", "--limit", "1"])

    payload = json.loads(capsys.readouterr().out)
    assert [item["session_id"] for item in payload] == ["alpha"]


def test_sessions_cli_text_groups_by_status(cli_env, tmp_path: Path, capsys) -> None:
    sessions = _load_script("ccmon_sessions")
    _write(cli_env, "alpha", 1, "idle")
    _write(cli_env, "beta", 2, "waiting_permission")
    output = tmp_path / "sessions.txt"

    sessions.main(["--output", str(output)])

    assert "Wrote 2 session(s)" in capsys.readouterr().out
    text = output.read_text(encoding="utf-8")
    assert text.index("Needs Input (1)") < text.index("Ready (1)")
    assert "Waiting for Permission" in text


def test_sessions_cli_empty_directory(cli_env, capsys) -> None:
    sessions = _load_script("ccmon_sessions")

    sessions.main([])

    assert capsys.readouterr().out.strip() == "No active sessions."
