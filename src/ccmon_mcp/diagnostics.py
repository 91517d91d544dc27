"""Installation health checks and automatic repairs.

The engine inspects the external pieces the monitor depends on: system
commands, the hook and reporter entry points, the agent's ``settings.json``
and the shared monitor directory. Each failing check may carry a
:class:`FixAction` that :meth:`DiagnosticEngine.apply_fix` knows how to
perform.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .lifecycle.dispatcher import atomic_write_text

logger = logging.getLogger(__name__)

HOOK_COMMAND = "ccmon-hook"
REPORTER_COMMAND = "ccmon-reporter"


class CheckSeverity(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class FixKind(str, Enum):
    FIX_PERMISSIONS = "fix_permissions"
    CREATE_MONITOR_DIR = "create_monitor_dir"
    MERGE_SETTINGS_HOOKS = "merge_settings_hooks"
    CLEAN_FILES = "clean_files"


@dataclass(frozen=True, slots=True)
class FixAction:
    kind: FixKind
    paths: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        if not self.paths:
            return self.kind.value
        return f"{self.kind.value}:{','.join(self.paths)}"


@dataclass(slots=True)
class CheckResult:
    name: str
    severity: CheckSeverity
    message: str
    detail: str | None = None
    fix: FixAction | None = None


@dataclass(slots=True)
class DiagnosticReport:
    checks: list[CheckResult] = field(default_factory=list)

    def _count(self, severity: CheckSeverity) -> int:
        return sum(1 for check in self.checks if check.severity is severity)

    @property
    def pass_count(self) -> int:
        return self._count(CheckSeverity.PASS)

    @property
    def warn_count(self) -> int:
        return self._count(CheckSeverity.WARN)

    @property
    def fail_count(self) -> int:
        return self._count(CheckSeverity.FAIL)

    @property
    def has_critical_issues(self) -> bool:
        return self.fail_count > 0


@dataclass(frozen=True, slots=True)
class ExpectedHook:
    event: str
    matcher: str
    command: str


EXPECTED_HOOKS: tuple[ExpectedHook, ...] = (
    ExpectedHook("UserPromptSubmit", ".*", f"{HOOK_COMMAND} working"),
    ExpectedHook("PreToolUse", ".*", f"{HOOK_COMMAND} working"),
    ExpectedHook("Stop", ".*", f"{HOOK_COMMAND} idle"),
    ExpectedHook("Notification", "permission_prompt", f"{HOOK_COMMAND} notification_permission"),
    ExpectedHook("Notification", "idle_prompt", f"{HOOK_COMMAND} idle"),
    ExpectedHook("PermissionRequest", ".*", f"{HOOK_COMMAND} waiting_permission"),
    ExpectedHook("SubagentStart", ".*", f"{HOOK_COMMAND} subagent_start"),
    ExpectedHook("SubagentStop", ".*", f"{HOOK_COMMAND} subagent_stop"),
    ExpectedHook("PreCompact", ".*", f"{HOOK_COMMAND} compacting"),
    ExpectedHook("SessionStart", ".*", f"{HOOK_COMMAND} session_start"),
)


def is_hook_present(hooks: Any, expected: ExpectedHook) -> bool:
    if not isinstance(hooks, dict):
        return False
    for entry in hooks.get(expected.event) or []:
        if not isinstance(entry, dict) or entry.get("matcher") != expected.matcher:
            continue
        for hook in entry.get("hooks") or []:
            if isinstance(hook, dict) and hook.get("command") == expected.command:
                return True
    return False


def merge_hook_settings(settings: dict[str, Any]) -> dict[str, Any]:
    """Return ``settings`` with the status line and every expected hook configured.

    Unrelated keys and hooks are preserved; matching entries are reused.
    """

    merged = dict(settings)
    merged["statusLine"] = {"type": "command", "command": REPORTER_COMMAND}

    hooks = merged.get("hooks")
    hooks = dict(hooks) if isinstance(hooks, dict) else {}
    for expected in EXPECTED_HOOKS:
        entries = [dict(entry) for entry in hooks.get(expected.event) or [] if isinstance(entry, dict)]
        if not is_hook_present({expected.event: entries}, expected):
            command = {"type": "command", "command": expected.command}
            for entry in entries:
                if entry.get("matcher") == expected.matcher:
                    entry["hooks"] = [*(entry.get("hooks") or []), command]
                    break
            else:
                entries.append({"matcher": expected.matcher, "hooks": [command]})
        hooks[expected.event] = entries
    merged["hooks"] = hooks
    return merged


class DiagnosticEngine:
    """Runs the health checks against one monitor and agent configuration directory."""

    def __init__(
        self,
        monitor_dir: Path,
        claude_dir: Path,
        *,
        which: Callable[[str], str | None] = shutil.which,
        search_path: str | None = None,
    ) -> None:
        self.monitor_dir = Path(monitor_dir)
        self.claude_dir = Path(claude_dir)
        self._which = which
        self._search_path = search_path

    @property
    def settings_path(self) -> Path:
        return self.claude_dir / "settings.json"

    def run_all_checks(self) -> DiagnosticReport:
        report = self.run_fast_checks()
        report.checks.extend(self.check_data_integrity())
        return report

    def run_fast_checks(self) -> DiagnosticReport:
        checks: list[CheckResult] = []
        checks.extend(self.check_dependencies())
        checks.extend(self.check_entry_points())
        checks.extend(self.check_settings())
        checks.extend(self.check_monitor_dir())
        return DiagnosticReport(checks)

    def check_dependencies(self) -> list[CheckResult]:
        results = []
        for command, severity, purpose in (
            ("git", CheckSeverity.FAIL, "git branch and change counts"),
            ("ps", CheckSeverity.FAIL, "process liveness checks"),
            ("tmux", CheckSeverity.WARN, "focusing tmux panes"),
        ):
            path = self._which(command)
            if path:
                results.append(CheckResult(command, CheckSeverity.PASS, f"{command} installed ({path})"))
            else:
                results.append(
                    CheckResult(
                        command,
                        severity,
                        f"{command} not found on PATH",
                        detail=f"Needed for {purpose}",
                    )
                )
        return results

    def _find_on_path(self, name: str) -> Path | None:
        search_path = self._search_path if self._search_path is not None else os.environ.get("PATH", "")
        for directory in search_path.split(os.pathsep):
            if not directory:
                continue
            candidate = Path(directory) / name
            if candidate.is_file():
                return candidate
        return None

    def check_entry_points(self) -> list[CheckResult]:
        results = []
        for command in (HOOK_COMMAND, REPORTER_COMMAND):
            path = self._find_on_path(command)
            if path is None:
                results.append(
                    CheckResult(
                        f"{command}-exists",
                        CheckSeverity.FAIL,
                        f"{command} not found on PATH",
                        detail="Install with: pip install ccmon-mcp",
                    )
                )
                continue
            results.append(CheckResult(f"{command}-exists", CheckSeverity.PASS, f"{command} found ({path})"))
            if os.access(path, os.X_OK):
                results.append(CheckResult(f"{command}-exec", CheckSeverity.PASS, f"{command} is executable"))
            else:
                results.append(
                    CheckResult(
                        f"{command}-exec",
                        CheckSeverity.FAIL,
                        f"{command} is not executable",
                        detail="Re-run with --fix",
                        fix=FixAction(FixKind.FIX_PERMISSIONS, (str(path),)),
                    )
                )
        return results

    def check_settings(self) -> list[CheckResult]:
        merge = FixAction(FixKind.MERGE_SETTINGS_HOOKS)
        path = self.settings_path
        if not path.exists():
            return [
                CheckResult(
                    "settings-exists",
                    CheckSeverity.FAIL,
                    f"{path} not found",
                    detail="Re-run with --fix to create",
                    fix=merge,
                )
            ]
        results = [CheckResult("settings-exists", CheckSeverity.PASS, f"{path} exists")]

        try:
            settings = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            results.append(
                CheckResult("settings-parse", CheckSeverity.FAIL, f"{path} is not valid JSON", detail=str(exc))
            )
            return results
        if not isinstance(settings, dict):
            results.append(CheckResult("settings-parse", CheckSeverity.FAIL, f"{path} is not a JSON object"))
            return results

        status_line = settings.get("statusLine")
        command = status_line.get("command") if isinstance(status_line, dict) else None
        if isinstance(command, str) and REPORTER_COMMAND in command:
            results.append(CheckResult("statusline", CheckSeverity.PASS, "statusLine configured correctly"))
        else:
            results.append(
                CheckResult(
                    "statusline",
                    CheckSeverity.FAIL,
                    "statusLine not configured for the session monitor",
                    detail="Re-run with --fix to configure",
                    fix=merge,
                )
            )

        hooks = settings.get("hooks")
        for expected in EXPECTED_HOOKS:
            name = f"hook-{expected.event}-{expected.matcher}"
            label = f"Hook {expected.event} ({expected.matcher})"
            if is_hook_present(hooks, expected):
                results.append(CheckResult(name, CheckSeverity.PASS, f"{label} configured"))
            else:
                results.append(
                    CheckResult(
                        name,
                        CheckSeverity.WARN,
                        f"{label} missing from settings",
                        detail="Re-run with --fix to add",
                        fix=merge,
                    )
                )
        return results

    def check_monitor_dir(self) -> list[CheckResult]:
        create = FixAction(FixKind.CREATE_MONITOR_DIR)
        if not self.monitor_dir.is_dir():
            return [
                CheckResult(
                    "monitor-dir",
                    CheckSeverity.FAIL,
                    f"{self.monitor_dir} directory not found",
                    detail="Re-run with --fix to create",
                    fix=create,
                )
            ]
        if not os.access(self.monitor_dir, os.W_OK | os.X_OK):
            return [
                CheckResult(
                    "monitor-dir",
                    CheckSeverity.FAIL,
                    f"{self.monitor_dir} exists but is not writable",
                    fix=create,
                )
            ]
        return [CheckResult("monitor-dir", CheckSeverity.PASS, f"{self.monitor_dir} exists and is writable")]

    def check_data_integrity(self) -> list[CheckResult]:
        try:
            names = sorted(entry.name for entry in self.monitor_dir.iterdir() if entry.is_file())
        except OSError:
            return []

        heartbeats = {name for name in names if name.endswith(".json") and not name.startswith(".")}
        corrupt: list[str] = []
        for name in sorted(heartbeats):
            try:
                json.loads((self.monitor_dir / name).read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError):
                corrupt.append(str(self.monitor_dir / name))

        orphaned = []
        for name in names:
            if not name.startswith("."):
                continue
            session_id, _, suffix = name[1:].rpartition(".")
            if suffix in ("state", "lock") and f"{session_id}.json" not in heartbeats:
                orphaned.append(str(self.monitor_dir / name))

        results = []
        if corrupt:
            results.append(
                CheckResult(
                    "json-valid",
                    CheckSeverity.WARN,
                    f"{len(corrupt)} corrupt .json file(s) found",
                    detail=", ".join(Path(path).name for path in corrupt),
                    fix=FixAction(FixKind.CLEAN_FILES, tuple(corrupt)),
                )
            )
        else:
            results.append(CheckResult("json-valid", CheckSeverity.PASS, "All session .json files are valid"))

        if orphaned:
            results.append(
                CheckResult(
                    "orphan-state",
                    CheckSeverity.WARN,
                    f"{len(orphaned)} orphaned .state or .lock file(s) found",
                    detail=", ".join(Path(path).name for path in orphaned),
                    fix=FixAction(FixKind.CLEAN_FILES, tuple(orphaned)),
                )
            )
        else:
            results.append(CheckResult("orphan-state", CheckSeverity.PASS, "No orphaned .state or .lock files"))
        return results

    def apply_fix(self, action: FixAction) -> tuple[bool, str]:
        if action.kind is FixKind.FIX_PERMISSIONS:
            return self._fix_permissions(action.paths)
        if action.kind is FixKind.CREATE_MONITOR_DIR:
            return self._create_monitor_dir()
        if action.kind is FixKind.MERGE_SETTINGS_HOOKS:
            return self._merge_settings_hooks()
        if action.kind is FixKind.CLEAN_FILES:
            return self._clean_files(action.paths)
        return False, f"Unsupported fix {action.kind}"

    def _fix_permissions(self, paths: tuple[str, ...]) -> tuple[bool, str]:
        try:
            for path in paths:
                os.chmod(path, 0o755)
        except OSError as exc:
            return False, f"Failed to fix permissions: {exc}"
        return True, f"Fixed permissions on {', '.join(paths)}"

    def _create_monitor_dir(self) -> tuple[bool, str]:
        try:
            self.monitor_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return False, f"Failed to create directory: {exc}"
        return True, f"Created {self.monitor_dir}"

    def _merge_settings_hooks(self) -> tuple[bool, str]:
        current: dict[str, Any] = {}
        try:
            loaded = json.loads(self.settings_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            loaded = {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            return False, f"Refusing to overwrite unreadable settings: {exc}"
        if isinstance(loaded, dict):
            current = loaded

        try:
            self.claude_dir.mkdir(parents=True, exist_ok=True)
            atomic_write_text(
                self.settings_path,
                json.dumps(merge_hook_settings(current), indent=2, sort_keys=True) + "\n",
            )
        except OSError as exc:
            return False, f"Failed to write settings: {exc}"
        return True, f"Updated {self.settings_path} with hook configuration"

    def _clean_files(self, paths: tuple[str, ...]) -> tuple[bool, str]:
        removed = 0
        for path in paths:
            try:
                os.remove(path)
                removed += 1
            except OSError as exc:
                logger.warning("Failed to remove file", extra={"path": path, "error": str(exc)})
        return True, f"Removed {removed} file(s)"


__all__ = [
    "EXPECTED_HOOKS",
    "CheckResult",
    "CheckSeverity",
    "DiagnosticEngine",
    "DiagnosticReport",
    "ExpectedHook",
    "FixAction",
    "FixKind",
    "is_hook_present",
    "merge_hook_settings",
]
