"""Process liveness checks backed by the system ``ps`` command."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, MutableMapping, Protocol

logger = logging.getLogger(__name__)

START_TIME_EPSILON = 1.0
ORPHAN_PARENT_PID = 1
_LSTART_FORMAT = "%a %b %d %H:%M:%S %Y"


class LivenessQueryError(RuntimeError):
    """Raised when the process table cannot be queried in time."""


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """The subset of process table data needed for liveness decisions."""

    pid: int
    ppid: int
    start_time: float


class ProcessTable(Protocol):
    def lookup(self, pid: int) -> ProcessInfo | None:
        ...

    def commands_on_tty(self, tty: str) -> list[str]:
        ...


def _ps_environment() -> dict[str, str]:
    env = dict(os.environ)
    env["LC_ALL"] = "C"
    return env


def parse_lstart(value: str) -> float:
    """Convert ``ps -o lstart`` output (e.g. ``Mon Oct 19 16:20:01 2026``) to epoch seconds."""

    return datetime.strptime(" ".join(value.split()), _LSTART_FORMAT).timestamp()


class PsProcessTable:
    """Query the OS process table with ``ps``, bounded by a timeout."""

    def __init__(self, executable: Path | None = None, *, timeout: float = 2.0) -> None:
        self._executable = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            return Path(explicit)
        binary = shutil.which("ps")
        return Path(binary) if binary else Path("/bin/ps")

    @property
    def executable(self) -> Path:
        return self._executable

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                [str(self._executable), *args],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=_ps_environment(),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise LivenessQueryError(f"ps timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise LivenessQueryError(f"ps could not be executed: {exc}") from exc

    def lookup(self, pid: int) -> ProcessInfo | None:
        result = self._run("-o", "ppid=", "-o", "lstart=", "-p", str(pid))
        line = result.stdout.strip()
        if result.returncode != 0 or not line:
            return None
        ppid_text, _, lstart = line.partition(" ")
        try:
            return ProcessInfo(pid=pid, ppid=int(ppid_text), start_time=parse_lstart(lstart))
        except ValueError as exc:
            raise LivenessQueryError(f"Unrecognised ps output for pid {pid}: {line!r}") from exc

    def commands_on_tty(self, tty: str) -> list[str]:
        short = tty.removeprefix("/dev/")
        result = self._run("-t", short, "-o", "comm=")
        if result.returncode != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


class FakeProcessTable:
    """Test double that serves a fixed process table."""

    def __init__(
        self,
        processes: Iterable[ProcessInfo] | None = None,
        ttys: dict[str, list[str]] | None = None,
        *,
        fail: bool = False,
    ) -> None:
        self.processes = {info.pid: info for info in (processes or [])}
        self.ttys = dict(ttys or {})
        self.fail = fail
        self.queries: list[tuple[str, object]] = []

    def lookup(self, pid: int) -> ProcessInfo | None:
        self.queries.append(("pid", pid))
        if self.fail:
            raise LivenessQueryError("simulated timeout")
        return self.processes.get(pid)

    def commands_on_tty(self, tty: str) -> list[str]:
        self.queries.append(("tty", tty))
        if self.fail:
            raise LivenessQueryError("simulated timeout")
        return list(self.ttys.get(tty, []))


class LivenessChecker:
    """Decide whether the process behind a session still exists.

    The pid path compares the process start time with the one recorded on
    first sight, so a recycled pid reads as dead. Sessions without a pid
    fall back to scanning the tty for the agent executable. Query failures
    fail open: the session is reported alive.
    """

    def __init__(self, table: ProcessTable | None = None, *, agent_executable: str = "claude") -> None:
        self._table = table or PsProcessTable()
        self._agent_executable = agent_executable

    @property
    def table(self) -> ProcessTable:
        return self._table

    def is_alive(
        self,
        pid: int | None,
        tty: str | None,
        start_times: MutableMapping[int, float],
    ) -> bool:
        try:
            if pid is not None:
                return self._pid_alive(pid, start_times)
            return self._tty_alive(tty)
        except LivenessQueryError as exc:
            logger.warning(
                "Liveness query failed; assuming alive",
                extra={"pid": pid, "tty": tty, "error": str(exc)},
            )
            return True

    def _pid_alive(self, pid: int, start_times: MutableMapping[int, float]) -> bool:
        info = self._table.lookup(pid)
        if info is None:
            start_times.pop(pid, None)
            return False

        # Parent exited and the agent was reparented to init.
        if info.ppid == ORPHAN_PARENT_PID:
            start_times.pop(pid, None)
            return False

        cached = start_times.get(pid)
        if cached is None:
            start_times[pid] = info.start_time
        elif abs(info.start_time - cached) > START_TIME_EPSILON:
            start_times.pop(pid, None)
            return False
        return True

    def _tty_alive(self, tty: str | None) -> bool:
        if not tty:
            return False
        commands = self._table.commands_on_tty(tty)
        return any(self._agent_executable in command for command in commands)


__all__ = [
    "FakeProcessTable",
    "LivenessChecker",
    "LivenessQueryError",
    "ProcessInfo",
    "ProcessTable",
    "PsProcessTable",
    "parse_lstart",
]
