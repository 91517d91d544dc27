"""Session registry: scans the monitor directory and publishes session views.

One refresh cycle reads every heartbeat, resolves its lifecycle record,
infers a status, prunes long-dead sessions, collapses duplicates that share
a process or terminal, and publishes the surviving views newest first.

Cycles are numbered. A cycle that finishes after a newer one has started is
discarded, so a slow scan can never overwrite fresher data.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Mapping, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..lifecycle.models import EMPTY_RECORD
from ..lifecycle.parser import lifecycle_path, read_lifecycle
from ..liveness import LivenessChecker, PsProcessTable
from ..parsing import Malformed, Parsed
from .inference import (
    DEFAULT_THRESHOLDS,
    SessionPhase,
    StatusThresholds,
    infer_status,
    session_phase,
    should_check_liveness,
)
from .models import SessionView, heartbeat_path, is_heartbeat_file, read_heartbeat

if TYPE_CHECKING:
    from ..config import MonitorSettings

logger = logging.getLogger(__name__)

Subscriber = Callable[[Sequence[SessionView]], None]


class MonitorDirectoryError(RuntimeError):
    """Raised when the shared monitor directory cannot be created or listed."""


@dataclass(slots=True)
class LoadResult:
    """Outcome of one scan, including the caches it updated."""

    sessions: list[SessionView]
    liveness_cache: dict[str, bool]
    start_times: dict[int, float]
    to_delete: list[Path] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)


def session_files(directory: Path, session_id: str, heartbeat_file: Path | None = None) -> list[Path]:
    """Files removed when a session is pruned.

    ``heartbeat_file`` is the file actually scanned, which may be named
    differently from the id it contains. Lock files stay behind since a late
    hook may still hold one.
    """

    return [
        heartbeat_file or heartbeat_path(directory, session_id),
        lifecycle_path(directory, session_id),
    ]


def deduplicate(views: Iterable[SessionView]) -> tuple[list[SessionView], list[SessionView]]:
    """Keep the newest session per pid and per tty.

    An agent restarted in the same process or terminal writes under a new
    session id while the old files linger; only the most recently updated
    one survives.
    """

    ordered = sorted(views, key=lambda view: view.heartbeat.last_updated, reverse=True)
    claimed_pids: set[int] = set()
    claimed_ttys: set[str] = set()
    kept: list[SessionView] = []
    duplicates: list[SessionView] = []

    for view in ordered:
        pid = view.heartbeat.pid
        tty = view.heartbeat.tty
        duplicate = False

        if pid is not None:
            if pid in claimed_pids:
                duplicate = True
            else:
                claimed_pids.add(pid)

        if not duplicate and tty:
            if tty in claimed_ttys:
                duplicate = True
            else:
                claimed_ttys.add(tty)

        (duplicates if duplicate else kept).append(view)

    return kept, duplicates


def load_sessions(
    directory: Path,
    *,
    now: float,
    checker: LivenessChecker,
    liveness_cache: Mapping[str, bool],
    start_times: Mapping[int, float],
    check_liveness: bool,
    thresholds: StatusThresholds = DEFAULT_THRESHOLDS,
) -> LoadResult:
    """Run one refresh cycle against ``directory``.

    Caches are taken by value and returned updated, so the function can be
    exercised in isolation.
    """

    result = LoadResult(
        sessions=[],
        liveness_cache=dict(liveness_cache),
        start_times=dict(start_times),
    )

    try:
        entries = sorted(Path(directory).iterdir())
    except OSError as exc:
        logger.warning("Monitor directory unreadable", extra={"directory": str(directory), "error": str(exc)})
        return result

    views: list[SessionView] = []
    seen: set[str] = set()
    for path in entries:
        if not is_heartbeat_file(path):
            continue

        parsed = read_heartbeat(path)
        if not isinstance(parsed, Parsed):
            if isinstance(parsed, Malformed):
                logger.debug("Skipping heartbeat", extra={"reason": parsed.reason})
            continue
        heartbeat = parsed.value
        session_id = heartbeat.session_id
        seen.add(session_id)
        heartbeat_age = now - heartbeat.last_updated

        process_alive = True
        if should_check_liveness(heartbeat_age, thresholds=thresholds):
            if check_liveness:
                process_alive = checker.is_alive(heartbeat.pid, heartbeat.tty, result.start_times)
                result.liveness_cache[session_id] = process_alive
            else:
                process_alive = result.liveness_cache.get(session_id, True)

        if session_phase(heartbeat_age, process_alive, thresholds=thresholds) is SessionPhase.PENDING_DELETE:
            result.pruned.append(session_id)
            result.to_delete.extend(session_files(directory, session_id, path))
            if heartbeat.pid is not None:
                result.start_times.pop(heartbeat.pid, None)
            continue

        lifecycle = EMPTY_RECORD
        lifecycle_age: float | None = None
        lifecycle_read = read_lifecycle(directory, session_id, now=now)
        if isinstance(lifecycle_read, Parsed):
            lifecycle, lifecycle_age = lifecycle_read.value
        elif isinstance(lifecycle_read, Malformed):
            logger.debug("Ignoring lifecycle file", extra={"reason": lifecycle_read.reason})

        status = infer_status(
            lifecycle.state,
            lifecycle_age,
            heartbeat_age,
            process_alive,
            lifecycle.has_active_subtasks,
            thresholds=thresholds,
        )
        views.append(
            SessionView(
                heartbeat=heartbeat,
                lifecycle=lifecycle,
                status=status,
                process_alive=process_alive,
                age=max(heartbeat_age, 0.0),
                source=path,
            )
        )

    kept, duplicates = deduplicate(views)
    for view in duplicates:
        result.duplicates.append(view.session_id)
        result.to_delete.extend(session_files(directory, view.session_id, view.source))

    # Forget sessions whose heartbeat files no longer exist.
    result.liveness_cache = {
        session_id: alive for session_id, alive in result.liveness_cache.items() if session_id in seen
    }
    result.sessions = kept
    return result


def remove_files(paths: Iterable[Path]) -> int:
    """Best-effort delete; failures are retried by the next cycle."""

    removed = 0
    for path in paths:
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Failed to delete session file", extra={"path": str(path), "error": str(exc)})
    return removed


class _MonitorDirHandler(FileSystemEventHandler):
    """Turns directory change notifications into refresh requests."""

    _RELEVANT_SUFFIXES = (".json", ".state")

    def __init__(self, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._on_change = on_change

    def _is_relevant(self, raw_path: str | bytes) -> bool:
        name = os.path.basename(os.fsdecode(raw_path))
        return name.endswith(self._RELEVANT_SUFFIXES)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        if any(path and self._is_relevant(path) for path in paths):
            self._on_change()


class SessionRegistry:
    """Owns the published session list and the loops that keep it fresh.

    A single worker thread performs refreshes. It wakes on the fast-tier
    interval or on any refresh request (filesystem events, manual
    triggers); requests arriving mid-cycle coalesce into one follow-up
    cycle. Every ``liveness_interval`` seconds a cycle also re-checks
    process liveness.
    """

    def __init__(
        self,
        settings: "MonitorSettings | None" = None,
        *,
        checker: LivenessChecker | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if settings is None:
            from ..config import get_settings

            settings = get_settings()
        self._settings = settings
        self._directory = Path(settings.monitor_dir)
        self._thresholds = settings.thresholds()
        self._refresh_interval = settings.refresh_interval
        self._liveness_interval = settings.liveness_interval
        self._checker = checker or LivenessChecker(
            PsProcessTable(timeout=settings.liveness_timeout),
            agent_executable=settings.agent_executable,
        )
        self._clock = clock or time.time

        self._lock = threading.Lock()
        self._sessions: tuple[SessionView, ...] = ()
        self._liveness_cache: dict[str, bool] = {}
        self._start_times: dict[int, float] = {}
        self._sequence = 0
        self._published_sequence = 0
        self._subscribers: list[Subscriber] = []

        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._pending_liveness = False
        self._last_liveness_check = float("-inf")
        self._worker: threading.Thread | None = None
        self._observer: Observer | None = None

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def thresholds(self) -> StatusThresholds:
        return self._thresholds

    @property
    def sessions(self) -> tuple[SessionView, ...]:
        with self._lock:
            return self._sessions

    @property
    def published_sequence(self) -> int:
        with self._lock:
            return self._published_sequence

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def get(self, session_id: str) -> SessionView | None:
        for view in self.sessions:
            if view.session_id == session_id:
                return view
        return None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with the new list whenever the published list changes."""

        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def ensure_directory(self) -> None:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with os.scandir(self._directory):
                pass
        except OSError as exc:
            raise MonitorDirectoryError(
                f"Monitor directory {self._directory} is not usable: {exc}"
            ) from exc

    def refresh_now(self, *, check_liveness: bool = False) -> bool:
        """Run one cycle on the calling thread. Returns whether it was published."""

        with self._lock:
            self._sequence += 1
            sequence = self._sequence
            liveness_cache = dict(self._liveness_cache)
            start_times = dict(self._start_times)

        result = load_sessions(
            self._directory,
            now=self._clock(),
            checker=self._checker,
            liveness_cache=liveness_cache,
            start_times=start_times,
            check_liveness=check_liveness,
            thresholds=self._thresholds,
        )
        return self._publish(sequence, result)

    def _publish(self, sequence: int, result: LoadResult) -> bool:
        published = tuple(result.sessions)
        with self._lock:
            if sequence != self._sequence:
                logger.debug(
                    "Discarding stale refresh",
                    extra={"sequence": sequence, "latest": self._sequence},
                )
                return False
            changed = published != self._sessions
            self._sessions = published
            self._liveness_cache = result.liveness_cache
            self._start_times = result.start_times
            self._published_sequence = sequence
            subscribers = list(self._subscribers)

        if result.pruned or result.duplicates:
            logger.info(
                "Removing stale sessions",
                extra={"pruned": result.pruned, "duplicates": result.duplicates},
            )
        remove_files(result.to_delete)

        if changed:
            for callback in subscribers:
                try:
                    callback(published)
                except Exception:  # subscriber bugs must not stop the refresh loop
                    logger.exception("Session subscriber failed")
        return True

    def request_refresh(self, *, check_liveness: bool = False) -> None:
        """Ask the worker for a cycle; concurrent requests coalesce."""

        with self._lock:
            self._pending_liveness = self._pending_liveness or check_liveness
        self._wake.set()

    def start(self) -> None:
        """Start the worker thread and the directory watcher."""

        if self.running:
            return
        self.ensure_directory()
        self._stopping.clear()
        self._pending_liveness = True
        self._wake.set()

        self._worker = threading.Thread(target=self._run, name="ccmon-refresh", daemon=True)
        self._worker.start()

        observer = Observer()
        try:
            observer.schedule(_MonitorDirHandler(self.request_refresh), str(self._directory), recursive=False)
            observer.start()
        except OSError as exc:
            logger.warning(
                "Directory watch unavailable; relying on polling",
                extra={"directory": str(self._directory), "error": str(exc)},
            )
        else:
            self._observer = observer

        logger.info(
            "Session registry started",
            extra={
                "directory": str(self._directory),
                "refresh_interval": self._refresh_interval,
                "liveness_interval": self._liveness_interval,
            },
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stopping.set()
        self._wake.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
            self._observer = None
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._wake.wait(self._refresh_interval)
            if self._stopping.is_set():
                break
            with self._lock:
                self._wake.clear()
                requested_liveness = self._pending_liveness
                self._pending_liveness = False

            now = time.monotonic()
            check_liveness = requested_liveness or now - self._last_liveness_check >= self._liveness_interval
            if check_liveness:
                self._last_liveness_check = now

            try:
                self.refresh_now(check_liveness=check_liveness)
            except Exception:  # keep the loop alive on unexpected failures
                logger.exception("Refresh cycle failed")


__all__ = [
    "LoadResult",
    "MonitorDirectoryError",
    "SessionRegistry",
    "deduplicate",
    "load_sessions",
    "remove_files",
    "session_files",
]
