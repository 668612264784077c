"""Workspace file system watcher using watchdog.

Responsibility:
    Turns file system writes inside a workspace into editor save events for
    the :class:`~ziit_watcher.activity.ActivityTracker`. It never reads or
    modifies the files it watches.

Design:
    - **Event-Driven**: Uses `watchdog` to react to created, modified and moved
      events instead of polling.
    - **Coalescing**: Editors often write a file several times per save (temp
      file, rename, metadata). A `DebounceTimer` collects the touched paths and
      reports each one once after the burst settles.
    - **Rate Limiting**: A token bucket caps the event rate so a large checkout
      or build cannot flood the heartbeat pipeline.
    - **Filtering**: Directories, VCS metadata, dependency/build folders and
      the offline queue file itself are ignored.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Optional, Union

from watchdog.events import FileMovedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from ziit_watcher.activity import ActivityTracker

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["DebounceTimer", "WorkspaceEventHandler", "WorkspaceWatcher"]

IGNORED_DIR_NAMES = frozenset({
    ".git", ".hg", ".svn", ".idea", ".vscode", ".ziit",
    "__pycache__", "node_modules", ".venv", "venv", ".mypy_cache", ".pytest_cache",
    "target", "dist", "build",
})
IGNORED_SUFFIXES = (".swp", ".swx", ".tmp", "~", ".pyc")


class DebounceTimer:
    """Reusable timer that fires once after the last schedule() call settles.

    Attributes:
        interval (float): The debounce interval in seconds.
        callback (Callable[[], None]): The function to call when the timer fires.
    """

    __slots__ = ("interval", "callback", "_condition", "_target_time", "_active", "_stopped", "_thread")

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self._condition = threading.Condition()
        self._target_time = 0.0
        self._active = False
        self._stopped = False
        self._thread: Optional[threading.Thread] = None

    def schedule(self) -> None:
        """Schedule or push back the timer."""
        with self._condition:
            if self._stopped:
                return
            self._target_time = time.monotonic() + self.interval
            if not self._active:
                self._active = True
                self._start_thread()
            else:
                self._condition.notify()

    def stop(self) -> None:
        with self._condition:
            self._stopped = True
            self._active = False
            self._condition.notify_all()

    def _start_thread(self) -> None:
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run, name="DebounceTimer", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        with self._condition:
            while self._active and not self._stopped:
                wait_time = self._target_time - time.monotonic()

                if wait_time <= 0:
                    self._active = False
                    self._condition.release()
                    try:
                        self.callback()
                    except Exception:
                        logger.error("Error in debounce callback", exc_info=True)
                    finally:
                        self._condition.acquire()
                    # Rescheduled during the callback
                    if self._active:
                        continue
                    break

                self._condition.wait(wait_time)
            self._thread = None

    def __repr__(self) -> str:
        return f"<DebounceTimer interval={self.interval} active={self._active}>"


class WorkspaceEventHandler(FileSystemEventHandler):
    """Collect file writes in a workspace and report them as saves.

    Args:
        root (Path): Workspace root.
        tracker (ActivityTracker): Receives one ``did_save`` per coalesced path.
        debounce_seconds (float): Coalescing window.
        ignore_paths (Iterable[Path]): Extra files to ignore (e.g. the offline queue).
    """

    def __init__(
        self,
        root: Path,
        tracker: ActivityTracker,
        debounce_seconds: float = 1.0,
        ignore_paths: Iterable[Union[str, Path]] = (),
    ) -> None:
        self.root = root.absolute()
        self.tracker = tracker
        self.debounce_seconds = debounce_seconds
        self.ignore_paths = {str(Path(p).absolute()) for p in ignore_paths}

        self._lock = threading.Lock()
        # Insertion-ordered so paths are reported in the order they were touched
        self._pending: Dict[str, None] = {}
        self._debounce_timer = DebounceTimer(debounce_seconds, self._on_debounce_fired)
        self._stopped = False

        # Token bucket: burst of 100, refill 10/s
        self._rate_limit_max = 100.0
        self._rate_limit_tokens = 100.0
        self._rate_limit_fill_rate = 10.0
        self._rate_limit_last_update = time.monotonic()
        self.dropped_events = 0
        self.events_detected = 0
        self.saves_reported = 0

    def is_ignored(self, file_path: str) -> bool:
        if file_path in self.ignore_paths or file_path.endswith(IGNORED_SUFFIXES):
            return True
        try:
            relative = Path(file_path).absolute().relative_to(self.root)
        except ValueError:
            return True
        return any(part in IGNORED_DIR_NAMES for part in relative.parts[:-1])

    def _take_token(self) -> bool:
        now = time.monotonic()
        elapsed = now - self._rate_limit_last_update
        self._rate_limit_last_update = now
        self._rate_limit_tokens = min(
            self._rate_limit_max,
            self._rate_limit_tokens + elapsed * self._rate_limit_fill_rate,
        )
        if self._rate_limit_tokens < 1.0:
            self.dropped_events += 1
            return False
        self._rate_limit_tokens -= 1.0
        return True

    def _process_event(self, event: FileSystemEvent) -> None:
        if self._stopped or event.is_directory:
            return

        file_path = event.dest_path if isinstance(event, FileMovedEvent) else event.src_path
        if isinstance(file_path, bytes):
            file_path = file_path.decode("utf-8", errors="replace")
        if self.is_ignored(file_path):
            return

        with self._lock:
            if not self._take_token():
                if self.dropped_events % 100 == 1:
                    logger.warning("Rate limit exceeded, dropping events. Total dropped: %d", self.dropped_events)
                return
            self.events_detected += 1
            self._pending[file_path] = None
        self._debounce_timer.schedule()

    def _on_debounce_fired(self) -> None:
        if self._stopped:
            return
        with self._lock:
            paths = list(self._pending)
            self._pending.clear()

        for path in paths:
            try:
                self.tracker.did_save(path)
                self.saves_reported += 1
            except Exception as e:
                logger.error("Failed to report save for %s: %s", path, e)

    def on_created(self, event: FileSystemEvent) -> None:
        self._process_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._process_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._process_event(event)

    def stop(self) -> None:
        self._stopped = True
        self._debounce_timer.stop()


class WorkspaceWatcher:
    """Own the watchdog observer for one workspace directory."""

    def __init__(
        self,
        path: Union[str, Path],
        tracker: ActivityTracker,
        debounce_seconds: float = 1.0,
        ignore_paths: Iterable[Union[str, Path]] = (),
    ) -> None:
        self.path = Path(path).absolute()
        self.handler = WorkspaceEventHandler(
            self.path, tracker, debounce_seconds=debounce_seconds, ignore_paths=ignore_paths
        )
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        """Start watching recursively.

        Raises:
            FileNotFoundError: If the workspace does not exist.
        """
        if not self.path.is_dir():
            raise FileNotFoundError(f"Path not found: {self.path}")
        self._observer = Observer()
        self._observer.schedule(self.handler, str(self.path), recursive=True)
        self._observer.start()
        logger.info("Watching workspace %s (%s)", self.path, type(self._observer).__name__)

    def stop(self) -> None:
        self.handler.stop()
        if self._observer is not None:
            try:
                if self._observer.is_alive():
                    self._observer.stop()
                    self._observer.join(timeout=5.0)
            except Exception as e:
                logger.error("Error stopping observer: %s", e)
            self._observer = None
        logger.info("Watcher stopped.")

    def __repr__(self) -> str:
        return f"<WorkspaceWatcher path={self.path}>"
