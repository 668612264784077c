"""Editor activity tracking and debouncing.

Editor notifications (open, change, save) enter through
:class:`ActivityTracker`. Change events are debounced per resource by
:class:`ActivityDebouncer`; saves always pass. Accepted events are converted
to filesystem paths, enriched with language/project/branch and handed to the
:class:`~ziit_watcher.manager.HeartbeatManager`.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Set
from urllib.parse import urlparse
from urllib.request import url2pathname

from ziit_watcher import detection

if TYPE_CHECKING:
    from ziit_watcher.manager import HeartbeatManager

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["ActivityState", "ActivityDebouncer", "ActivityTracker", "uri_to_path"]

DEBOUNCE_WINDOW_SECONDS = 120.0


@dataclass
class ActivityState:
    last_observed_resource: Optional[str] = None
    last_signal_time: Optional[float] = None
    last_signal_was_write: bool = False


class ActivityDebouncer:
    """Suppress repeated non-write events on the same resource.

    An event is suppressed only when the previous signal was for the same
    resource, neither event is a write, and less than ``window`` seconds have
    passed since the previous signal.
    """

    def __init__(self, window: float = DEBOUNCE_WINDOW_SECONDS) -> None:
        self.window = window
        self.state = ActivityState()
        self._lock = threading.Lock()

    def should_signal(self, resource_id: str, is_write: bool, now: Optional[float] = None) -> bool:
        """Return True if the event should produce an activity signal.

        Args:
            resource_id (str): Identifier of the resource (URI or path).
            is_write (bool): Whether the event is a write/save.
            now (Optional[float]): Monotonic event time. Defaults to ``time.monotonic()``.
        """
        if now is None:
            now = time.monotonic()

        with self._lock:
            state = self.state
            if (
                not is_write
                and not state.last_signal_was_write
                and state.last_observed_resource == resource_id
                and state.last_signal_time is not None
                and now - state.last_signal_time < self.window
            ):
                return False

            state.last_observed_resource = resource_id
            state.last_signal_time = now
            state.last_signal_was_write = is_write
            return True


def uri_to_path(uri: str) -> Optional[str]:
    """Convert a ``file://`` URI to a filesystem path.

    Other URIs and plain paths are returned unchanged. Returns None for a
    ``file://`` URI without a path.
    """
    if not uri.startswith("file://"):
        return uri
    try:
        parsed = urlparse(uri)
    except ValueError:
        return uri
    if not parsed.path:
        return None
    path = url2pathname(parsed.path)
    if parsed.netloc and parsed.netloc != "localhost":
        # UNC path, e.g. file://server/share/file.txt
        path = f"//{parsed.netloc}{path}"
    return path


class ActivityTracker:
    """Entry point for editor notifications.

    Args:
        manager (HeartbeatManager): Core that builds and delivers heartbeats.
        debouncer (Optional[ActivityDebouncer]): Debouncer to use. A new one is created if omitted.
        detect_metadata (bool): Whether to detect project and branch (runs git).
        language_detector (Callable): Fallback language detection when the editor gives no hint.
    """

    def __init__(
        self,
        manager: HeartbeatManager,
        debouncer: Optional[ActivityDebouncer] = None,
        detect_metadata: bool = True,
        language_detector: Callable[[Optional[str]], Optional[str]] = detection.detect_language,
    ) -> None:
        self.manager = manager
        self.debouncer = debouncer or ActivityDebouncer()
        self.detect_metadata = detect_metadata
        self.language_detector = language_detector
        self._lock = threading.Lock()
        self.opened: Set[str] = set()
        self.focused: Optional[str] = None
        self.events_received = 0
        self.events_debounced = 0

    def did_open(self, uri: str, language_id: Optional[str] = None) -> None:
        """Track an opened document. Opening alone does not count as activity."""
        with self._lock:
            self.opened.add(uri)
        logger.debug("File opened and tracked: %s", uri)

    def did_close(self, uri: str) -> None:
        with self._lock:
            self.opened.discard(uri)
            if self.focused == uri:
                self.focused = None

    def did_change(self, uri: str, language_id: Optional[str] = None) -> bool:
        with self._lock:
            was_just_opened = uri in self.opened
            self.opened.discard(uri)
            focus_changed = self.focused != uri
            self.focused = uri
        if was_just_opened or focus_changed:
            logger.info("File became focused (first edit): %s", uri)
        return self.handle_activity(uri, language_id, is_write=False)

    def did_save(self, uri: str, language_id: Optional[str] = None) -> bool:
        with self._lock:
            self.opened.discard(uri)
            self.focused = uri
        logger.info("File saved (focused): %s", uri)
        return self.handle_activity(uri, language_id, is_write=True)

    def handle_activity(
        self,
        uri: str,
        language_hint: Optional[str] = None,
        is_write: bool = False,
        now: Optional[float] = None,
    ) -> bool:
        """Debounce an editor event and forward it to the manager.

        Returns:
            bool: True if a heartbeat was produced.
        """
        with self._lock:
            self.events_received += 1

        if not self.debouncer.should_signal(uri, is_write, now):
            with self._lock:
                self.events_debounced += 1
            logger.debug("Debounced event for %s", uri)
            return False

        file_path = uri_to_path(uri)
        if not file_path:
            logger.error("Could not determine file path from URI for heartbeat: %s", uri)
            return False

        language = language_hint or self.language_detector(file_path)
        project = branch = None
        if self.detect_metadata:
            project = detection.detect_project(file_path)
            branch = detection.detect_branch(file_path)

        logger.debug("Handling activity for %s: write=%s", file_path, is_write)
        return self.manager.handle_editor_activity(
            file_path,
            language=language,
            project=project,
            branch=branch,
            force=is_write,
            now=now,
        )

    def __repr__(self) -> str:
        return f"<ActivityTracker focused={self.focused} opened={len(self.opened)}>"
