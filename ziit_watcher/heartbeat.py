"""Heartbeat records and the activity gate that decides when to build them.

A heartbeat is an immutable, timestamped record of editing activity. The
:class:`HeartbeatBuilder` owns the coarse "has enough changed?" gate: a new
heartbeat is built when the file differs from the last reported one, when the
heartbeat interval has elapsed, or when the caller forces it.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["Heartbeat", "HeartbeatBuilder", "HEARTBEAT_INTERVAL_SECONDS", "DEFAULT_EDITOR"]

HEARTBEAT_INTERVAL_SECONDS = 120.0
DEFAULT_EDITOR = "Zed"

# Wire/storage field order
HEARTBEAT_FIELDS = ("timestamp", "project", "language", "file", "branch", "editor", "os")
_OPTIONAL_FIELDS = ("project", "language", "file", "branch")


def current_os() -> str:
    """Return the operating system name reported in heartbeats."""
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform in ("win32", "cygwin"):
        return "windows"
    return sys.platform


@dataclass(frozen=True)
class Heartbeat:
    """A single record of editing activity.

    Attributes:
        timestamp (str): RFC 3339 creation time (UTC).
        editor (str): Name of the editor the activity came from.
        os (str): Operating system name.
        project (Optional[str]): Project name, if detected.
        language (Optional[str]): Language name, if detected.
        file (Optional[str]): Filesystem path of the edited file.
        branch (Optional[str]): VCS branch, if detected.
    """

    timestamp: str
    editor: str
    os: str
    project: Optional[str] = None
    language: Optional[str] = None
    file: Optional[str] = None
    branch: Optional[str] = None

    @classmethod
    def create(
        cls,
        file: Optional[str] = None,
        language: Optional[str] = None,
        project: Optional[str] = None,
        branch: Optional[str] = None,
        editor: str = DEFAULT_EDITOR,
        os_name: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Heartbeat:
        """Create a heartbeat stamped with the current UTC time."""
        ts = timestamp or datetime.now(timezone.utc)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return cls(
            timestamp=ts.isoformat(),
            editor=editor,
            os=os_name or current_os(),
            project=project,
            language=language,
            file=file,
            branch=branch,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in HEARTBEAT_FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Heartbeat:
        """Build a heartbeat from its stored/wire representation.

        Raises:
            ValueError: If a required field is missing or a field has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Heartbeat must be an object, got {type(data).__name__}")

        for key in ("timestamp", "editor", "os"):
            if not isinstance(data.get(key), str):
                raise ValueError(f"Heartbeat field '{key}' must be a string")

        optional: Dict[str, Optional[str]] = {}
        for key in _OPTIONAL_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"Heartbeat field '{key}' must be a string or null")
            optional[key] = value

        return cls(timestamp=data["timestamp"], editor=data["editor"], os=data["os"], **optional)


class HeartbeatBuilder:
    """Decide whether activity justifies a heartbeat and build it.

    Tracks the last reported file and the monotonic time of the last heartbeat.
    All state is guarded by a single lock so concurrent callers see each
    decision atomically.
    """

    def __init__(
        self,
        editor: str = DEFAULT_EDITOR,
        interval: float = HEARTBEAT_INTERVAL_SECONDS,
        os_name: Optional[str] = None,
    ) -> None:
        self.editor = editor
        self.interval = interval
        self.os_name = os_name or current_os()
        self._lock = threading.Lock()
        self.last_file: Optional[str] = None
        self.last_heartbeat_time: Optional[float] = None
        # Context of the last reported heartbeat, reused by keep-alives
        self._last_context: Optional[Dict[str, Optional[str]]] = None

    def _is_justified(self, file: Optional[str], now: float, force: bool) -> bool:
        file_changed = file is not None and file != self.last_file
        interval_passed = (
            self.last_heartbeat_time is None
            or now - self.last_heartbeat_time >= self.interval
        )
        return force or file_changed or interval_passed

    def build(
        self,
        file: Optional[str] = None,
        language: Optional[str] = None,
        project: Optional[str] = None,
        branch: Optional[str] = None,
        force: bool = False,
        now: Optional[float] = None,
    ) -> Optional[Heartbeat]:
        """Return a new heartbeat if the activity justifies one, else None.

        Args:
            file (Optional[str]): Filesystem path of the active file.
            language (Optional[str]): Language name.
            project (Optional[str]): Project name.
            branch (Optional[str]): Branch name.
            force (bool): Build regardless of file/time (e.g. on save).
            now (Optional[float]): Monotonic time of the activity. Defaults to ``time.monotonic()``.

        Returns:
            Optional[Heartbeat]: The heartbeat, or None when suppressed.
        """
        if now is None:
            now = time.monotonic()

        with self._lock:
            if not self._is_justified(file, now, force):
                logger.debug("Skipping heartbeat: not enough activity or time passed.")
                return None

            heartbeat = Heartbeat.create(
                file=file,
                language=language,
                project=project,
                branch=branch,
                editor=self.editor,
                os_name=self.os_name,
            )
            self.last_heartbeat_time = now
            self.last_file = file
            self._last_context = {
                "file": file,
                "language": language,
                "project": project,
                "branch": branch,
            }

        logger.debug("Built heartbeat for %s (force=%s)", file, force)
        return heartbeat

    def build_keepalive(self, now: Optional[float] = None) -> Optional[Heartbeat]:
        """Re-emit the last reported context once the heartbeat interval has elapsed.

        Returns None if nothing has been reported yet or the interval has not passed.
        """
        with self._lock:
            context = self._last_context
        if context is None:
            logger.debug("No activity recorded yet, skipping keep-alive heartbeat.")
            return None
        # file equals last_file here, so only the interval can justify it
        return self.build(force=False, now=now, **context)

    def __repr__(self) -> str:
        return f"<HeartbeatBuilder editor={self.editor} interval={self.interval}>"
