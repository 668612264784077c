"""Durable offline queue of heartbeats awaiting delivery.

The queue is an ordered buffer: heartbeats are appended at the tail, drained
from the head as a batch, and a failed batch is put back at the head in its
original order. Every mutation writes the full queue to disk as a single JSON
array so that the on-disk snapshot always matches memory.

A batch that is currently being delivered is tracked as "in flight". It is
still written to disk ahead of the pending heartbeats, so a crash during
delivery never loses it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections import deque
from pathlib import Path
from typing import Iterable, List, Union

from ziit_watcher.heartbeat import Heartbeat

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["OfflineQueue", "serialize_heartbeats", "deserialize_heartbeats", "default_queue_path"]

OFFLINE_QUEUE_FILE_NAME = "offline_heartbeats.json"


def default_queue_path() -> Path:
    """Return the per-user location of the offline queue file (``~/.ziit``)."""
    return Path.home() / ".ziit" / OFFLINE_QUEUE_FILE_NAME


def serialize_heartbeats(heartbeats: Iterable[Heartbeat]) -> str:
    return json.dumps([hb.to_dict() for hb in heartbeats], indent=2, ensure_ascii=False)


def deserialize_heartbeats(text: str) -> List[Heartbeat]:
    """Parse a JSON array of heartbeats.

    Raises:
        ValueError: If the text is not valid JSON or not an array of heartbeats.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of heartbeats, got {type(data).__name__}")
    return [Heartbeat.from_dict(item) for item in data]


class OfflineQueue:
    """Thread-safe, file-backed FIFO of heartbeats.

    Attributes:
        path (Path): Location of the JSON snapshot.
    """

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        self.path = Path(path) if path is not None else default_queue_path()
        self._lock = threading.Lock()
        self._items: deque[Heartbeat] = deque()
        self._in_flight: List[Heartbeat] = []

    def load(self) -> int:
        """Load the snapshot from disk, replacing the in-memory contents.

        A corrupt snapshot is removed and the queue starts empty.

        Returns:
            int: Number of heartbeats loaded.
        """
        if not self.path.exists():
            return 0

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            logger.error("Error reading offline heartbeats file %s: %s", self.path, e)
            return 0

        try:
            text = raw.decode("utf-8")
            heartbeats = deserialize_heartbeats(text) if text.strip() else []
        except ValueError as e:
            # Covers UnicodeDecodeError and json.JSONDecodeError
            logger.error("Error parsing offline heartbeats file: %s. Creating new queue.", e)
            try:
                self.path.unlink()
            except OSError as unlink_error:
                logger.warning("Could not remove corrupt queue file %s: %s", self.path, unlink_error)
            heartbeats = []

        with self._lock:
            self._items = deque(heartbeats)
            self._in_flight = []
        logger.info("Loaded %d offline heartbeats.", len(heartbeats))
        return len(heartbeats)

    def append(self, heartbeat: Heartbeat) -> None:
        """Add a heartbeat at the tail and persist."""
        with self._lock:
            self._items.append(heartbeat)
            size = len(self._items)
            self._persist_locked()
        logger.debug("Heartbeat added to offline queue. Size: %d", size)

    def begin_batch(self) -> List[Heartbeat]:
        """Move the entire queue into a single in-flight batch.

        Returns an empty list if the queue is empty or a batch is already in flight.
        """
        with self._lock:
            if self._in_flight or not self._items:
                return []
            self._in_flight = list(self._items)
            self._items.clear()
            return list(self._in_flight)

    def commit_batch(self) -> None:
        """Drop the in-flight batch after successful delivery and persist."""
        with self._lock:
            self._in_flight = []
            self._persist_locked()

    def rollback_batch(self) -> None:
        """Put the in-flight batch back at the head in original order and persist."""
        with self._lock:
            self._items.extendleft(reversed(self._in_flight))
            self._in_flight = []
            self._persist_locked()

    def persist(self) -> bool:
        """Write the current snapshot to disk. Failures are logged, not raised."""
        with self._lock:
            return self._persist_locked()

    def _persist_locked(self) -> bool:
        data = serialize_heartbeats(self._in_flight + list(self._items))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file then replace, so readers never see a partial file
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp_name, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
        except OSError as e:
            logger.error("Failed to save offline heartbeats to %s: %s", self.path, e)
            return False
        return True

    def snapshot(self) -> List[Heartbeat]:
        """Return pending heartbeats (in flight first) in delivery order."""
        with self._lock:
            return self._in_flight + list(self._items)

    def is_empty(self) -> bool:
        with self._lock:
            return not self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items) + len(self._in_flight)

    def __repr__(self) -> str:
        return f"<OfflineQueue path={self.path} size={len(self)}>"
