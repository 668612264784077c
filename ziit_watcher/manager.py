"""The heartbeat manager: one explicitly constructed core per process.

Ties the :class:`~ziit_watcher.heartbeat.HeartbeatBuilder` to the
:class:`~ziit_watcher.client.HeartbeatClient` and exposes the operations the
scheduler and the editor-event path call.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ziit_watcher.api import ZiitApi
from ziit_watcher.client import HeartbeatClient
from ziit_watcher.config import Config, CredentialStore
from ziit_watcher.heartbeat import Heartbeat, HeartbeatBuilder
from ziit_watcher.offline_queue import OfflineQueue

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["HeartbeatManager"]


class HeartbeatManager:
    """Build heartbeats from activity and route them to delivery.

    Attributes:
        builder (HeartbeatBuilder): Coarse activity gate and heartbeat factory.
        client (HeartbeatClient): Delivery engine owning the offline queue.
    """

    def __init__(self, builder: HeartbeatBuilder, client: HeartbeatClient) -> None:
        self.builder = builder
        self.client = client
        self.heartbeats_built = 0
        self._shut_down = False

    @classmethod
    def from_config(cls, config: Config, credentials: Optional[CredentialStore] = None) -> HeartbeatManager:
        """Construct the core from runtime settings and load the offline queue."""
        offline_queue = OfflineQueue(config.queue_path)
        offline_queue.load()
        client = HeartbeatClient(
            offline_queue,
            credentials or CredentialStore(),
            api=ZiitApi(timeout=config.request_timeout),
        )
        builder = HeartbeatBuilder(editor=config.editor, interval=config.heartbeat_interval)
        logger.info("HeartbeatManager initialized with %d queued heartbeats.", len(offline_queue))
        return cls(builder, client)

    @property
    def offline_queue(self) -> OfflineQueue:
        return self.client.offline_queue

    def _dispatch(self, heartbeat: Optional[Heartbeat]) -> bool:
        if heartbeat is None:
            return False
        self.heartbeats_built += 1
        self.client.send_heartbeat(heartbeat)
        return True

    def handle_editor_activity(
        self,
        file_path: Optional[str],
        language: Optional[str] = None,
        project: Optional[str] = None,
        branch: Optional[str] = None,
        force: bool = False,
        now: Optional[float] = None,
    ) -> bool:
        """Build and dispatch a heartbeat if the activity justifies one.

        Returns:
            bool: True if a heartbeat was dispatched.
        """
        heartbeat = self.builder.build(
            file=file_path,
            language=language,
            project=project,
            branch=branch,
            force=force,
            now=now,
        )
        if heartbeat is not None:
            logger.info("Sufficient activity, sending heartbeat for %s.", file_path)
        return self._dispatch(heartbeat)

    def idle_tick(self, now: Optional[float] = None) -> bool:
        """Emit a keep-alive heartbeat for the last active file if the interval passed."""
        return self._dispatch(self.builder.build_keepalive(now=now))

    def sync_tick(self) -> None:
        self.client.sync_tick()

    def summary_tick(self) -> None:
        self.client.refresh()

    def status(self) -> Dict[str, Any]:
        status = self.client.status()
        status["heartbeats_built"] = self.heartbeats_built
        return status

    def shutdown(self) -> None:
        """Stop delivery and write the offline queue to disk. No network flush."""
        if self._shut_down:
            return
        self._shut_down = True
        self.client.close()
        if self.offline_queue.persist():
            logger.info("Saved %d offline heartbeats on shutdown.", len(self.offline_queue))
        else:
            logger.warning("Failed to save offline heartbeats during shutdown.")

    def __repr__(self) -> str:
        return f"<HeartbeatManager builder={self.builder!r} client={self.client!r}>"
