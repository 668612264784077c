"""Heartbeat delivery for the Ziit watcher.

:class:`HeartbeatClient` decides, for each heartbeat, whether to send it now
or park it in the :class:`~ziit_watcher.offline_queue.OfflineQueue`, and
periodically flushes the queue in one batch.

Delivery Policy:
    - Missing API key or base URL: queue, flag credentials as invalid.
    - Believed offline: queue without a network attempt.
    - Send failure: queue; a 401/invalid-key error flags credentials, any other
      error flags the client offline.
    - Batch failure: the batch goes back to the head of the queue in order.
    - Nothing is ever raised to the editor-facing caller; failures are logged.

Callers on the editor path use :meth:`HeartbeatClient.send_heartbeat`, which
only enqueues to a worker thread, so network I/O never blocks them.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from typing import Any, Dict, Optional, Tuple

from ziit_watcher.api import ApiError, DailySummary, ZiitApi
from ziit_watcher.config import CredentialStore
from ziit_watcher.heartbeat import Heartbeat
from ziit_watcher.offline_queue import OfflineQueue

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["ConnectivityState", "DeliveryOutcome", "HeartbeatClient"]

MIN_PROBE_DELAY = 30.0
MAX_PROBE_DELAY = 900.0


class DeliveryOutcome(enum.Enum):
    SENT = "sent"
    QUEUED_NO_CREDENTIALS = "queued_no_credentials"
    QUEUED_OFFLINE = "queued_offline"
    QUEUED_AUTH_FAILURE = "queued_auth_failure"
    QUEUED_ERROR = "queued_error"


class ConnectivityState:
    """Cached belief about server reachability and credential validity.

    Both flags start optimistic (True) and are flipped by delivery outcomes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._is_online = True
        self._has_valid_credentials = True

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._is_online

    @property
    def has_valid_credentials(self) -> bool:
        with self._lock:
            return self._has_valid_credentials

    def set_online(self, online: bool) -> None:
        with self._lock:
            changed = self._is_online != online
            self._is_online = online
        if changed:
            logger.info("Online status changed to: %s", "online" if online else "offline")

    def set_credentials_valid(self, valid: bool) -> None:
        with self._lock:
            changed = self._has_valid_credentials != valid
            self._has_valid_credentials = valid
        if changed:
            logger.info("API key status changed to: %s", "valid" if valid else "invalid")

    def __repr__(self) -> str:
        return f"<ConnectivityState online={self.is_online} credentials={self.has_valid_credentials}>"


class HeartbeatClient:
    """Deliver heartbeats to Ziit, buffering them offline when needed.

    Args:
        offline_queue (OfflineQueue): Durable buffer for undelivered heartbeats.
        credentials (CredentialStore): Source of the API key and base URL, re-read per attempt
            so credential changes apply without a restart.
        api (Optional[ZiitApi]): Transport. Defaults to a new :class:`ZiitApi`.
    """

    def __init__(
        self,
        offline_queue: OfflineQueue,
        credentials: CredentialStore,
        api: Optional[ZiitApi] = None,
    ) -> None:
        self.offline_queue = offline_queue
        self.credentials = credentials
        self.api = api or ZiitApi()
        self.state = ConnectivityState()
        self.last_summary: Optional[DailySummary] = None
        self._sync_lock = threading.Lock()
        # Orders handoffs against close() so none lands after the final drain
        self._handoff_lock = threading.Lock()
        self._closed = False
        self._probe_delay = MIN_PROBE_DELAY
        self._last_probe_time: Optional[float] = None

        self._queue: queue.Queue[Optional[Heartbeat]] = queue.Queue()
        self._worker_thread = threading.Thread(
            target=self._worker_loop,
            name="HeartbeatClientWorker",
            daemon=True,
        )
        self._worker_thread.start()

    def _read_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        """Return (api_key, base_url); an unreadable config counts as absent."""
        try:
            config = self.credentials.read()
        except (OSError, ValueError) as e:
            logger.warning("Could not read Ziit config: %s", e)
            return None, None
        return config.api_key, config.effective_base_url

    def _record_failure(self, error: ApiError) -> None:
        if error.is_auth_failure:
            self.state.set_credentials_valid(False)
        else:
            self.state.set_online(False)

    def _record_success(self) -> None:
        self.state.set_online(True)
        self.state.set_credentials_valid(True)

    def _enqueue(self, heartbeat: Heartbeat) -> None:
        # OfflineQueue logs persist failures itself; the heartbeat stays in memory
        self.offline_queue.append(heartbeat)

    def send_heartbeat(self, heartbeat: Heartbeat) -> None:
        """Hand a heartbeat to the background worker (non-blocking)."""
        with self._handoff_lock:
            if not self._closed:
                self._queue.put(heartbeat)
                return
        self._enqueue(heartbeat)

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    break
                self.process(item)
            except Exception as e:
                logger.error("Error in heartbeat worker: %s", e, exc_info=True)
            finally:
                self._queue.task_done()

    def process(self, heartbeat: Heartbeat) -> DeliveryOutcome:
        """Send one heartbeat now or queue it for later.

        Returns:
            DeliveryOutcome: What happened to the heartbeat.
        """
        api_key, base_url = self._read_credentials()
        if not api_key or not base_url:
            logger.warning("API key or base URL not set. Queuing heartbeat.")
            self._enqueue(heartbeat)
            self.state.set_credentials_valid(False)
            return DeliveryOutcome.QUEUED_NO_CREDENTIALS

        if not self.state.is_online:
            logger.info("Currently offline. Queuing heartbeat.")
            self._enqueue(heartbeat)
            return DeliveryOutcome.QUEUED_OFFLINE

        try:
            self.api.send_heartbeat(base_url, api_key, heartbeat)
        except ApiError as e:
            logger.error("Failed to send heartbeat: %s. Queuing offline.", e)
            self._record_failure(e)
            self._enqueue(heartbeat)
            if e.is_auth_failure:
                return DeliveryOutcome.QUEUED_AUTH_FAILURE
            return DeliveryOutcome.QUEUED_ERROR

        logger.info("Heartbeat sent successfully.")
        self._record_success()
        return DeliveryOutcome.SENT

    def sync(self) -> bool:
        """Deliver the whole offline queue in one batch.

        No-op while offline or when the queue is empty. On failure the batch is
        restored to the head of the queue in its original order.

        Returns:
            bool: True if a batch was delivered.
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("Sync already in progress, skipping.")
            return False
        try:
            if not self.state.is_online or self.offline_queue.is_empty():
                return False

            api_key, base_url = self._read_credentials()
            if not api_key or not base_url:
                logger.warning("Cannot sync offline heartbeats: API key or base URL not set.")
                self.state.set_credentials_valid(False)
                return False

            batch = self.offline_queue.begin_batch()
            if not batch:
                return False
            logger.info("Attempting to sync %d offline heartbeats.", len(batch))

            try:
                self.api.send_batch(base_url, api_key, batch)
            except ApiError as e:
                logger.error("Error syncing offline heartbeats: %s. Re-queuing.", e)
                self.offline_queue.rollback_batch()
                self._record_failure(e)
                return False

            self.offline_queue.commit_batch()
            self._record_success()
            logger.info("Successfully synced %d offline heartbeats.", len(batch))
        finally:
            self._sync_lock.release()

        self.refresh()
        return True

    def refresh(self) -> Optional[DailySummary]:
        """Fetch today's usage summary. Failures only update connectivity state."""
        api_key, base_url = self._read_credentials()
        if not api_key or not base_url:
            logger.warning("Cannot fetch daily summary: API key or base URL not set.")
            self.state.set_credentials_valid(False)
            return None

        try:
            summary = self.api.fetch_summary(base_url, api_key)
        except ApiError as e:
            logger.error("Error fetching daily summary: %s", e)
            self._record_failure(e)
            return None

        self._record_success()
        self.last_summary = summary
        if summary.today_seconds is not None:
            logger.info("Today's total coding time: %d seconds", summary.today_seconds)
        else:
            logger.info("No summary data for today.")
        return summary

    def probe(self, now: Optional[float] = None) -> bool:
        """Check whether an offline server is reachable again.

        Uses :meth:`refresh` as the probe, backing off exponentially between
        attempts while the server stays unreachable.

        Returns:
            bool: True if the client is online afterwards.
        """
        if self.state.is_online:
            self._probe_delay = MIN_PROBE_DELAY
            return True
        if now is None:
            now = time.monotonic()
        if self._last_probe_time is not None and now - self._last_probe_time < self._probe_delay:
            return False

        self._last_probe_time = now
        logger.debug("Probing server connectivity...")
        self.refresh()
        if self.state.is_online:
            self._probe_delay = MIN_PROBE_DELAY
            return True
        self._probe_delay = min(self._probe_delay * 2, MAX_PROBE_DELAY)
        return False

    def sync_tick(self) -> None:
        """Periodic flush: probe if offline, then sync."""
        if not self.state.is_online:
            self.probe()
        self.sync()

    def status(self) -> Dict[str, Any]:
        return {
            "online": self.state.is_online,
            "credentials_valid": self.state.has_valid_credentials,
            "queued": len(self.offline_queue),
            "today_seconds": self.last_summary.today_seconds if self.last_summary else None,
        }

    def close(self, timeout: float = 5.0) -> None:
        """Stop the worker and move any undelivered handoffs to the offline queue."""
        with self._handoff_lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)
        if self._worker_thread.is_alive():
            self._worker_thread.join(timeout=timeout)

        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                self._enqueue(item)
            self._queue.task_done()

        self.api.close()
        logger.info("Heartbeat client closed.")

    def __repr__(self) -> str:
        return f"<HeartbeatClient state={self.state!r} queued={len(self.offline_queue)}>"
