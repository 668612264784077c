"""Periodic background tasks.

The :class:`Scheduler` owns three independent loops that share one
:class:`~ziit_watcher.manager.HeartbeatManager`:

* idle tick (default 120s): keep-alive heartbeat for continuous activity,
* sync tick (default 30s): flush the offline queue,
* summary tick (default 900s): refresh today's usage summary.

Each loop runs once immediately, then waits on a shared stop event, so
:meth:`Scheduler.stop` cancels every loop at its next wait point.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ziit_watcher.manager import HeartbeatManager

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["PeriodicTask", "Scheduler"]


class PeriodicTask:
    """Run a callback every ``interval`` seconds on a daemon thread until stopped.

    Exceptions from the callback are logged and the loop continues.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], None],
        stop_event: threading.Event,
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval = interval
        self.callback = callback
        self.run_immediately = run_immediately
        self._stop_event = stop_event
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name=f"Scheduler-{self.name}", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        if not self.run_immediately and self._stop_event.wait(self.interval):
            return
        while not self._stop_event.is_set():
            try:
                self.callback()
            except Exception as e:
                logger.error("Error in %s task: %s", self.name, e, exc_info=True)
            self.runs += 1
            if self._stop_event.wait(self.interval):
                break

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop to exit. Returns False if it is still running."""
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __repr__(self) -> str:
        return f"<PeriodicTask {self.name} interval={self.interval} alive={self.is_alive()}>"


class Scheduler:
    """Drive the idle, sync and summary loops for one manager."""

    def __init__(
        self,
        manager: HeartbeatManager,
        heartbeat_interval: float = 120.0,
        sync_interval: float = 30.0,
        summary_interval: float = 900.0,
    ) -> None:
        self.manager = manager
        self._stop_event = threading.Event()
        self.tasks: List[PeriodicTask] = [
            PeriodicTask("idle", heartbeat_interval, manager.idle_tick, self._stop_event),
            PeriodicTask("sync", sync_interval, manager.sync_tick, self._stop_event),
            PeriodicTask("summary", summary_interval, manager.summary_tick, self._stop_event),
        ]
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for task in self.tasks:
            task.start()
        logger.info("Background tasks started.")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel all loops, then persist the offline queue."""
        self._stop_event.set()
        for task in self.tasks:
            if not task.join(timeout=timeout):
                # Stuck in a network call; the daemon thread dies with the process
                logger.warning("Task %s did not stop within %.1fs.", task.name, timeout)
        self.manager.shutdown()
        logger.info("Background tasks stopped.")

    @property
    def is_running(self) -> bool:
        return self._started and not self._stop_event.is_set()

    def __repr__(self) -> str:
        return f"<Scheduler running={self.is_running} tasks={self.tasks!r}>"
