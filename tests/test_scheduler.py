"""Tests for periodic background tasks."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

from ziit_watcher.scheduler import PeriodicTask, Scheduler

if TYPE_CHECKING:
    from pytest import LogCaptureFixture


def test_periodic_task_runs_immediately_and_repeats() -> None:
    stop = threading.Event()
    calls = []
    task = PeriodicTask("t", 0.01, lambda: calls.append(1), stop)
    task.start()
    time.sleep(0.1)
    stop.set()
    assert task.join(timeout=1.0)
    assert len(calls) >= 2


def test_periodic_task_can_delay_first_run() -> None:
    stop = threading.Event()
    callback = MagicMock()
    task = PeriodicTask("t", 10.0, callback, stop, run_immediately=False)
    task.start()
    time.sleep(0.05)
    stop.set()
    assert task.join(timeout=1.0)
    callback.assert_not_called()


def test_periodic_task_survives_callback_errors(caplog: LogCaptureFixture) -> None:
    stop = threading.Event()
    callback = MagicMock(side_effect=RuntimeError("boom"))
    task = PeriodicTask("flaky", 0.01, callback, stop)
    task.start()
    time.sleep(0.1)
    stop.set()
    task.join(timeout=1.0)
    assert callback.call_count >= 2
    assert "Error in flaky task" in caplog.text


def test_stop_wakes_long_interval_immediately() -> None:
    stop = threading.Event()
    task = PeriodicTask("slow", 3600.0, MagicMock(), stop)
    task.start()
    time.sleep(0.02)
    start = time.monotonic()
    stop.set()
    assert task.join(timeout=1.0)
    assert time.monotonic() - start < 1.0
    assert not task.is_alive()


def test_scheduler_drives_manager_ticks_and_shuts_down() -> None:
    manager = MagicMock()
    scheduler = Scheduler(manager, heartbeat_interval=60.0, sync_interval=60.0, summary_interval=60.0)
    scheduler.start()
    assert scheduler.is_running
    deadline = time.monotonic() + 1.0
    while time.monotonic() < deadline and not (
        manager.idle_tick.called and manager.sync_tick.called and manager.summary_tick.called
    ):
        time.sleep(0.01)

    scheduler.stop(timeout=1.0)

    manager.idle_tick.assert_called_once()
    manager.sync_tick.assert_called_once()
    manager.summary_tick.assert_called_once()
    manager.shutdown.assert_called_once()
    assert not scheduler.is_running
    assert all(not task.is_alive() for task in scheduler.tasks)


def test_scheduler_warns_about_stuck_task(caplog: LogCaptureFixture) -> None:
    manager = MagicMock()
    release = threading.Event()
    manager.sync_tick.side_effect = lambda: release.wait(2.0)
    scheduler = Scheduler(manager)
    scheduler.start()
    time.sleep(0.05)

    with caplog.at_level(logging.WARNING):
        scheduler.stop(timeout=0.05)
    release.set()

    assert "Task sync did not stop" in caplog.text
    manager.shutdown.assert_called_once()
