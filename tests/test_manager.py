"""Tests for the HeartbeatManager core."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import MagicMock, patch

import pytest

from ziit_watcher.config import Config, CredentialStore
from ziit_watcher.heartbeat import Heartbeat, HeartbeatBuilder
from ziit_watcher.manager import HeartbeatManager


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.status.return_value = {"online": True, "credentials_valid": True, "queued": 0, "today_seconds": None}
    return client


@pytest.fixture
def manager(client: MagicMock) -> HeartbeatManager:
    return HeartbeatManager(HeartbeatBuilder(interval=120.0, os_name="linux"), client)


def test_activity_is_dispatched_when_justified(manager: HeartbeatManager, client: MagicMock) -> None:
    assert manager.handle_editor_activity("/p/a.rs", language="Rust", now=0.0)
    hb = client.send_heartbeat.call_args[0][0]
    assert isinstance(hb, Heartbeat)
    assert hb.file == "/p/a.rs"
    assert manager.heartbeats_built == 1


def test_activity_within_interval_is_dropped(manager: HeartbeatManager, client: MagicMock) -> None:
    manager.handle_editor_activity("/p/a.rs", now=0.0)
    assert not manager.handle_editor_activity("/p/a.rs", now=30.0)
    assert client.send_heartbeat.call_count == 1


def test_forced_activity_is_dispatched(manager: HeartbeatManager, client: MagicMock) -> None:
    manager.handle_editor_activity("/p/a.rs", now=0.0)
    assert manager.handle_editor_activity("/p/a.rs", force=True, now=1.0)
    assert client.send_heartbeat.call_count == 2


def test_idle_tick_without_activity_does_nothing(manager: HeartbeatManager, client: MagicMock) -> None:
    assert not manager.idle_tick(now=1000.0)
    client.send_heartbeat.assert_not_called()


def test_idle_tick_sends_keepalive_after_interval(manager: HeartbeatManager, client: MagicMock) -> None:
    manager.handle_editor_activity("/p/a.rs", project="proj", now=0.0)
    assert not manager.idle_tick(now=60.0)
    assert manager.idle_tick(now=121.0)
    keepalive = client.send_heartbeat.call_args[0][0]
    assert keepalive.file == "/p/a.rs"
    assert keepalive.project == "proj"


def test_ticks_delegate_to_client(manager: HeartbeatManager, client: MagicMock) -> None:
    manager.sync_tick()
    manager.summary_tick()
    client.sync_tick.assert_called_once()
    client.refresh.assert_called_once()


def test_status_includes_built_count(manager: HeartbeatManager) -> None:
    manager.handle_editor_activity("/p/a.rs", now=0.0)
    assert manager.status()["heartbeats_built"] == 1


def test_shutdown_closes_and_persists_once(manager: HeartbeatManager, client: MagicMock) -> None:
    client.offline_queue.persist.return_value = True
    manager.shutdown()
    manager.shutdown()
    client.close.assert_called_once()
    client.offline_queue.persist.assert_called_once()


@pytest.fixture
def real_manager(
    mock_config: Config, credential_store: CredentialStore, mock_api: MagicMock
) -> Generator[HeartbeatManager, None, None]:
    with patch("ziit_watcher.manager.ZiitApi", return_value=mock_api):
        manager = HeartbeatManager.from_config(mock_config, credential_store)
    yield manager
    manager.shutdown()


def test_from_config_wires_components(real_manager: HeartbeatManager, mock_config: Config) -> None:
    assert real_manager.builder.editor == "Zed"
    assert real_manager.builder.interval == 120.0
    assert str(real_manager.offline_queue.path) == mock_config.queue_path


def test_from_config_loads_existing_queue(
    mock_config: Config, credential_store: CredentialStore, mock_api: MagicMock, make_heartbeat: Callable[..., Heartbeat]
) -> None:
    Path(mock_config.queue_path).write_text(
        json.dumps([make_heartbeat(seq=1).to_dict(), make_heartbeat(seq=2).to_dict()]), encoding="utf-8"
    )
    with patch("ziit_watcher.manager.ZiitApi", return_value=mock_api):
        manager = HeartbeatManager.from_config(mock_config, credential_store)
    try:
        assert len(manager.offline_queue) == 2
    finally:
        manager.shutdown()


def test_offline_activity_survives_restart(
    mock_config: Config, credential_store: CredentialStore, mock_api: MagicMock
) -> None:
    """Heartbeats queued while offline are on disk after shutdown and reload on start."""
    with patch("ziit_watcher.manager.ZiitApi", return_value=mock_api):
        manager = HeartbeatManager.from_config(mock_config, credential_store)
    manager.client.state.set_online(False)
    manager.client.process(manager.builder.build(file="/p/a.rs", now=0.0))
    manager.client.process(manager.builder.build(file="/p/b.rs", now=1.0))
    manager.shutdown()

    with patch("ziit_watcher.manager.ZiitApi", return_value=mock_api):
        restarted = HeartbeatManager.from_config(mock_config, credential_store)
    try:
        assert [hb.file for hb in restarted.offline_queue.snapshot()] == ["/p/a.rs", "/p/b.rs"]
    finally:
        restarted.shutdown()
    mock_api.send_heartbeat.assert_not_called()
