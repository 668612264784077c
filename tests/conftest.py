import os
from pathlib import Path
from typing import Callable, Generator, Optional
from unittest.mock import MagicMock, patch
import tempfile

import pytest

from watchdog.events import FileSystemEvent

from ziit_watcher.api import DailySummary, SummaryEntry, ZiitApi
from ziit_watcher.client import HeartbeatClient
from ziit_watcher.config import Config, CredentialStore, ZiitConfig
from ziit_watcher.heartbeat import Heartbeat
from ziit_watcher.offline_queue import OfflineQueue


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Fixture for a temporary directory using tempfile.TemporaryDirectory.

    Ensures automatic cleanup after test execution.
    """
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname)


@pytest.fixture(autouse=True)
def isolated_config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every test away from the real ~/.config/ziit and ~/.ziit."""
    config_home = tmp_path / "xdg_config"
    config_home.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for var in list(os.environ):
        if var.startswith("ZIIT_"):
            monkeypatch.delenv(var, raising=False)
    return config_home


@pytest.fixture
def make_heartbeat() -> Callable[..., Heartbeat]:
    """Factory for heartbeats with fixed, distinguishable timestamps."""
    def _make(file: Optional[str] = "/work/proj/src/main.rs", seq: int = 0, **kwargs: Optional[str]) -> Heartbeat:
        return Heartbeat(
            timestamp=f"2024-01-01T00:00:{seq:02d}+00:00",
            editor=kwargs.pop("editor", "Zed") or "Zed",
            os=kwargs.pop("os", "linux") or "linux",
            file=file,
            **kwargs,
        )
    return _make


@pytest.fixture
def credential_store(temp_dir: Path) -> CredentialStore:
    """Credential store holding a valid key."""
    store = CredentialStore(path=temp_dir / "ziit" / "config.json", legacy_path=temp_dir / ".ziit.json")
    store.write(ZiitConfig(api_key="test-key-123456789", base_url="https://ziit.test"))
    return store


@pytest.fixture
def empty_credential_store(temp_dir: Path) -> CredentialStore:
    return CredentialStore(path=temp_dir / "ziit" / "config.json", legacy_path=temp_dir / ".ziit.json")


@pytest.fixture
def offline_queue(temp_dir: Path) -> OfflineQueue:
    return OfflineQueue(temp_dir / "queue" / "offline_heartbeats.json")


@pytest.fixture
def mock_api() -> MagicMock:
    api = MagicMock(spec=ZiitApi)
    api.fetch_summary.return_value = DailySummary(
        summaries=[SummaryEntry(date="2024-01-01", total_seconds=3720)], timezone="UTC"
    )
    return api


@pytest.fixture
def heartbeat_client(
    offline_queue: OfflineQueue, credential_store: CredentialStore, mock_api: MagicMock
) -> Generator[HeartbeatClient, None, None]:
    client = HeartbeatClient(offline_queue, credential_store, api=mock_api)
    yield client
    client.close(timeout=1.0)


@pytest.fixture
def mock_config(temp_dir: Path) -> Config:
    """Fixture for a default Config object."""
    return Config(
        watch_path=str(temp_dir),
        log_file=None,
        log_level="INFO",
        editor="Zed",
        queue_path=str(temp_dir / "queue.json"),
        heartbeat_interval=120.0,
        sync_interval=30.0,
        summary_interval=900.0,
        request_timeout=10.0,
        debounce_seconds=1.0,
    )


@pytest.fixture
def mock_filesystem_event() -> MagicMock:
    """Fixture for a generic watchdog FileSystemEvent."""
    event = MagicMock(spec=FileSystemEvent)
    event.is_directory = False
    event.src_path = "/tmp/test/src/main.py"
    event.event_type = "modified"
    return event


@pytest.fixture
def mock_observer() -> Generator[MagicMock, None, None]:
    """Fixture for mocking the watchdog Observer."""
    with patch("ziit_watcher.watcher.Observer") as mock:
        yield mock


@pytest.fixture
def mock_signal() -> Generator[MagicMock, None, None]:
    """Fixture for mocking signal.signal."""
    with patch("signal.signal") as mock:
        yield mock
