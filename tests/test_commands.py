"""Tests for the user-facing commands."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from ziit_watcher import commands
from ziit_watcher.config import CredentialStore


def test_set_api_key_keeps_base_url(credential_store: CredentialStore) -> None:
    result = commands.set_api_key(credential_store, "  new-key  ")
    assert result.success
    assert result.message == "API key updated successfully"
    stored = credential_store.read()
    assert stored.api_key == "new-key"
    assert stored.base_url == "https://ziit.test"


def test_set_api_key_creates_config(empty_credential_store: CredentialStore) -> None:
    assert commands.set_api_key(empty_credential_store, "abc").success
    assert empty_credential_store.read().api_key == "abc"


def test_set_api_key_twice_leaves_same_file(credential_store: CredentialStore) -> None:
    assert commands.set_api_key(credential_store, "same-key").success
    first = credential_store.path.read_bytes()
    assert commands.set_api_key(credential_store, "same-key").success
    assert credential_store.path.read_bytes() == first


def test_set_api_key_rejects_empty(empty_credential_store: CredentialStore) -> None:
    result = commands.set_api_key(empty_credential_store, "   ")
    assert not result.success
    assert not empty_credential_store.path.exists()


def test_set_api_key_reports_write_failure(credential_store: CredentialStore) -> None:
    with patch.object(credential_store, "write", side_effect=OSError("read-only")):
        result = commands.set_api_key(credential_store, "abc")
    assert not result.success
    assert "read-only" in result.message


def test_set_base_url(credential_store: CredentialStore) -> None:
    result = commands.set_base_url(credential_store, "http://localhost:3000")
    assert result.success
    assert result.message == "Base URL updated successfully"
    stored = credential_store.read()
    assert stored.base_url == "http://localhost:3000"
    assert stored.api_key == "test-key-123456789"


@pytest.mark.parametrize("url", ["", "ziit.app", "ftp://ziit.app"])
def test_set_base_url_rejects_non_http(credential_store: CredentialStore, url: str) -> None:
    assert not commands.set_base_url(credential_store, url).success
    assert credential_store.read().base_url == "https://ziit.test"


def test_dashboard_url(credential_store: CredentialStore) -> None:
    commands.set_base_url(credential_store, "https://self.host/")
    assert commands.dashboard_url(credential_store).message == "https://self.host/dashboard"


def test_dashboard_url_default(empty_credential_store: CredentialStore) -> None:
    assert commands.dashboard_url(empty_credential_store).message == "https://ziit.app/dashboard"


def test_status_without_key(empty_credential_store: CredentialStore) -> None:
    result = commands.status(empty_credential_store)
    assert result.success
    assert "API Key: Not Set" in result.message
    assert "Base URL: https://ziit.app" in result.message
    assert str(empty_credential_store.path) in result.message


def test_status_with_manager(credential_store: CredentialStore) -> None:
    manager = MagicMock()
    manager.status.return_value = {
        "online": False,
        "credentials_valid": True,
        "queued": 4,
        "today_seconds": 3720,
    }
    message = commands.status(credential_store, manager).message
    assert "API Key: Set" in message
    assert "Connection: Offline" in message
    assert "API Key Status: Valid" in message
    assert "Queued Heartbeats: 4" in message
    assert "Today: 1h 2m" in message


def test_status_corrupt_config(empty_credential_store: CredentialStore) -> None:
    empty_credential_store.path.parent.mkdir(parents=True)
    empty_credential_store.path.write_text("[", encoding="utf-8")
    assert not commands.status(empty_credential_store).success
