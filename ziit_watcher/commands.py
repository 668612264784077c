"""User-facing commands: credential updates, dashboard link and status.

Each command returns a :class:`CommandResult` instead of raising, so the CLI
(or any other front end) can report the outcome directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ziit_watcher.config import CredentialStore

if TYPE_CHECKING:
    from ziit_watcher.manager import HeartbeatManager

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["CommandResult", "set_api_key", "set_base_url", "dashboard_url", "status"]


@dataclass
class CommandResult:
    success: bool
    message: str


def set_api_key(store: CredentialStore, api_key: str) -> CommandResult:
    """Store a new API key, keeping the base URL."""
    api_key = (api_key or "").strip()
    if not api_key:
        return CommandResult(False, "Failed to set API key: API key must not be empty")
    try:
        config = store.read()
        config.api_key = api_key
        store.write(config)
    except (OSError, ValueError) as e:
        logger.error("Failed to set API key: %s", e)
        return CommandResult(False, f"Failed to set API key: {e}")
    return CommandResult(True, "API key updated successfully")


def set_base_url(store: CredentialStore, base_url: str) -> CommandResult:
    """Store a new server base URL, keeping the API key."""
    base_url = (base_url or "").strip()
    if not base_url.startswith(("http://", "https://")):
        return CommandResult(False, f"Failed to set base URL: not an http(s) URL: {base_url!r}")
    try:
        config = store.read()
        config.base_url = base_url
        store.write(config)
    except (OSError, ValueError) as e:
        logger.error("Failed to set base URL: %s", e)
        return CommandResult(False, f"Failed to set base URL: {e}")
    return CommandResult(True, "Base URL updated successfully")


def dashboard_url(store: CredentialStore) -> CommandResult:
    try:
        config = store.read()
    except (OSError, ValueError) as e:
        return CommandResult(False, f"Failed to get dashboard URL: {e}")
    return CommandResult(True, f"{config.effective_base_url.rstrip('/')}/dashboard")


def status(store: CredentialStore, manager: Optional[HeartbeatManager] = None) -> CommandResult:
    """Describe the stored configuration and, if a manager is given, delivery health."""
    try:
        config = store.read()
    except (OSError, ValueError) as e:
        return CommandResult(False, f"Failed to get status: {e}")

    lines = [
        f"Config: {store.path}",
        f"API Key: {'Set' if config.api_key else 'Not Set'}",
        f"Base URL: {config.effective_base_url}",
    ]
    if manager is not None:
        info = manager.status()
        lines.append(f"Connection: {'Online' if info['online'] else 'Offline'}")
        lines.append(f"API Key Status: {'Valid' if info['credentials_valid'] else 'Invalid'}")
        lines.append(f"Queued Heartbeats: {info['queued']}")
        if info["today_seconds"] is not None:
            hours, remainder = divmod(int(info["today_seconds"]), 3600)
            lines.append(f"Today: {hours}h {remainder // 60}m")
    return CommandResult(True, "\n".join(lines))
