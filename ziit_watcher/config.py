"""Configuration management for ziit-watcher.

Two kinds of configuration live here:

* Runtime settings (:class:`Config`), aggregated by :func:`load_config` from
  defaults, a TOML settings file, environment variables and CLI arguments.
* Ziit credentials (:class:`ZiitConfig`), the API key and server URL shared
  with other Ziit integrations, stored as JSON by :class:`CredentialStore`.

Priority Order (runtime settings):
    1. CLI Arguments
    2. Environment Variables
    3. Settings File (``ziit-watcher.toml``, table ``[ziit-watcher]``)
    4. Defaults

Supported Environment Variables:
    * ``ZIIT_WATCH_PATH``: Workspace directory to watch.
    * ``ZIIT_LOG_FILE``: Path to the log file.
    * ``ZIIT_LOG_LEVEL``: Logging level.
    * ``ZIIT_EDITOR``: Editor name reported in heartbeats.
    * ``ZIIT_QUEUE_PATH``: Location of the offline queue file.
    * ``ZIIT_HEARTBEAT_INTERVAL``: Seconds between keep-alive heartbeats.
    * ``ZIIT_SYNC_INTERVAL``: Seconds between offline queue flushes.
    * ``ZIIT_SUMMARY_INTERVAL``: Seconds between summary refreshes.
    * ``ZIIT_REQUEST_TIMEOUT``: Per-request HTTP timeout.
    * ``ZIIT_DEBOUNCE_SECONDS``: Coalescing window for filesystem events.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import tomli

from ziit_watcher.api import DEFAULT_BASE_URL
from ziit_watcher.heartbeat import DEFAULT_EDITOR

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = ["Config", "load_config", "ZiitConfig", "CredentialStore", "get_config_dir"]

SETTINGS_FILE_NAME = "ziit-watcher.toml"
SETTINGS_TABLE = "ziit-watcher"
CONFIG_FILE_NAME = "config.json"
LEGACY_CONFIG_FILE_NAME = ".ziit.json"


@dataclass
class Config:
    """Define the runtime settings of the watcher.

    Attributes:
        watch_path (str): Absolute path of the workspace directory to watch.
        log_file (Optional[str]): Absolute path to the log file. Defaults to None.
        log_level (str): Logging level. Defaults to "INFO".
        editor (str): Editor name sent with each heartbeat. Defaults to "Zed".
        queue_path (Optional[str]): Offline queue file. Defaults to ``~/.ziit/offline_heartbeats.json``.
        heartbeat_interval (float): Keep-alive heartbeat period and coarse gate interval. Defaults to 120.
        sync_interval (float): Offline queue flush period. Defaults to 30.
        summary_interval (float): Summary refresh period. Defaults to 900.
        request_timeout (float): Per-request HTTP timeout. Defaults to 10.
        debounce_seconds (float): Coalescing window for filesystem bursts. Defaults to 1.0.
    """

    watch_path: str
    log_file: Optional[str]
    log_level: str
    editor: str
    queue_path: Optional[str]
    heartbeat_interval: float
    sync_interval: float
    summary_interval: float
    request_timeout: float
    debounce_seconds: float


def get_config_dir() -> Path:
    """Return the Ziit configuration directory.

    ``$XDG_CONFIG_HOME/ziit`` when set, ``%APPDATA%\\ziit`` on Windows, else ``~/.config/ziit``.
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(os.path.expanduser(xdg_config_home)) / "ziit"
    if os.name == "nt" and os.environ.get("APPDATA"):
        return Path(os.path.expanduser(os.environ["APPDATA"])) / "ziit"
    return Path.home() / ".config" / "ziit"


def _find_project_root(start_path: Path) -> Optional[Path]:
    """Find the project root by looking for a .git directory upwards."""
    try:
        path = start_path.resolve()
        if path.is_file():
            path = path.parent

        for parent in [path] + list(path.parents):
            if (parent / ".git").exists():
                return parent
    except OSError:
        pass
    return None


def _get_settings_file_paths() -> List[Path]:
    """Return candidate settings files, highest priority first."""
    return [Path(SETTINGS_FILE_NAME), get_config_dir() / SETTINGS_FILE_NAME]


def _validate_dir(path_str: str) -> str:
    """Resolve a workspace path, expanding ``~``.

    Raises:
        ValueError: If the path does not exist or is not a directory.
    """
    path = Path(os.path.expanduser(path_str))
    try:
        resolved = path.resolve(strict=True)
    except (FileNotFoundError, RuntimeError, OSError) as e:
        raise ValueError(f"Invalid watch path (not found): {path}") from e
    if not resolved.is_dir():
        raise ValueError(f"Invalid watch path (not a directory): {resolved}")
    return str(resolved)


def _to_positive_float(config_values: Dict[str, Any], key: str) -> None:
    try:
        value = float(config_values[key])
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid float for {key}: {config_values[key]}") from e
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    config_values[key] = value


def load_config(args: Dict[str, Any]) -> Config:
    """Load and validate runtime settings with strict priority.

    Args:
        args (Dict[str, Any]): Parsed CLI arguments, typically ``vars(parser.parse_args())``.
            Values of None are ignored so lower-priority sources take effect.
            Unknown keys (e.g. ``command``) are ignored.

    Returns:
        Config: The resolved configuration.

    Raises:
        ValueError: If a numeric value is invalid, the log level is unknown, or
            the watch path is not an existing directory.

    Examples:
        >>> config = load_config({"sync_interval": 60})
        >>> config.sync_interval
        60.0
    """
    # 1. Defaults
    config_values: Dict[str, Any] = {
        "watch_path": None,
        "log_file": None,
        "log_level": "INFO",
        "editor": DEFAULT_EDITOR,
        "queue_path": None,
        "heartbeat_interval": 120.0,
        "sync_interval": 30.0,
        "summary_interval": 900.0,
        "request_timeout": 10.0,
        "debounce_seconds": 1.0,
    }

    # 2. Settings file
    for path in _get_settings_file_paths():
        if path.is_file():
            logger.debug("Loading settings from %s", path)
            try:
                with path.open("rb") as f:
                    table = tomli.load(f).get(SETTINGS_TABLE, {})
                if isinstance(table, dict):
                    for key, value in table.items():
                        if value is not None and value != "":
                            config_values[key.replace("-", "_")] = value
            except (tomli.TOMLDecodeError, UnicodeDecodeError, OSError) as e:
                logger.error("Failed to parse settings file %s: %s", path, e)
            break

    # 3. Environment variables
    env_map = {
        "ZIIT_WATCH_PATH": "watch_path",
        "ZIIT_LOG_FILE": "log_file",
        "ZIIT_LOG_LEVEL": "log_level",
        "ZIIT_EDITOR": "editor",
        "ZIIT_QUEUE_PATH": "queue_path",
        "ZIIT_HEARTBEAT_INTERVAL": "heartbeat_interval",
        "ZIIT_SYNC_INTERVAL": "sync_interval",
        "ZIIT_SUMMARY_INTERVAL": "summary_interval",
        "ZIIT_REQUEST_TIMEOUT": "request_timeout",
        "ZIIT_DEBOUNCE_SECONDS": "debounce_seconds",
    }
    for env_var, config_key in env_map.items():
        val = os.getenv(env_var)
        if val is not None and val != "":
            config_values[config_key] = val

    # 4. CLI arguments
    for key, value in args.items():
        if value is not None:
            config_values[key] = value

    for key in ("heartbeat_interval", "sync_interval", "summary_interval", "request_timeout"):
        _to_positive_float(config_values, key)

    try:
        config_values["debounce_seconds"] = float(config_values["debounce_seconds"])
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid float for debounce_seconds: {config_values['debounce_seconds']}") from e
    if config_values["debounce_seconds"] < 0:
        raise ValueError(f"debounce_seconds must be non-negative, got {config_values['debounce_seconds']}")

    if config_values["watch_path"]:
        config_values["watch_path"] = _validate_dir(str(config_values["watch_path"]))
    else:
        try:
            root = _find_project_root(Path.cwd())
        except OSError:
            root = None
        if root is None:
            logger.debug("No project root found, defaulting watch_path to '.'")
        config_values["watch_path"] = _validate_dir(str(root) if root else ".")

    for key in ("log_file", "queue_path"):
        if config_values[key]:
            config_values[key] = str(Path(os.path.expanduser(str(config_values[key]))).absolute())

    if args.get("debug"):
        config_values["log_level"] = "DEBUG"

    config_values["log_level"] = str(config_values["log_level"]).upper()
    if not isinstance(getattr(logging, config_values["log_level"], None), int):
        raise ValueError(f"Invalid log level: {config_values['log_level']}")

    if not str(config_values["editor"]).strip():
        raise ValueError("editor must not be empty")
    config_values["editor"] = str(config_values["editor"]).strip()

    config_fields = {f.name for f in fields(Config)}
    return Config(**{k: v for k, v in config_values.items() if k in config_fields})


@dataclass
class ZiitConfig:
    """Ziit credentials: API key and server base URL."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def effective_base_url(self) -> str:
        return self.base_url or DEFAULT_BASE_URL

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"apiKey": self.api_key, "baseUrl": self.base_url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ZiitConfig:
        if not isinstance(data, dict):
            raise ValueError("Ziit config must be a JSON object")
        api_key = data.get("apiKey")
        base_url = data.get("baseUrl")
        if api_key is not None and not isinstance(api_key, str):
            raise ValueError("apiKey must be a string")
        if base_url is not None and not isinstance(base_url, str):
            raise ValueError("baseUrl must be a string")
        return cls(api_key=api_key, base_url=base_url)


class CredentialStore:
    """Read and write the Ziit credentials file.

    The file lives at ``<config dir>/config.json``. Older releases kept it at
    ``~/.ziit.json``; the first read moves it to the new location.

    Args:
        path: Credentials file. Defaults to ``get_config_dir() / "config.json"``.
        legacy_path: Legacy file to migrate from. Defaults to ``~/.ziit.json``.
    """

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        legacy_path: Union[str, Path, None] = None,
    ) -> None:
        self.path = Path(path) if path is not None else get_config_dir() / CONFIG_FILE_NAME
        self.legacy_path = (
            Path(legacy_path) if legacy_path is not None else Path.home() / LEGACY_CONFIG_FILE_NAME
        )

    def migrate_legacy(self) -> bool:
        """Move the legacy file to the current location.

        Returns:
            bool: True if a migration happened.

        Raises:
            ValueError: If the legacy file is not valid JSON.
            OSError: If the new file cannot be written.
        """
        if self.path.exists():
            logger.debug("Config file already exists, skipping migration")
            return False
        if not self.legacy_path.exists():
            return False

        logger.info("Migrating legacy config from %s to %s", self.legacy_path, self.path)
        try:
            content = self.legacy_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Could not read legacy config file: %s", e)
            return False

        self.write(ZiitConfig.from_dict(json.loads(content)))
        try:
            self.legacy_path.unlink()
            logger.info("Successfully migrated config and removed legacy file")
        except OSError as e:
            logger.warning("Could not remove legacy config file: %s", e)
        return True

    def read(self) -> ZiitConfig:
        """Return the stored credentials, or empty ones if no file exists.

        Raises:
            ValueError: If the file is not valid JSON.
            OSError: If the file exists but cannot be read.
        """
        try:
            self.migrate_legacy()
        except (OSError, ValueError) as e:
            logger.warning("Migration failed: %s", e)

        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ZiitConfig()
        return ZiitConfig.from_dict(json.loads(content))

    def write(self, config: ZiitConfig) -> None:
        """Write the credentials as pretty-printed JSON.

        Raises:
            OSError: If the file cannot be written.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
        logger.info("Config file updated: %s", self.path)

    def __repr__(self) -> str:
        return f"<CredentialStore path={self.path}>"
