"""Main entry point for ziit-watcher.

This module handles the command-line interface (CLI), configuration loading,
logging setup, and the main event loop. It wires together the
HeartbeatManager, the Scheduler and the WorkspaceWatcher.

Key Responsibilities:
    - CLI Argument Parsing: runtime flags plus the ``run``, ``status``,
      ``dashboard``, ``set-api-key`` and ``set-base-url`` commands.
    - Signal Handling: SIGINT/SIGTERM trigger a graceful shutdown.
    - Logging: console logging plus optional rotating file logging (10MB).
    - Shutdown Invariants: background tasks are cancelled, the watcher is
      stopped and the offline queue is written to disk (no network flush).
"""

from __future__ import annotations

import argparse
import atexit
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import List, Optional

from ziit_watcher import __version__, commands
from ziit_watcher.activity import ActivityTracker
from ziit_watcher.config import CredentialStore, load_config
from ziit_watcher.manager import HeartbeatManager
from ziit_watcher.offline_queue import OfflineQueue
from ziit_watcher.scheduler import Scheduler
from ziit_watcher.watcher import WorkspaceWatcher

# Logging configuration constants
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def setup_logging(log_level: str, log_file: Optional[str]) -> None:
    """Configure the logging system.

    Sets up console logging (stdout) and optional file logging with rotation
    at 10MB (5 backups). The log file's directory is created if needed.

    Args:
        log_level (str): The logging level (e.g., "DEBUG", "INFO").
        log_file (Optional[str]): Optional path to a log file.

    Raises:
        ValueError: If the provided log_level is not a valid logging level.
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [console_handler]

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            # Logging isn't set up yet
            sys.stderr.write(f"Warning: Failed to setup log file '{log_file}': {e}\n")

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ziit-watcher",
        description="Track coding activity in a workspace and report it to Ziit.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--watch-path", type=str, default=None, help="Workspace directory to watch.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging (overrides --log-level).")
    parser.add_argument("--log-file", type=str, default=None, help="Path to the log file.")
    parser.add_argument(
        "--log-level", type=str, default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO"
    )
    parser.add_argument("--editor", type=str, default=None, help="Editor name reported in heartbeats.")
    parser.add_argument("--queue-path", type=str, default=None, help="Offline heartbeat queue file.")
    parser.add_argument(
        "--heartbeat-interval", type=float, default=None, help="Seconds between keep-alive heartbeats."
    )
    parser.add_argument("--sync-interval", type=float, default=None, help="Seconds between offline queue flushes.")
    parser.add_argument("--summary-interval", type=float, default=None, help="Seconds between summary refreshes.")
    parser.add_argument("--request-timeout", type=float, default=None, help="HTTP request timeout in seconds.")
    parser.add_argument(
        "--debounce-seconds", type=float, default=None, help="Time in seconds to coalesce file events."
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.add_parser("run", help="Watch the workspace and send heartbeats (default).")
    subparsers.add_parser("status", help="Show configuration and offline queue status.")
    subparsers.add_parser("dashboard", help="Print the Ziit dashboard URL.")
    set_key = subparsers.add_parser("set-api-key", help="Store the Ziit API key.")
    set_key.add_argument("api_key", help="API key from the Ziit dashboard.")
    set_url = subparsers.add_parser("set-base-url", help="Store the Ziit server URL.")
    set_url.add_argument("base_url", help="Base URL, e.g. https://ziit.app")
    return parser


def run_command(args: argparse.Namespace, store: CredentialStore) -> int:
    """Execute a one-shot command and print its result. Returns the exit code."""
    if args.command == "set-api-key":
        result = commands.set_api_key(store, args.api_key)
    elif args.command == "set-base-url":
        result = commands.set_base_url(store, args.base_url)
    elif args.command == "dashboard":
        result = commands.dashboard_url(store)
    else:
        result = commands.status(store)
        if result.success:
            try:
                config = load_config(_config_args(args))
            except ValueError as e:
                logger.debug("Skipping queue status: %s", e)
                config = None
            if config is not None:
                offline_queue = OfflineQueue(config.queue_path)
                offline_queue.load()
                result.message += f"\nQueued Heartbeats: {len(offline_queue)} ({offline_queue.path})"

    stream = sys.stdout if result.success else sys.stderr
    stream.write(result.message + "\n")
    return 0 if result.success else 1


def _config_args(args: argparse.Namespace) -> dict:
    return {k: v for k, v in vars(args).items() if k not in ("command", "api_key", "base_url")}


def main(argv: Optional[List[str]] = None) -> None:
    """Execute the main application logic.

    Parses the command line, runs a one-shot command if one was given, and
    otherwise starts the watcher until SIGINT/SIGTERM.

    Raises:
        SystemExit: On invalid configuration, command failure, or fatal startup errors.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Bootstrap logging to capture config loading events
    bootstrap_handler = logging.StreamHandler(sys.stdout)
    bootstrap_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    bootstrap_level = logging.DEBUG if args.debug else logging.WARNING
    logging.basicConfig(level=bootstrap_level, handlers=[bootstrap_handler], force=True)

    store = CredentialStore()
    if args.command not in (None, "run"):
        sys.exit(run_command(args, store))

    try:
        config = load_config(_config_args(args))
        setup_logging(config.log_level, config.log_file)
    except ValueError as e:
        sys.exit(f"Configuration Error: {e}")
    logger.debug("Configuration loaded: %s", config)
    logger.info("Starting ziit-watcher v%s (PID: %s)...", __version__, os.getpid())

    manager: Optional[HeartbeatManager] = None
    scheduler: Optional[Scheduler] = None
    watcher: Optional[WorkspaceWatcher] = None

    def cleanup() -> None:
        """Stop the watcher and scheduler, then persist the offline queue."""
        nonlocal watcher, scheduler, manager
        if watcher:
            try:
                watcher.stop()
            except Exception as e:
                logger.error("Error stopping watcher in cleanup: %s", e)
            watcher = None
        if scheduler:
            try:
                scheduler.stop()
            except Exception as e:
                logger.error("Error stopping scheduler: %s", e)
            scheduler = None
        elif manager:
            manager.shutdown()
        manager = None

    atexit.register(cleanup)
    stop_event = threading.Event()

    def signal_handler(sig: int, frame: Optional[FrameType]) -> None:
        logger.info("Received signal %s, shutting down...", signal.Signals(sig).name)
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        manager = HeartbeatManager.from_config(config, store)
        tracker = ActivityTracker(manager)
        watcher = WorkspaceWatcher(
            config.watch_path,
            tracker,
            debounce_seconds=config.debounce_seconds,
            ignore_paths=[manager.offline_queue.path],
        )
        watcher.start()

        scheduler = Scheduler(
            manager,
            heartbeat_interval=config.heartbeat_interval,
            sync_interval=config.sync_interval,
            summary_interval=config.summary_interval,
        )
        scheduler.start()

        stop_event.wait()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, stopping...")
    except Exception as e:
        logger.critical("Fatal error: %s", e, exc_info=True)
        cleanup()
        atexit.unregister(cleanup)
        sys.exit(1)

    cleanup()
    atexit.unregister(cleanup)


if __name__ == "__main__":
    main()
