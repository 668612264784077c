"""Ziit activity watcher.

This package tracks editing activity in a workspace and reports it to a Ziit
time-tracking server as heartbeats, buffering them on disk while offline.
"""

__version__ = "0.1.0"
