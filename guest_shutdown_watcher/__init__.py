"""Graceful shutdown watcher for VM guests."""

from .gracefulshutdown import (
    RUN_SCRIPT_EVENT,
    WATCHER_ID,
    GracefulShutdownWatcher,
    WatchResult,
)
from .metadata import ChangeWatchClient, MetadataClient, OutcomeKind, WatchOutcome
from .shutdown_control import ShutdownController, WatchCancelled, WatcherError

__all__ = [
    "RUN_SCRIPT_EVENT",
    "WATCHER_ID",
    "GracefulShutdownWatcher",
    "WatchResult",
    "ChangeWatchClient",
    "MetadataClient",
    "OutcomeKind",
    "WatchOutcome",
    "ShutdownController",
    "WatchCancelled",
    "WatcherError",
]
