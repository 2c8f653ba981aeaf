"""
Logging configuration for guest-shutdown-watcher.

Supports:
- Watcher ID tracking with formatted markers
- Multiple verbosity levels (MINIMAL, NORMAL, VERBOSE)
- File and console output
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional
from contextvars import ContextVar
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Context variable to track the watcher driving the current task
_watcher_id_context: ContextVar[Optional[str]] = ContextVar("watcher_id", default=None)

VERBOSITY_LEVELS = {
    "MINIMAL": logging.WARNING,
    "NORMAL": logging.INFO,
    "VERBOSE": logging.DEBUG,
}


def _validate_verbosity(verbosity: str) -> str:
    verbosity = verbosity.upper()
    if verbosity not in VERBOSITY_LEVELS:
        raise ValueError(
            f"Invalid verbosity level: {verbosity}. Must be MINIMAL, NORMAL, or VERBOSE"
        )
    return verbosity


class WatcherIDFormatter(logging.Formatter):
    """Formatter that prefixes records with the active watcher ID."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._tz = self._get_timezone()

    def _get_timezone(self):
        """Get server timezone from SERVER_TZ env var."""
        tz_name = os.getenv("SERVER_TZ")
        if tz_name:
            try:
                return ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                pass
        # Fallback to local system timezone
        return datetime.now().astimezone().tzinfo

    def formatTime(self, record, datefmt=None):
        """Override formatTime to use server timezone."""
        dt = datetime.fromtimestamp(record.created, tz=self._tz)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat()

    def format(self, record: logging.LogRecord) -> str:
        base_msg = super().format(record)
        watcher_id = _watcher_id_context.get()
        if watcher_id:
            return f"[{watcher_id}] {base_msg}"
        return base_msg


class VerbosityFilter(logging.Filter):
    """Filter that controls which records are logged based on verbosity level."""

    def __init__(self, verbosity_level: str):
        """Initialize filter with verbosity level.

        Args:
            verbosity_level: One of 'MINIMAL', 'NORMAL', 'VERBOSE'
        """
        super().__init__()
        self.verbosity_level = verbosity_level.upper()
        self.min_level = VERBOSITY_LEVELS.get(self.verbosity_level, logging.INFO)

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.min_level


def set_watcher_id(watcher_id: Optional[str]) -> None:
    """Set the watcher ID for log records emitted by the current task.

    Args:
        watcher_id: Watcher identifier (e.g. 'graceful-shutdown-watcher') or None
    """
    _watcher_id_context.set(watcher_id)


def get_watcher_id() -> Optional[str]:
    """Get the current watcher ID."""
    return _watcher_id_context.get()


_current_verbosity: str = "NORMAL"


def configure_logging(
    verbosity: str = "NORMAL", log_file: Optional[str] = None
) -> None:
    """Configure logging with watcher markers and verbosity levels.

    Args:
        verbosity: One of 'MINIMAL', 'NORMAL', 'VERBOSE'
        log_file: Optional path to write logs to file (in addition to stdout)
    """
    global _current_verbosity
    verbosity = _validate_verbosity(verbosity)

    formatter = WatcherIDFormatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    verbosity_filter = VerbosityFilter(verbosity)
    _current_verbosity = verbosity

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # filter controls output
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(verbosity_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(verbosity_filter)
        root_logger.addHandler(file_handler)

    # aiohttp access/client chatter is not useful at NORMAL verbosity
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def set_verbosity(verbosity: str) -> None:
    """Update verbosity level on existing handlers."""
    global _current_verbosity
    verbosity = _validate_verbosity(verbosity)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        found = False
        for flt in handler.filters:
            if isinstance(flt, VerbosityFilter):
                flt.verbosity_level = verbosity
                flt.min_level = VERBOSITY_LEVELS[verbosity]
                found = True
        if not found:
            handler.addFilter(VerbosityFilter(verbosity))

    _current_verbosity = verbosity


def get_verbosity() -> str:
    """Return current logging verbosity."""
    return _current_verbosity
