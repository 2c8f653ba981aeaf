"""Platform-specific launchers for the graceful shutdown scripts.

A dispatcher is any zero-argument callable. Dispatchers never raise:
the VM stops whether or not the scripts ran, so failures are logged and
the watcher still reports the event as handled.
"""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable, List, Optional

import psutil

from .config import (
    DRY_RUN,
    SCRIPT_RUNNER_ACTION,
    SCRIPT_RUNNER_NAME,
    SHUTDOWN_SCRIPTS_UNIT,
)

LOG = logging.getLogger(__name__)

Dispatcher = Callable[[], None]


class CommandDispatcher:
    """Runs one local command to start the shutdown scripts.

    Subclasses provide ``command()``. Exit status and stderr are logged
    but never surfaced to the caller.
    """

    def __init__(self, dry_run: bool = False):
        """Initialize dispatcher.

        Args:
            dry_run: If True, log the command instead of executing it
        """
        self.dry_run = dry_run

    def command(self) -> List[str]:
        raise NotImplementedError

    def __call__(self) -> None:
        LOG.info("Starting graceful shutdown scripts.")

        try:
            cmd = self.command()
        except (OSError, psutil.Error) as e:
            LOG.error("failed to resolve graceful shutdown command: %s", e)
            return

        if self.dry_run:
            LOG.info("[DRY-RUN] Would execute: %s", " ".join(cmd))
            return

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True)
        except (OSError, subprocess.SubprocessError) as e:
            LOG.error("failed to run graceful shutdown script: %s", e)
            return

        if proc.returncode != 0:
            LOG.error(
                "failed to run graceful shutdown script: %s exited with code %d",
                cmd[0],
                proc.returncode,
            )
            if proc.stderr:
                LOG.error("stderr: %s", proc.stderr.strip()[:500])
            return

        LOG.info("Graceful shutdown command completed: %s", " ".join(cmd))
        if proc.stdout:
            LOG.debug("stdout: %s", proc.stdout[-1000:])


class SystemdUnitDispatcher(CommandDispatcher):
    """Starts the systemd unit that runs the shutdown scripts."""

    def __init__(self, unit: str = SHUTDOWN_SCRIPTS_UNIT, dry_run: bool = False):
        super().__init__(dry_run=dry_run)
        self.unit = unit

    def command(self) -> List[str]:
        return ["systemctl", "start", self.unit]


def agent_executable() -> Path:
    """Path of the executable running this agent."""
    exe = psutil.Process().exe()
    if not exe:
        raise OSError("agent executable path is unknown")
    return Path(exe)


class ScriptRunnerDispatcher(CommandDispatcher):
    """Runs the script runner that ships next to the agent executable.

    Used where there is no service manager to delegate to; waits for the
    runner to exit.
    """

    def __init__(
        self,
        runner_name: str = SCRIPT_RUNNER_NAME,
        action: str = SCRIPT_RUNNER_ACTION,
        dry_run: bool = False,
    ):
        super().__init__(dry_run=dry_run)
        self.runner_name = runner_name
        self.action = action

    def runner_path(self) -> Path:
        return agent_executable().parent / self.runner_name

    def command(self) -> List[str]:
        return [str(self.runner_path()), self.action]


class UnsupportedPlatformDispatcher:
    """Stand-in for platforms with no known way to run the scripts."""

    def __init__(self, platform: str):
        self.platform = platform

    def __call__(self) -> None:
        LOG.warning(
            "Graceful shutdown scripts are not supported on %s, skipping",
            self.platform,
        )


def default_dispatcher(
    dry_run: bool = DRY_RUN, platform: Optional[str] = None
) -> Dispatcher:
    """Pick the dispatcher for the running platform."""
    platform = platform or sys.platform
    if platform.startswith("linux"):
        return SystemdUnitDispatcher(dry_run=dry_run)
    if platform == "win32":
        return ScriptRunnerDispatcher(dry_run=dry_run)
    return UnsupportedPlatformDispatcher(platform)
