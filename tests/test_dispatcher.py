import logging
import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import psutil

from guest_shutdown_watcher.dispatcher import (
    ScriptRunnerDispatcher,
    SystemdUnitDispatcher,
    UnsupportedPlatformDispatcher,
    default_dispatcher,
)


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr=stderr
    )


def test_systemd_dispatcher_starts_unit():
    """Test that the Linux dispatcher starts the shutdown scripts unit."""
    dispatcher = SystemdUnitDispatcher()

    with patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        mock_run.return_value = _completed()
        dispatcher()

    mock_run.assert_called_once_with(
        ["systemctl", "start", "google-graceful-shutdown-scripts.service"],
        capture_output=True,
        text=True,
    )


def test_systemd_dispatcher_logs_nonzero_exit(caplog):
    """Test that a failing systemctl is logged and not raised."""
    dispatcher = SystemdUnitDispatcher(unit="custom.service")

    with patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        mock_run.return_value = _completed(
            returncode=5, stderr="Unit custom.service not found."
        )
        with caplog.at_level(logging.ERROR):
            dispatcher()

    assert "exited with code 5" in caplog.text
    assert "Unit custom.service not found." in caplog.text


def test_dispatcher_logs_missing_executable(caplog):
    """Test that an OSError from the command is swallowed."""
    dispatcher = SystemdUnitDispatcher()

    with patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        mock_run.side_effect = FileNotFoundError("systemctl")
        with caplog.at_level(logging.ERROR):
            dispatcher()

    assert "failed to run graceful shutdown script" in caplog.text


def test_dry_run_does_not_execute(caplog):
    """Test that dry-run logs the command instead of running it."""
    dispatcher = SystemdUnitDispatcher(dry_run=True)

    with patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        with caplog.at_level(logging.INFO):
            dispatcher()

    mock_run.assert_not_called()
    assert "[DRY-RUN] Would execute: systemctl start" in caplog.text


def test_script_runner_next_to_agent_executable():
    """Test that the runner path is derived from the agent's own executable."""
    dispatcher = ScriptRunnerDispatcher()
    process = Mock()
    process.exe.return_value = "/opt/guest-agent/GCEWindowsAgent.exe"

    with patch(
        "guest_shutdown_watcher.dispatcher.psutil.Process", return_value=process
    ), patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        mock_run.return_value = _completed()
        dispatcher()

    expected = str(Path("/opt/guest-agent") / "GCEMetadataScriptRunner.exe")
    mock_run.assert_called_once_with(
        [expected, "graceful-shutdown"], capture_output=True, text=True
    )


def test_script_runner_unresolvable_executable(caplog):
    """Test that failing to resolve the agent path is logged, nothing runs."""
    dispatcher = ScriptRunnerDispatcher()

    with patch(
        "guest_shutdown_watcher.dispatcher.psutil.Process",
        side_effect=psutil.AccessDenied(),
    ), patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        with caplog.at_level(logging.ERROR):
            dispatcher()

    mock_run.assert_not_called()
    assert "failed to resolve graceful shutdown command" in caplog.text


def test_script_runner_empty_executable_path(caplog):
    """Test that an empty executable path counts as a resolution failure."""
    dispatcher = ScriptRunnerDispatcher()
    process = Mock()
    process.exe.return_value = ""

    with patch(
        "guest_shutdown_watcher.dispatcher.psutil.Process", return_value=process
    ), patch("guest_shutdown_watcher.dispatcher.subprocess.run") as mock_run:
        with caplog.at_level(logging.ERROR):
            dispatcher()

    mock_run.assert_not_called()
    assert "agent executable path is unknown" in caplog.text


def test_default_dispatcher_by_platform():
    """Test platform selection for the default dispatcher."""
    assert isinstance(default_dispatcher(platform="linux"), SystemdUnitDispatcher)
    assert isinstance(default_dispatcher(platform="win32"), ScriptRunnerDispatcher)
    assert isinstance(
        default_dispatcher(platform="darwin"), UnsupportedPlatformDispatcher
    )
    assert default_dispatcher(platform="linux", dry_run=True).dry_run is True


def test_unsupported_platform_only_warns(caplog):
    """Test that unsupported platforms log a warning and do nothing."""
    with caplog.at_level(logging.WARNING):
        UnsupportedPlatformDispatcher("darwin")()

    assert "not supported on darwin" in caplog.text
