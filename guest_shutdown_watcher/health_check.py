"""
Startup health checks for guest-shutdown-watcher.

None of these are fatal: the watcher retries an unreachable metadata
server on its own, and a missing script runner only affects the final
dispatch. Failures are logged so they are visible before a stop arrives.
"""

import logging
import shutil
from pathlib import Path
from typing import Optional

import psutil
import requests

from .config import METADATA_URL
from .dispatcher import ScriptRunnerDispatcher, SystemdUnitDispatcher
from .metadata import METADATA_HEADERS

LOG = logging.getLogger(__name__)


def check_metadata_server(base_url: str = METADATA_URL) -> bool:
    """Check if the metadata server answers.

    Returns True if the server responds with 200, False otherwise.
    """
    url = f"{base_url.rstrip('/')}/instance/id"
    try:
        LOG.info("Checking metadata server: %s", base_url)
        response = requests.get(url, headers=METADATA_HEADERS, timeout=5.0)
        response.raise_for_status()
        LOG.info("✓ Metadata server is reachable")
        return True
    except requests.exceptions.Timeout:
        LOG.error("✗ Metadata server timeout - check METADATA_URL: %s", base_url)
        return False
    except requests.exceptions.RequestException as e:
        LOG.error(
            "✗ Metadata server unreachable: %s - check METADATA_URL: %s",
            str(e),
            base_url,
        )
        return False


def check_dispatcher(dispatcher) -> bool:
    """Check that the dispatcher's command can be found.

    Returns True if the command looks runnable, False otherwise.
    """
    if isinstance(dispatcher, SystemdUnitDispatcher):
        if shutil.which("systemctl"):
            LOG.info("✓ systemctl is available (unit: %s)", dispatcher.unit)
            return True
        LOG.warning("✗ systemctl not found in PATH (shutdown scripts will not run)")
        return False

    if isinstance(dispatcher, ScriptRunnerDispatcher):
        try:
            runner = dispatcher.runner_path()
        except (OSError, psutil.Error) as e:
            LOG.warning("✗ Could not resolve script runner path: %s", e)
            return False
        if runner.exists():
            LOG.info("✓ Script runner found: %s", runner)
            return True
        LOG.warning("✗ Script runner not found: %s", runner)
        return False

    LOG.warning("✗ No script dispatcher available on this platform")
    return False


def check_log_file(log_file: Optional[str]) -> bool:
    """Check if log file directory is writable.

    Returns True if log file can be written (or none is configured).
    """
    if not log_file:
        return True
    try:
        LOG.info("Checking log file path: %s", log_file)
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch()
        LOG.info("✓ Log file is writable")
        return True
    except OSError as e:
        LOG.error("✗ Log file write issue: %s", str(e))
        return False


def run_health_checks(
    dispatcher, base_url: str = METADATA_URL, log_file: Optional[str] = None
) -> bool:
    """Run all health checks.

    Returns True if every check passed.
    """
    LOG.info("=" * 60)
    LOG.info("Running startup health checks...")
    LOG.info("=" * 60)

    checks = [
        ("Metadata server", check_metadata_server(base_url)),
        ("Script dispatcher", check_dispatcher(dispatcher)),
        ("Log file", check_log_file(log_file)),
    ]

    passed = sum(1 for _, result in checks if result)
    total = len(checks)

    LOG.info("=" * 60)
    LOG.info("Health checks: %d/%d passed", passed, total)

    if passed < total:
        failed = [name for name, result in checks if not result]
        LOG.warning("Some checks failed (%s) - continuing anyway", ", ".join(failed))

    LOG.info("=" * 60)
    return passed == total
