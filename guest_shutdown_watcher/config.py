"""
Configuration settings for guest-shutdown-watcher.

All settings can be overridden via environment variables or .env file.
Command line flags passed to the entry point take precedence over both.
"""

import os
from pathlib import Path


def get_env_bool(key: str, default: bool) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def get_env_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Load .env file if it exists (for local development)
def load_dotenv():
    """Load environment variables from .env file if it exists."""
    env_file = Path(__file__).parent.parent / ".env"
    if env_file.exists():
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    if key not in os.environ:
                        os.environ[key] = value


load_dotenv()

# =============================================================================
# METADATA SERVER
# =============================================================================
# Base URL of the instance metadata server. Keys are appended as paths.
METADATA_URL = os.getenv("METADATA_URL", "http://169.254.169.254/computeMetadata/v1")

# Key signalling an imminent stop. Absent (404) on instances without the feature.
STOP_STATE_KEY = os.getenv("STOP_STATE_KEY", "instance/shutdown-details/stop-state")

# Server-side hold for wait_for_change requests (sent as timeout_sec)
WATCH_TIMEOUT_SECONDS = get_env_int("WATCH_TIMEOUT_SECONDS", 60)

# Back-off when the stop-state key does not exist on this instance
NOT_FOUND_RETRY_SECONDS = get_env_int("NOT_FOUND_RETRY_SECONDS", 60)

# Back-off after a network error or unexpected status
ERROR_RETRY_SECONDS = get_env_int("ERROR_RETRY_SECONDS", 5)

# =============================================================================
# SCRIPT DISPATCH
# =============================================================================
# systemd unit that runs the shutdown scripts on Linux
SHUTDOWN_SCRIPTS_UNIT = os.getenv(
    "SHUTDOWN_SCRIPTS_UNIT", "google-graceful-shutdown-scripts.service"
)

# Script runner executable expected next to the agent binary on Windows
SCRIPT_RUNNER_NAME = os.getenv("SCRIPT_RUNNER_NAME", "GCEMetadataScriptRunner.exe")

# Argument passed to the script runner
SCRIPT_RUNNER_ACTION = "graceful-shutdown"

# Log the dispatch command instead of running it
DRY_RUN = get_env_bool("DRY_RUN", False)

# =============================================================================
# LOGGING
# =============================================================================
LOG_VERBOSITY = os.getenv("LOG_VERBOSITY", "NORMAL")  # MINIMAL, NORMAL, or VERBOSE
LOG_FILE = os.getenv("LOG_FILE", None)  # Write logs to file (in addition to stdout)

# Server timezone for log timestamps (IANA name, e.g. "Europe/London")
SERVER_TZ = os.getenv("SERVER_TZ")

# Validate LOG_VERBOSITY
if LOG_VERBOSITY.upper() not in ("MINIMAL", "NORMAL", "VERBOSE"):
    raise ValueError(
        f"Invalid LOG_VERBOSITY: {LOG_VERBOSITY}. Must be MINIMAL, NORMAL, or VERBOSE"
    )
