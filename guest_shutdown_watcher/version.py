"""Version and build information for guest-shutdown-watcher."""

VERSION = "0.3.0"
BUILD_NUMBER = "2026-10-16+build2"


def get_version_string():
    """Get full version string with build info."""
    return f"{VERSION}+{BUILD_NUMBER}"
