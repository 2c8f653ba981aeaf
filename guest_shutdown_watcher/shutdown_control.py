"""
Process-wide shutdown control shared by every watcher.

The controller owns a single asyncio event. Every suspension point in a
watcher (the long-poll request and the back-off sleeps) races against it,
so a signal or driver-level stop unblocks all watchers promptly.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class WatcherError(Exception):
    """Base class for errors reported by watchers to their driver."""


class WatchCancelled(WatcherError):
    """Raised or returned when shutdown was requested while a watcher waited."""


@dataclass
class ShutdownState:
    """Tracks shutdown state and timing."""

    requested: bool = False
    requested_at: Optional[datetime] = None
    initiated_by: Optional[str] = None


class ShutdownController:
    """Manages application shutdown state."""

    def __init__(self):
        self._state = ShutdownState()
        self._shutdown_event = asyncio.Event()
        self._error: Optional[WatchCancelled] = None

    def request_shutdown(self, initiated_by: str = "signal"):
        """
        Request shutdown of every watcher sharing this controller.

        Args:
            initiated_by: Who initiated the shutdown (e.g., "signal", "driver")
        """
        if self._state.requested:
            LOG.warning("Shutdown already requested, ignoring duplicate request")
            return

        self._state.requested = True
        self._state.requested_at = datetime.now(timezone.utc)
        self._state.initiated_by = initiated_by
        self._error = WatchCancelled(f"shutdown requested by {initiated_by}")
        self._shutdown_event.set()

        LOG.warning(
            "SHUTDOWN REQUESTED by %s at %s",
            initiated_by,
            self._state.requested_at.isoformat(),
        )

    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._state.requested

    @property
    def error(self) -> Optional[WatchCancelled]:
        """The cancellation error handed back to drivers, once requested."""
        return self._error

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on shutdown.

        Returns:
            True if the full delay elapsed, False if shutdown came first
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def run_until_shutdown(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless shutdown is requested first.

        The awaitable's own result or exception wins if it finishes
        together with the shutdown event.

        Raises:
            WatchCancelled: shutdown was requested before it finished
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        # Let the cancelled request unwind before reporting
        await asyncio.gather(task, return_exceptions=True)
        raise self._error


# Global singleton instance
_shutdown_controller = ShutdownController()


def get_shutdown_controller() -> ShutdownController:
    """Get the global shutdown controller instance."""
    return _shutdown_controller
