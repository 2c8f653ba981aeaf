"""Graceful shutdown events watcher.

Long-polls the instance's stop-state metadata key and runs the graceful
shutdown scripts once the key reports ``PENDING_STOP``.

Driver contract: call ``run`` repeatedly while it returns ``renew=True``.
A returned error is always the shutdown controller's cancellation error
and means the driver should stop. Once the scripts have been dispatched
the watcher is spent: later ``run`` calls return ``renew=False`` without
touching the metadata server or dispatching again.
"""

import asyncio
import logging
from typing import Any, List, NamedTuple, Optional

from .config import ERROR_RETRY_SECONDS, NOT_FOUND_RETRY_SECONDS
from .dispatcher import Dispatcher, default_dispatcher
from .metadata import ChangeWatchClient, OutcomeKind
from .shutdown_control import ShutdownController, WatchCancelled

LOG = logging.getLogger(__name__)

WATCHER_ID = "graceful-shutdown-watcher"
RUN_SCRIPT_EVENT = "graceful-shutdown-watcher,run-script"

PENDING_STOP = "PENDING_STOP"


class WatchResult(NamedTuple):
    """What a watcher hands back to its driver after one ``run`` call."""

    renew: bool
    data: Any = None
    error: Optional[BaseException] = None


class GracefulShutdownWatcher:
    """Watches the stop-state key and dispatches shutdown scripts."""

    def __init__(
        self,
        watch_client: ChangeWatchClient,
        dispatcher: Optional[Dispatcher] = None,
        not_found_delay: float = NOT_FOUND_RETRY_SECONDS,
        error_delay: float = ERROR_RETRY_SECONDS,
    ):
        """Initialize watcher.

        Args:
            watch_client: Change-watch client for the stop-state key. The
                caller owns its MetadataClient and closes it
            dispatcher: Callable that starts the shutdown scripts
            not_found_delay: Seconds to wait when the key does not exist
            error_delay: Seconds to wait after a transport error
        """
        self._client = watch_client
        self._dispatch = dispatcher or default_dispatcher()
        self.not_found_delay = not_found_delay
        self.error_delay = error_delay
        self._fired = False

    @property
    def id(self) -> str:
        return WATCHER_ID

    def events(self) -> List[str]:
        return [RUN_SCRIPT_EVENT]

    @property
    def fired(self) -> bool:
        return self._fired

    async def _back_off(
        self, controller: ShutdownController, seconds: float
    ) -> WatchResult:
        if await controller.sleep(seconds):
            return WatchResult(renew=True)
        return WatchResult(renew=False, error=controller.error)

    async def _run_scripts(self):
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self._dispatch)
        except Exception:
            LOG.exception("Graceful shutdown dispatcher failed")

    async def run(self, event_type: str, controller: ShutdownController) -> WatchResult:
        """Perform one watch of the stop-state key and decide whether to renew."""
        if self._fired:
            LOG.debug("Graceful shutdown already dispatched, not renewing")
            return WatchResult(renew=False)

        try:
            outcome = await self._client.watch(controller)
        except WatchCancelled as e:
            return WatchResult(renew=False, error=e)

        if outcome.kind is OutcomeKind.NOT_PRESENT:
            # Feature not exposed on this instance; check back slowly
            return await self._back_off(controller, self.not_found_delay)

        if outcome.kind is OutcomeKind.TRANSPORT_ERROR:
            LOG.error("error watching graceful shutdown metadata: %s", outcome.detail)
            return await self._back_off(controller, self.error_delay)

        if outcome.value.strip() == PENDING_STOP:
            LOG.info("Stop state is %s, running graceful shutdown scripts", PENDING_STOP)
            self._fired = True
            await self._run_scripts()
            # VM is stopping, no need to renew the watcher
            return WatchResult(renew=False)

        LOG.debug("Stop state is %r, continuing to watch", outcome.value)
        return WatchResult(renew=True)
