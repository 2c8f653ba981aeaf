"""Drives the graceful shutdown watcher until it finishes or is cancelled."""

import asyncio
import logging
import signal
from typing import Optional

from .config import METADATA_URL, STOP_STATE_KEY
from .dispatcher import Dispatcher
from .gracefulshutdown import GracefulShutdownWatcher
from .logging_config import set_watcher_id
from .metadata import MetadataClient
from .shutdown_control import ShutdownController, get_shutdown_controller

LOG = logging.getLogger(__name__)


def install_signal_handlers(controller: ShutdownController):
    """Request shutdown on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.request_shutdown, sig.name)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(
                sig,
                lambda signum, frame: loop.call_soon_threadsafe(
                    controller.request_shutdown, signal.Signals(signum).name
                ),
            )


async def run_watcher(
    watcher: GracefulShutdownWatcher, controller: ShutdownController
) -> Optional[BaseException]:
    """Call ``watcher.run`` until it stops renewing.

    Returns:
        The error that stopped the watcher, or None if it finished normally
    """
    set_watcher_id(watcher.id)
    event_type = watcher.events()[0]
    LOG.info("Watching for %s", event_type)

    while True:
        result = await watcher.run(event_type, controller)
        if result.error is not None:
            LOG.info("Watcher stopped: %s", result.error)
            return result.error
        if not result.renew:
            LOG.info("Watcher finished, not renewing")
            return None


async def serve(
    dispatcher: Dispatcher,
    metadata_url: str = METADATA_URL,
    key: str = STOP_STATE_KEY,
    controller: Optional[ShutdownController] = None,
) -> Optional[BaseException]:
    """Run the graceful shutdown watcher against ``metadata_url``."""
    controller = controller or get_shutdown_controller()
    install_signal_handlers(controller)

    client = MetadataClient(metadata_url)
    watcher = GracefulShutdownWatcher(client.watcher(key), dispatcher)
    try:
        return await run_watcher(watcher, controller)
    finally:
        await client.close()
