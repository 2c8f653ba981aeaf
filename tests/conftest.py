import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web

# Ensure repository root is on sys.path so tests can import the package
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from guest_shutdown_watcher.shutdown_control import ShutdownController  # noqa: E402

WATCH_PARAMS = ("wait_for_change", "last_etag", "timeout_sec")


class FakeMetadataServer:
    """Metadata server that honors watch parameters only in the query string.

    Requests carrying wait_for_change/last_etag as headers are rejected
    with 400, so a client that moves them out of the URL fails loudly.
    """

    def __init__(self):
        self.values = {}
        self.requests = []
        self.fail_with = []
        self._etag_counter = 0
        self._changed = asyncio.Event()
        self.app = web.Application()
        self.app.router.add_get("/computeMetadata/v1/{key:.*}", self._handle)
        self.base_url = None

    def set(self, key, value):
        """Set ``key`` (str or bytes) and wake any pending watches."""
        self._etag_counter += 1
        self.values[key] = (value, f"etag-{self._etag_counter}")
        self._changed.set()
        self._changed = asyncio.Event()

    def delete(self, key):
        self.values.pop(key, None)
        self._changed.set()
        self._changed = asyncio.Event()

    def etag(self, key):
        return self.values[key][1]

    async def _handle(self, request):
        key = request.match_info["key"]
        self.requests.append(
            {
                "key": key,
                "query": dict(request.query),
                "headers": dict(request.headers),
            }
        )

        if any(name in request.headers for name in WATCH_PARAMS):
            return web.Response(
                status=400, text="watch parameters must be query parameters"
            )
        if request.headers.get("Metadata-Flavor") != "Google":
            return web.Response(status=403, text="missing Metadata-Flavor header")
        if self.fail_with:
            return web.Response(status=self.fail_with.pop(0), text="injected failure")

        if request.query.get("wait_for_change") == "true":
            last_etag = request.query.get("last_etag", "NONE")
            timeout = float(request.query.get("timeout_sec", "60"))
            current = self.values.get(key)
            if current is not None and current[1] == last_etag:
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass

        if key not in self.values:
            return web.Response(status=404, text="not found")

        value, etag = self.values[key]
        body = value if isinstance(value, bytes) else value.encode("utf-8")
        return web.Response(body=body, headers={"ETag": etag})


@pytest_asyncio.fixture
async def metadata_server():
    server = FakeMetadataServer()
    runner = web.AppRunner(server.app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    server.base_url = f"http://127.0.0.1:{port}/computeMetadata/v1"

    yield server

    # Release any handler still holding a watch open
    server._changed.set()
    await runner.cleanup()


@pytest.fixture
def controller():
    """Fresh shutdown controller so tests never share cancellation state."""
    return ShutdownController()
