"""Instance metadata server client.

Supports plain key reads and long-poll watches. A watch asks the server to
hold the request open until the key's value differs from the last version
this client saw (identified by its etag), or until the server-side timeout
elapses.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

import aiohttp

from .config import METADATA_URL, WATCH_TIMEOUT_SECONDS
from .shutdown_control import ShutdownController

LOG = logging.getLogger(__name__)

# Token sent before the first successful response
DEFAULT_ETAG = "NONE"

# Every metadata request must carry this header or the server refuses it
METADATA_HEADERS = {"Metadata-Flavor": "Google"}

# Local read timeout beyond the server-side hold
WATCH_TIMEOUT_MARGIN_SECONDS = 10

# Plain reads are expected to answer quickly
GET_TIMEOUT_SECONDS = 10


class OutcomeKind(str, Enum):
    FOUND = "found"
    NOT_PRESENT = "not_present"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class WatchOutcome:
    """Result of a single metadata request, classified by ``kind``.

    ``status`` is the HTTP status when one was received, so callers can
    tell a 404 from a 5xx without inspecting ``detail``.
    """

    kind: OutcomeKind
    value: Optional[str] = None
    status: Optional[int] = None
    detail: str = ""

    @classmethod
    def found(cls, value: str) -> "WatchOutcome":
        return cls(OutcomeKind.FOUND, value=value, status=200)

    @classmethod
    def not_present(cls) -> "WatchOutcome":
        return cls(OutcomeKind.NOT_PRESENT, status=404)

    @classmethod
    def transport_error(
        cls, detail: str, status: Optional[int] = None
    ) -> "WatchOutcome":
        return cls(OutcomeKind.TRANSPORT_ERROR, status=status, detail=detail)


class MetadataClient:
    """Client for the instance metadata HTTP API.

    One client (and its connection pool) can be shared by any number of
    key watchers. Change tokens are never stored here; each
    ``ChangeWatchClient`` keeps its own.
    """

    def __init__(
        self,
        base_url: str = METADATA_URL,
        session: Optional[aiohttp.ClientSession] = None,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
    ):
        """Initialize metadata client.

        Args:
            base_url: Metadata root (e.g., http://169.254.169.254/computeMetadata/v1)
            session: Existing aiohttp session to reuse; created lazily if None
            watch_timeout: Server-side hold in seconds for wait_for_change
        """
        self.base_url = base_url.rstrip("/")
        self.watch_timeout = watch_timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def key_url(self, key: str) -> str:
        return f"{self.base_url}/{key.lstrip('/')}"

    async def fetch(
        self,
        key: str,
        params: Optional[Dict[str, str]] = None,
        timeout: float = GET_TIMEOUT_SECONDS,
    ) -> Tuple[WatchOutcome, Optional[str]]:
        """GET one key and classify the response.

        Never raises for HTTP or network failures; those come back as
        ``TRANSPORT_ERROR`` outcomes.

        Returns:
            (outcome, etag) where etag is the response ETag header, if any
        """
        url = self.key_url(key)
        session = self._get_session()
        try:
            async with session.get(
                url,
                params=params,
                headers=METADATA_HEADERS,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status == 404:
                    LOG.debug("Metadata key not found: %s", key)
                    return WatchOutcome.not_present(), None

                if resp.status != 200:
                    body = await resp.text(errors="replace")
                    return (
                        WatchOutcome.transport_error(
                            f"GET {url}: HTTP {resp.status}: {body.strip()[:200]}",
                            status=resp.status,
                        ),
                        None,
                    )

                raw = await resp.read()
                try:
                    value = raw.decode("utf-8")
                except UnicodeDecodeError as e:
                    return (
                        WatchOutcome.transport_error(
                            f"GET {url}: undecodable body: {e}", status=resp.status
                        ),
                        None,
                    )
                return WatchOutcome.found(value), resp.headers.get("ETag")

        except asyncio.TimeoutError:
            return (
                WatchOutcome.transport_error(f"GET {url}: timed out after {timeout}s"),
                None,
            )
        except aiohttp.ClientError as e:
            return WatchOutcome.transport_error(f"GET {url}: {e}"), None

    async def get_key(self, key: str) -> WatchOutcome:
        """Read the current value of ``key`` without waiting for changes."""
        outcome, _ = await self.fetch(key)
        return outcome

    def watcher(self, key: str) -> "ChangeWatchClient":
        """Create a change-watch client for ``key`` sharing this connection pool."""
        return ChangeWatchClient(self, key)

    async def close(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None


class ChangeWatchClient:
    """Long-poll watcher for a single metadata key.

    Holds the etag of the last value it observed, so each ``watch`` call
    only returns early when the value differs from that version.
    wait_for_change, last_etag and timeout_sec always travel in the query
    string; the metadata server ignores them as headers.
    """

    def __init__(self, client: MetadataClient, key: str):
        self._client = client
        self.key = key
        self._etag = DEFAULT_ETAG

    @property
    def etag(self) -> str:
        return self._etag

    def _watch_params(self) -> Dict[str, str]:
        return {
            "wait_for_change": "true",
            "last_etag": self._etag,
            "timeout_sec": str(self._client.watch_timeout),
        }

    async def watch(self, controller: ShutdownController) -> WatchOutcome:
        """Block until the key changes, the server hold expires, or shutdown.

        Raises:
            WatchCancelled: shutdown was requested on ``controller`` first
        """
        outcome, etag = await controller.run_until_shutdown(
            self._client.fetch(
                self.key,
                params=self._watch_params(),
                timeout=self._client.watch_timeout + WATCH_TIMEOUT_MARGIN_SECONDS,
            )
        )

        if outcome.kind is OutcomeKind.FOUND:
            if etag:
                self._etag = etag
            LOG.debug(
                "Watch on %s returned %r (etag %s)", self.key, outcome.value, self._etag
            )
        return outcome
