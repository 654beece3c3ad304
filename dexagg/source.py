"""Common plumbing for venue adapters.

A Source knows how to fetch one venue's raw position records, how to resolve
the metadata those records need, and which pure normalizer turns one raw
record into a NormalizedPosition. Raw records stay venue-shaped dicts; only
the output type is shared.

The same collect() pipeline runs whether raw records came from a request
(Aggregator) or were pushed over a websocket (hyperliquid.HyperliquidStream)."""

import asyncio
from abc import ABC, abstractmethod

from typing import Any, Awaitable, Callable, ClassVar, Optional

import aiohttp
import arrow  # type: ignore
import orjson
from loguru import logger

from dexagg.cache import MetadataCache
from dexagg.errors import AuthError, NotFoundError, TransportError
from dexagg.models import AccountSummary, NormalizedPosition, Resolution
from dexagg.risk import isZeroSize

# sentinel so callers can pass notFound=None and get None back on 404
MISSING = object()


def nowMs() -> int:
    return int(arrow.utcnow().timestamp() * 1000)


def timestampMs(value: Any, default: Optional[int] = None) -> int:
    """Epoch milliseconds from an int/float epoch or an ISO-8601 string."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # seconds vs milliseconds: anything before ~2001 in ms is really seconds
        return int(value * 1000) if value < 1e12 else int(value)

    if isinstance(value, str) and value:
        try:
            return int(arrow.get(value).timestamp() * 1000)
        except (ValueError, TypeError):
            pass

    return nowMs() if default is None else default


class Source(ABC):
    # stable id used in position ids, cache keys, and error records
    id: ClassVar[str]
    name: ClassVar[str]

    # venues addressed by API key rather than by public wallet address
    requiresCredentials: ClassVar[bool] = False

    def __init__(self, session: aiohttp.ClientSession, cache: MetadataCache):
        self.session = session
        self.cache = cache

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"

    # ------------------------------------------------------------------
    # venue-specific hooks

    @abstractmethod
    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        """Raw position records for 'account' (empty list if none)."""

    @abstractmethod
    def positionSize(self, raw: dict) -> Any:
        """Signed (or absolute) size field used for zero-position filtering."""

    @abstractmethod
    def instrumentOf(self, raw: dict) -> str:
        """Key into the resolved metadata map for this raw record."""

    @abstractmethod
    async def resolveMetadata(
        self, raws: list[dict], account: str, credentials=None
    ) -> Resolution:
        """Decimals, mark prices, margin fractions (and account context) for 'raws'."""

    @abstractmethod
    def normalize(
        self, raw: dict, resolution: Resolution, account: str
    ) -> NormalizedPosition: ...

    async def fetchAccountSummary(
        self, account: str, credentials=None
    ) -> Optional[AccountSummary]:
        """Balance/volume/PnL for 'account'; None if the venue has nothing."""
        return None

    # ------------------------------------------------------------------
    # shared helpers

    async def fetchPositions(
        self, account: str, credentials=None
    ) -> list[NormalizedPosition]:
        raws = await self.fetchRawPositions(account, credentials)
        return await collect(self, raws, account, credentials)

    def requireCredentials(self, credentials):
        if credentials is None:
            raise AuthError(self.id, f"{self.name} requires API credentials")

        return credentials

    def cacheKey(self, kind: str, qualifier: Optional[str] = None) -> str:
        return f"{self.id}:{kind}:{qualifier}" if qualifier else f"{self.id}:{kind}"

    async def cached(
        self,
        kind: str,
        fetcher: Callable[[], Awaitable[Any]],
        qualifier: Optional[str] = None,
        ttl: Optional[float] = None,
    ):
        return await self.cache.getOrFetch(self.cacheKey(kind, qualifier), fetcher, ttl)

    def clearCache(self) -> int:
        return self.cache.deleteByPrefix(f"{self.id}:")

    def checkBody(self, body: Any) -> Any:
        """Venue-level error envelopes; override to raise on them."""
        return body

    async def getJSON(
        self,
        url: str,
        method: str = "GET",
        params=None,
        payload=None,
        headers: Optional[dict[str, str]] = None,
        notFound: Any = MISSING,
    ) -> Any:
        """Request 'url' and return the decoded JSON body.

        401/403 raise AuthError, 404 returns 'notFound' when given (else
        raises NotFoundError), any other failure raises TransportError."""
        hdrs = {"Accept": "application/json"}
        data = None
        if payload is not None:
            data = orjson.dumps(payload)
            hdrs["Content-Type"] = "application/json"

        if headers:
            hdrs |= headers

        try:
            async with self.session.request(
                method, url, params=params, data=data, headers=hdrs
            ) as resp:
                status = resp.status
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(self.id, f"{method} {url} failed: {e!r}") from e

        if status in {401, 403}:
            raise AuthError(self.id, f"{method} {url} rejected ({status})", status)

        if status == 404:
            if notFound is not MISSING:
                return notFound

            raise NotFoundError(self.id, f"{method} {url} not found", status)

        if status >= 400:
            raise TransportError(
                self.id,
                f"{method} {url} returned {status}: {body[:200].decode(errors='replace')}",
                status,
            )

        try:
            decoded = orjson.loads(body) if body else None
        except orjson.JSONDecodeError as e:
            raise TransportError(self.id, f"{method} {url} sent invalid JSON") from e

        return self.checkBody(decoded)


async def collect(
    source: Source, raws: list[dict], account: str, credentials=None
) -> list[NormalizedPosition]:
    """Filter zero sizes, resolve metadata, normalize.

    When nothing survives the filter no metadata is requested at all, so
    empty accounts never cost a market-info round trip."""
    live = [r for r in raws if not isZeroSize(source.positionSize(r))]
    if not live:
        return []

    resolution = await source.resolveMetadata(live, account, credentials)
    positions = [source.normalize(r, resolution, account) for r in live]

    logger.debug("[{}] {} positions for {}", source.id, len(positions), account)
    return positions
