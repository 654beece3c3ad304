"""Fan out across venues and accounts, merge what comes back.

Every (source, account) pair is its own task. A task that fails becomes a
FetchError record instead of an exception, so one broken venue never hides
the positions from the others."""

import asyncio
import dataclasses

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from typing import Iterable, Mapping, Optional, Sequence

import aiohttp
from loguru import logger

from dexagg.aster import Aster
from dexagg.cache import MetadataCache
from dexagg.config import Settings
from dexagg.decimalmath import decimalOr
from dexagg.dydx import Dydx
from dexagg.errors import FetchError, NotFoundError, SourceError
from dexagg.extended import Extended
from dexagg.hyperliquid import Hyperliquid
from dexagg.lighter import Lighter
from dexagg.models import (
    AccountSummary,
    NormalizedPosition,
    PortfolioSnapshot,
    SourceBreakdown,
)
from dexagg.pacifica import Pacifica
from dexagg.source import Source

SOURCES: dict[str, type[Source]] = {
    cls.id: cls for cls in (Hyperliquid, Lighter, Pacifica, Aster, Extended, Dydx)
}

# account label for credential-addressed venues when the caller gives none
DEFAULT_ACCOUNT = "default"


@dataclass(slots=True)
class FetchResult:
    positions: list[NormalizedPosition] = field(default_factory=list)
    errors: list[FetchError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def bySource(positions: Iterable[NormalizedPosition], source: str):
    return [p for p in positions if p.source == source]


def byAccount(positions: Iterable[NormalizedPosition], account: str):
    return [p for p in positions if p.account == account]


def byInstrument(positions: Iterable[NormalizedPosition], instrument: str):
    return [p for p in positions if p.instrument == instrument]


def longs(positions: Iterable[NormalizedPosition]):
    return [p for p in positions if p.side == "long"]


def shorts(positions: Iterable[NormalizedPosition]):
    return [p for p in positions if p.side == "short"]


def summarizePositions(
    summary: Optional[AccountSummary],
    source: str,
    positions: Sequence[NormalizedPosition],
) -> Optional[AccountSummary]:
    """Fold live position notional and PnL into a source's summary.

    Venues rarely report notional at the account level, and position-level
    unrealized PnL is fresher than most account endpoints, so positions win
    whenever there are any."""
    if not positions:
        return summary

    notional = sum((p.notionalOrEstimate() for p in positions), Decimal(0))
    unrealized = sum((decimalOr(p.unrealizedPnl) for p in positions), Decimal(0))

    if summary is None:
        accounts = sorted({p.account for p in positions})
        return AccountSummary(
            source=source,
            account=",".join(accounts),
            unrealizedPnl=unrealized,
            notional=notional,
        )

    return dataclasses.replace(summary, unrealizedPnl=unrealized, notional=notional)


def aggregate(
    perSource: Mapping[str, SourceBreakdown], errors: Sequence[FetchError] = ()
) -> PortfolioSnapshot:
    """Portfolio totals from per-source breakdowns.

    Only AccountSummary values contribute; None (requested, nothing there)
    and FetchError values are carried through untouched."""
    summaries = [s for s in perSource.values() if isinstance(s, AccountSummary)]

    def total(attr):
        return sum((getattr(s, attr) for s in summaries), Decimal(0))

    balance = total("balance")
    notional = total("notional")

    return PortfolioSnapshot(
        totalBalance=balance,
        totalVolume=total("totalVolume"),
        totalPnl=total("realizedPnl"),
        totalUnrealizedPnl=total("unrealizedPnl"),
        totalNotional=notional,
        compositeLeverage=float(notional / balance) if balance > 0 else 0.0,
        perSource=dict(perSource),
        errors=list(errors),
    )


class Aggregator:
    """Owns the HTTP session, the metadata cache, and one adapter per venue.

    Usage:
        async with Aggregator() as agg:
            result = await agg.fetchAll(["hyperliquid"], {"hyperliquid": [wallet]})
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[MetadataCache] = None,
        sources: Optional[Mapping[str, Source]] = None,
    ):
        self.settings = settings or Settings.load()
        self.cache = cache or MetadataCache(ttl=self.settings.cacheTTL)
        self.session: Optional[aiohttp.ClientSession] = None

        # pre-built adapters (tests, custom venues) win over the defaults
        self.sources: dict[str, Source] = dict(sources or {})

    async def setup(self) -> None:
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.settings.requestTimeout)
        )

        for sid, cls in SOURCES.items():
            if sid not in self.sources:
                self.sources[sid] = cls(self.session, self.cache)

    async def shutdown(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "Aggregator":
        await self.setup()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()

    def clearCache(self, source: Optional[str] = None) -> None:
        if source is None:
            self.cache.clear()
        else:
            self.cache.deleteByPrefix(f"{source}:")

    def credentials(
        self, credentialsBySource: Optional[Mapping[str, object]]
    ) -> Mapping[str, object]:
        """Explicit credentials, else whatever the settings loaded from the env."""
        if credentialsBySource is None:
            return self.settings.credentials

        return credentialsBySource

    def plan(
        self, sources: Iterable[str], accountsBySource: Mapping[str, Sequence[str]]
    ) -> list[tuple[Source, str]]:
        """Every (adapter, account) pair to run. Unknown ids fail up front,
        before any request goes out."""
        tasks = []
        for sid in sources:
            if sid not in self.sources:
                raise KeyError(f"Unknown source: {sid}")

            src = self.sources[sid]
            accounts = list(accountsBySource.get(sid) or [])
            if not accounts and src.requiresCredentials:
                accounts = [DEFAULT_ACCOUNT]

            tasks.extend((src, a) for a in accounts)

        return tasks

    async def _guard(self, src: Source, account: str, what: str, coro, empty):
        """Run one task, turning any failure into a FetchError."""
        try:
            return await coro, None
        except NotFoundError:
            logger.info("[{}] Nothing found for {} ({})", src.id, account, what)
            return empty, None
        except SourceError as e:
            logger.warning(
                "[{}] {} failed for {}: {} {}",
                src.id,
                what,
                account,
                e.kind.name,
                e.message,
            )
            return empty, FetchError.fromException(src.id, account, e)
        except Exception as e:
            logger.opt(exception=e).warning(
                "[{}] Unexpected {} failure for {}", src.id, what, account
            )
            return empty, FetchError.fromException(src.id, account, e)

    async def fetchAll(
        self,
        sources: Iterable[str],
        accountsBySource: Mapping[str, Sequence[str]],
        credentialsBySource: Optional[Mapping[str, object]] = None,
    ) -> FetchResult:
        """Normalized positions from every requested (source, account) pair.

        Never raises for a venue failure; those land in .errors tagged with
        source and account. Result order is not meaningful."""
        creds = self.credentials(credentialsBySource)
        tasks = self.plan(sources, accountsBySource)

        got = await asyncio.gather(
            *[
                self._guard(
                    src, a, "positions", src.fetchPositions(a, creds.get(src.id)), []
                )
                for src, a in tasks
            ]
        )

        result = FetchResult()
        for positions, error in got:
            result.positions.extend(positions)
            if error:
                result.errors.append(error)

        logger.info(
            "Fetched {} positions from {} tasks ({} errors)",
            len(result.positions),
            len(tasks),
            len(result.errors),
        )

        return result

    async def fetchSummaries(
        self,
        sources: Iterable[str],
        accountsBySource: Mapping[str, Sequence[str]],
        credentialsBySource: Optional[Mapping[str, object]] = None,
    ) -> tuple[dict[str, SourceBreakdown], list[FetchError]]:
        """Per-source AccountSummary (accounts merged), None, or FetchError.

        A source with at least one successful account reports its summary;
        only when every account failed does the source itself show the error."""
        creds = self.credentials(credentialsBySource)
        sources = list(sources)
        tasks = self.plan(sources, accountsBySource)

        got = await asyncio.gather(
            *[
                self._guard(
                    src, a, "summary", src.fetchAccountSummary(a, creds.get(src.id)), None
                )
                for src, a in tasks
            ]
        )

        perSource: dict[str, SourceBreakdown] = {sid: None for sid in sources}
        failures: dict[str, list[FetchError]] = defaultdict(list)
        errors = []
        for (src, _), (summary, error) in zip(tasks, got):
            if error:
                errors.append(error)
                failures[src.id].append(error)
                continue

            if summary is None:
                continue

            current = perSource[src.id]
            if isinstance(current, AccountSummary):
                summary = current.merge(summary)

            perSource[src.id] = summary

        for sid, errs in failures.items():
            if perSource[sid] is None:
                perSource[sid] = errs[0]

        return perSource, errors

    async def portfolio(
        self,
        sources: Iterable[str],
        accountsBySource: Mapping[str, Sequence[str]],
        credentialsBySource: Optional[Mapping[str, object]] = None,
    ) -> tuple[PortfolioSnapshot, FetchResult]:
        """Positions and account summaries fetched concurrently, then totaled."""
        sources = list(sources)
        result, (perSource, summaryErrors) = await asyncio.gather(
            self.fetchAll(sources, accountsBySource, credentialsBySource),
            self.fetchSummaries(sources, accountsBySource, credentialsBySource),
        )

        for sid in sources:
            current = perSource.get(sid)
            if isinstance(current, FetchError):
                continue

            perSource[sid] = summarizePositions(
                current, sid, bySource(result.positions, sid)
            )

        # a task failing both fetches is still one failure
        errors = list(result.errors)
        seen = {(e.source, e.account, e.kind) for e in errors}
        for e in summaryErrors:
            if (e.source, e.account, e.kind) not in seen:
                seen.add((e.source, e.account, e.kind))
                errors.append(e)

        return aggregate(perSource, errors), result
