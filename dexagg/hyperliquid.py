"""HyperLiquid perps (main dex plus every builder-deployed dex).

Everything goes through one POST /info endpoint keyed by request 'type'.
HyperLiquid reports nearly every risk field per position, so the normalizer
mostly copies venue values through and only derives display precision.

Docs: https://hyperliquid.gitbook.io/hyperliquid-docs/for-developers/api
"""

import asyncio

from dataclasses import dataclass, field
from decimal import Decimal

from typing import Any, AsyncIterator, Optional

import orjson
import websockets
from loguru import logger

from dexagg.decimalmath import (
    decimalOr,
    floatOr,
    intOr,
    normalizeDecimal,
    priceDecimals,
    toDecimal,
)
from dexagg.models import (
    AccountSummary,
    InstrumentMeta,
    NormalizedPosition,
    Resolution,
)
from dexagg.source import Source, collect, nowMs

API = "https://api.hyperliquid.xyz/info"
WS = "wss://api.hyperliquid.xyz/ws"


def _optional(value: Any) -> Optional[str]:
    return None if toDecimal(value) is None else normalizeDecimal(value)


def normalizePosition(
    raw: dict,
    meta: InstrumentMeta,
    account: str,
    context=None,
    now: Optional[int] = None,
) -> NormalizedPosition:
    p = raw.get("position") or {}
    size = decimalOr(p.get("szi"))
    coin = p.get("coin", "")
    leverage = p.get("leverage") or {}

    # returnOnEquity is a fraction (0.05 == 5%)
    roe = toDecimal(p.get("returnOnEquity"))

    return NormalizedPosition(
        id=f"hyperliquid-{account}-{coin}",
        source="hyperliquid",
        account=account,
        instrument=coin,
        side="long" if size >= 0 else "short",
        size=normalizeDecimal(abs(size)),
        sizeNotional=_optional(p.get("positionValue")),
        entryPrice=normalizeDecimal(p.get("entryPx")),
        markPrice=_optional(meta.markPrice),
        unrealizedPnl=normalizeDecimal(p.get("unrealizedPnl")),
        realizedPnl=None,
        roiPercent=None if roe is None else normalizeDecimal(roe * 100),
        fundingAccrued=_optional((p.get("cumFunding") or {}).get("sinceOpen")),
        leverage=float(decimalOr(leverage.get("value"))),
        marginMode="isolated" if leverage.get("type") == "isolated" else "cross",
        marginUsed=normalizeDecimal(p.get("marginUsed")),
        maxLeverage=floatOr(p.get("maxLeverage"), meta.maxLeverage),
        liquidationPrice=_optional(p.get("liquidationPx")),
        sizeDecimals=meta.sizeDecimals,
        priceDecimals=priceDecimals(p.get("entryPx"), meta.sizeDecimals),
        timestamp=now or nowMs(),
    )


def combineClearinghouseStates(states: list) -> dict:
    """Merge per-dex clearinghouse states into one.

    Accepts either bare states or the [dexName, state] pairs the
    allDexsClearinghouseState websocket channel sends. Positions are
    concatenated, margin summaries summed."""
    assetPositions: list[dict] = []
    summary = {
        "accountValue": Decimal(0),
        "totalNtlPos": Decimal(0),
        "totalRawUsd": Decimal(0),
        "totalMarginUsed": Decimal(0),
    }
    withdrawable = Decimal(0)

    for state in states:
        if isinstance(state, (list, tuple)):
            state = state[1]

        if not state:
            continue

        assetPositions.extend(state.get("assetPositions") or [])
        ms = state.get("marginSummary") or {}
        for k in summary:
            summary[k] += decimalOr(ms.get(k))

        withdrawable += decimalOr(state.get("withdrawable"))

    return dict(
        assetPositions=assetPositions,
        marginSummary={k: normalizeDecimal(v) for k, v in summary.items()},
        withdrawable=normalizeDecimal(withdrawable),
    )


class Hyperliquid(Source):
    id = "hyperliquid"
    name = "HyperLiquid"

    def positionSize(self, raw: dict) -> Any:
        return (raw.get("position") or {}).get("szi")

    def instrumentOf(self, raw: dict) -> str:
        return (raw.get("position") or {}).get("coin", "")

    def normalize(self, raw: dict, resolution: Resolution, account: str):
        return normalizePosition(
            raw, resolution.meta(self.instrumentOf(raw)), account, resolution.context
        )

    async def info(self, payload: dict, notFound: Any = None) -> Any:
        return await self.getJSON(API, method="POST", payload=payload, notFound=notFound)

    async def dexNames(self) -> list[Optional[str]]:
        """None for the main perp dex, then each builder dex name."""

        async def fetch():
            return await self.info({"type": "perpDexs"}) or [None]

        dexes = await self.cached("perpDexs", fetch)
        return [d.get("name") if d else None for d in dexes]

    async def metaAndAssetCtxs(self, dex: Optional[str] = None) -> tuple[list, list]:
        async def fetch():
            payload = {"type": "metaAndAssetCtxs"}
            if dex:
                payload["dex"] = dex

            data = await self.info(payload) or [{}, []]
            return (data[0] or {}).get("universe", []), data[1] or []

        return await self.cached("meta", fetch, qualifier=dex or "main")

    async def clearinghouseStates(self, account: str) -> list[dict]:
        """One clearinghouse state per dex. Main dex failures propagate;
        a broken builder dex only loses its own positions."""
        dexes = await self.dexNames()

        async def one(dex):
            payload = {"type": "clearinghouseState", "user": account}
            if dex:
                payload["dex"] = dex

            return await self.info(payload)

        got = await asyncio.gather(*[one(d) for d in dexes], return_exceptions=True)

        states = []
        for dex, state in zip(dexes, got):
            if isinstance(state, BaseException):
                if dex is None:
                    raise state

                logger.warning("[{}] Skipping dex {}: {}", self.id, dex, state)
                continue

            states.append(state)

        return states

    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        states = await self.clearinghouseStates(account)
        return combineClearinghouseStates(states)["assetPositions"]

    async def instrumentMap(self) -> dict[str, InstrumentMeta]:
        dexes = await self.dexNames()
        got = await asyncio.gather(
            *[self.metaAndAssetCtxs(d) for d in dexes], return_exceptions=True
        )

        instruments: dict[str, InstrumentMeta] = {}
        for dex, meta in zip(dexes, got):
            if isinstance(meta, BaseException):
                logger.warning("[{}] No metadata for dex {}: {}", self.id, dex, meta)
                continue

            universe, ctxs = meta
            for i, asset in enumerate(universe):
                if asset.get("isDelisted"):
                    continue

                ctx = ctxs[i] if i < len(ctxs) else {}
                sz = intOr(asset.get("szDecimals"), 0)
                mark = ctx.get("markPx")
                instruments[asset["name"]] = InstrumentMeta(
                    sizeDecimals=sz,
                    priceDecimals=priceDecimals(mark, sz) if toDecimal(mark) else 2,
                    markPrice=mark,
                    maxLeverage=floatOr(asset.get("maxLeverage")),
                )

        return instruments

    async def resolveMetadata(self, raws, account, credentials=None) -> Resolution:
        return Resolution(await self.instrumentMap())

    async def fetchAccountSummary(self, account: str, credentials=None):
        states, portfolio = await asyncio.gather(
            self.clearinghouseStates(account),
            self.info({"type": "portfolio", "user": account}),
        )

        combined = combineClearinghouseStates(states)

        unrealized = sum(
            (
                decimalOr((p.get("position") or {}).get("unrealizedPnl"))
                for p in combined["assetPositions"]
            ),
            Decimal(0),
        )

        # portfolio is [[period, {accountValueHistory, pnlHistory, vlm}], ...]
        volume = Decimal(0)
        pnl = Decimal(0)
        for period, data in portfolio or []:
            if period == "perpAllTime":
                volume = decimalOr(data.get("vlm"))
                history = data.get("pnlHistory") or []
                if history:
                    pnl = decimalOr(history[-1][1])

        return AccountSummary(
            source=self.id,
            account=account,
            balance=decimalOr(combined["marginSummary"]["accountValue"]),
            totalVolume=volume,
            realizedPnl=pnl,
            unrealizedPnl=unrealized,
        )


@dataclass(slots=True)
class StreamUpdate:
    account: str
    positions: list[NormalizedPosition]
    state: dict = field(default_factory=dict)


class HyperliquidStream:
    """Live positions via the allDexsClearinghouseState websocket channel.

    Pushed states run through the same collect() pipeline as polled ones,
    so metadata still comes from the shared cache."""

    def __init__(self, source: Hyperliquid, accounts: list[str], url: str = WS):
        self.source = source
        self.accounts = accounts
        self.url = url

    def subscriptions(self) -> list[bytes]:
        return [
            orjson.dumps(
                {
                    "method": "subscribe",
                    "subscription": {"type": "allDexsClearinghouseState", "user": a},
                }
            )
            for a in self.accounts
        ]

    async def handleMessage(self, message: bytes | str) -> Optional[StreamUpdate]:
        """Parse one websocket frame; None for anything but position state."""
        msg = orjson.loads(message)
        if msg.get("channel") != "allDexsClearinghouseState":
            return None

        data = msg.get("data") or {}
        user = data.get("user", "")
        combined = combineClearinghouseStates(data.get("clearinghouseStates") or [])
        positions = await collect(self.source, combined["assetPositions"], user)

        return StreamUpdate(user, positions, combined)

    async def updates(self) -> AsyncIterator[StreamUpdate]:
        async with websockets.connect(self.url) as ws:
            for sub in self.subscriptions():
                await ws.send(sub.decode())

            logger.info(
                "[{}] Streaming positions for {} accounts",
                self.source.id,
                len(self.accounts),
            )

            async for message in ws:
                update = await self.handleMessage(message)
                if update:
                    yield update
