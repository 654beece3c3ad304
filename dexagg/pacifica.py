"""Pacifica (Solana perps).

Pacifica positions carry only side, amount, entry, and margin. Mark price,
leverage, and display precision all come from separate endpoints, and PnL has
to be computed locally from the mark.

Docs: https://docs.pacifica.fi/api-documentation/api/rest-api
"""

import asyncio

from decimal import Decimal

from typing import Any, Optional

from loguru import logger

from dexagg.decimalmath import (
    decimalOr,
    decimalsFromStep,
    floatOr,
    normalizeDecimal,
    toDecimal,
)
from dexagg.errors import TransportError
from dexagg.models import (
    AccountContext,
    AccountSummary,
    InstrumentMeta,
    NormalizedPosition,
    Resolution,
    Side,
)
from dexagg.risk import marginUsed, notional, pnl, roi
from dexagg.source import Source, nowMs, timestampMs

BASE = "https://api.pacifica.fi/api/v1"

LONG_SIDES = {"long", "buy", "bid"}
SHORT_SIDES = {"short", "sell", "ask"}


def normalizeSide(side: Any) -> Side:
    s = str(side or "").strip().lower()
    if s in SHORT_SIDES:
        return "short"

    if s not in LONG_SIDES:
        logger.warning("Unknown position side {!r}, assuming long", side)

    return "long"


def normalizePosition(
    raw: dict,
    meta: InstrumentMeta,
    account: str,
    context: Optional[AccountContext] = None,
    now: Optional[int] = None,
) -> NormalizedPosition:
    symbol = raw.get("symbol", "")
    side = normalizeSide(raw.get("side"))
    amount = abs(decimalOr(raw.get("amount")))
    entry = decimalOr(raw.get("entry_price"))
    apiMargin = decimalOr(raw.get("margin"))
    isolated = bool(raw.get("isolated"))

    # configured leverage, else the market max, else 1x
    leverage = None
    if context is not None:
        leverage = context.leverage.get(symbol)

    if leverage is None:
        leverage = meta.maxLeverage or 1

    mark = toDecimal(meta.markPrice)
    if mark is not None and mark <= 0:
        mark = None

    sizeNotional = None
    unrealized = Decimal(0)
    roiPercent = None
    if mark is not None:
        sizeNotional = notional(amount, mark)
        unrealized = pnl(side, entry, mark, amount)
        r = roi(unrealized, marginUsed(isolated, apiMargin, sizeNotional, leverage))
        roiPercent = None if r is None else normalizeDecimal(r)

    # margin is reported even without a mark, priced at entry instead
    margin = marginUsed(
        isolated, apiMargin, notional(amount, mark if mark is not None else entry), leverage
    )

    return NormalizedPosition(
        id=f"pacifica-{account}-{symbol}",
        source="pacifica",
        account=account,
        instrument=symbol,
        side=side,
        size=normalizeDecimal(amount),
        sizeNotional=None if sizeNotional is None else normalizeDecimal(sizeNotional),
        entryPrice=normalizeDecimal(entry),
        markPrice=None if mark is None else normalizeDecimal(mark),
        unrealizedPnl=normalizeDecimal(unrealized),
        realizedPnl=None,
        roiPercent=roiPercent,
        fundingAccrued=None
        if toDecimal(raw.get("funding")) is None
        else normalizeDecimal(raw["funding"]),
        leverage=float(leverage),
        marginMode="isolated" if isolated else "cross",
        marginUsed=normalizeDecimal(margin),
        maxLeverage=meta.maxLeverage,
        liquidationPrice=raw.get("liquidation_price"),
        sizeDecimals=meta.sizeDecimals,
        priceDecimals=meta.priceDecimals,
        timestamp=timestampMs(raw.get("updated_at"), now or nowMs()),
    )


class Pacifica(Source):
    id = "pacifica"
    name = "Pacifica"

    def positionSize(self, raw: dict) -> Any:
        return raw.get("amount")

    def instrumentOf(self, raw: dict) -> str:
        return raw.get("symbol", "")

    def normalize(self, raw: dict, resolution: Resolution, account: str):
        return normalizePosition(
            raw, resolution.meta(self.instrumentOf(raw)), account, resolution.context
        )

    def checkBody(self, body: Any) -> Any:
        # every response is {success, data, error, code}
        if isinstance(body, dict) and body.get("success") is False:
            raise TransportError(self.id, body.get("error") or "request failed")

        return body

    async def data(self, path: str, params=None, default=None) -> Any:
        body = await self.getJSON(f"{BASE}/{path}", params=params, notFound=None)
        if not body or body.get("data") is None:
            return default

        return body["data"]

    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        return await self.data("positions", {"account": account}, [])

    async def markets(self) -> list[dict]:
        async def fetch():
            return await self.data("info", default=[])

        return await self.cached("markets", fetch)

    async def resolveMetadata(self, raws, account, credentials=None) -> Resolution:
        markets, settings, prices = await asyncio.gather(
            self.markets(),
            self.data("account/settings", {"account": account}, []),
            self.data("info/prices", default=[]),
        )

        marks = {p.get("symbol"): p.get("mark") for p in prices}
        instruments = {}
        for m in markets:
            symbol = m.get("symbol")
            instruments[symbol] = InstrumentMeta(
                sizeDecimals=decimalsFromStep(m.get("lot_size")),
                priceDecimals=decimalsFromStep(m.get("tick_size")),
                markPrice=marks.get(symbol),
                maxLeverage=floatOr(m.get("max_leverage")),
            )

        # unset or unparsable leverage falls back to the market max
        leverage = {}
        for s in settings:
            configured = floatOr(s.get("leverage"))
            if configured:
                leverage[s.get("symbol")] = configured

        return Resolution(instruments, AccountContext(leverage=leverage))

    async def fetchAccountSummary(self, account: str, credentials=None):
        history, volume = await asyncio.gather(
            self.data("portfolio", {"account": account, "time_range": "all"}, []),
            self.data("portfolio/volume", {"account": account}, {}),
        )

        if not history and not volume:
            return None

        latest = history[-1] if history else {}
        return AccountSummary(
            source=self.id,
            account=account,
            balance=decimalOr(latest.get("account_equity")),
            totalVolume=decimalOr(volume.get("volume_all_time")),
            realizedPnl=decimalOr(latest.get("pnl")),
        )
