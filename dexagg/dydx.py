"""dYdX v4 (Cosmos perps) via the public indexer.

dYdX is cross margin only and reports neither per-position margin nor
liquidation price. Both are derived here from the subaccount's equity and
free collateral plus each market's margin fractions:

  - margin used across the account is equity - freeCollateral, split across
    positions by their share of total notional
  - liquidation price is solved against equity minus every *other*
    position's maintenance requirement

Docs: https://docs.dydx.exchange/api_integration-indexer/indexer_api
"""

import asyncio

from decimal import Decimal

from typing import Any, Optional

from dexagg.decimalmath import decimalOr, decimalsFromStep, normalizeDecimal, toDecimal
from dexagg.models import (
    AccountContext,
    AccountSummary,
    InstrumentMeta,
    NormalizedPosition,
    Resolution,
)
from dexagg.risk import (
    crossLiquidationPrice,
    crossMarginContext,
    leverageFromInitialMarginFraction,
    marginUsed,
    notional,
    proportionalMargin,
    roi,
)
from dexagg.source import Source, nowMs, timestampMs

BASE = "https://indexer.dydx.trade/v4"

SUBACCOUNT = 0

# used when a market omits its margin fractions
DEFAULT_MMF = Decimal("0.03")
DEFAULT_IMF = Decimal("0.05")
DEFAULT_SIZE_DECIMALS = 4


def stripQuote(market: str) -> str:
    return market[: -len("-USD")] if market.endswith("-USD") else market


def positionNotional(raw: dict, meta: InstrumentMeta) -> Decimal:
    """|size| at mark, or at entry when the oracle price is missing."""
    mark = toDecimal(meta.markPrice)
    price = mark if mark else decimalOr(raw.get("entryPrice"))
    return notional(raw.get("size"), price)


def normalizePosition(
    raw: dict,
    meta: InstrumentMeta,
    account: str,
    context: Optional[AccountContext] = None,
    now: Optional[int] = None,
) -> NormalizedPosition:
    market = raw.get("market", "")
    side = "short" if str(raw.get("side", "")).upper() == "SHORT" else "long"
    size = abs(decimalOr(raw.get("size")))
    entry = decimalOr(raw.get("entryPrice"))
    context = context or AccountContext()

    n = positionNotional(raw, meta)
    margin, leverage = proportionalMargin(
        n, context.totalNotional, context.totalMarginUsed
    )
    if margin <= 0:
        # no account-level margin to split: assume 1x on this position
        margin = marginUsed(False, 0, n, leverage)

    unrealized = decimalOr(raw.get("unrealizedPnl"))
    r = roi(unrealized, margin)

    liq = crossLiquidationPrice(
        side,
        entry,
        size,
        context.equity,
        context.otherMaintenance(market),
        meta.maintenanceMarginFraction or DEFAULT_MMF,
    )

    subaccount = raw.get("subaccountNumber", SUBACCOUNT)

    return NormalizedPosition(
        id=f"dydx-{account}-{subaccount}-{market}",
        source="dydx",
        account=account,
        instrument=stripQuote(market),
        side=side,
        size=normalizeDecimal(size),
        sizeNotional=normalizeDecimal(n),
        entryPrice=normalizeDecimal(entry),
        markPrice=normalizeDecimal(meta.markPrice) if toDecimal(meta.markPrice) else None,
        unrealizedPnl=normalizeDecimal(unrealized),
        realizedPnl=None
        if toDecimal(raw.get("realizedPnl")) is None
        else normalizeDecimal(raw["realizedPnl"]),
        roiPercent=None if r is None else normalizeDecimal(r),
        fundingAccrued=None
        if toDecimal(raw.get("netFunding")) is None
        else normalizeDecimal(raw["netFunding"]),
        leverage=float(leverage),
        marginMode="cross",
        marginUsed=normalizeDecimal(margin),
        maxLeverage=float(
            leverageFromInitialMarginFraction(meta.initialMarginFraction or DEFAULT_IMF)
        ),
        liquidationPrice=None if liq is None else normalizeDecimal(liq),
        sizeDecimals=meta.sizeDecimals,
        priceDecimals=meta.priceDecimals,
        timestamp=timestampMs(raw.get("createdAt"), now or nowMs()),
    )


class Dydx(Source):
    id = "dydx"
    name = "dYdX"

    def positionSize(self, raw: dict) -> Any:
        return raw.get("size")

    def instrumentOf(self, raw: dict) -> str:
        return raw.get("market", "")

    def normalize(self, raw: dict, resolution: Resolution, account: str):
        return normalizePosition(
            raw, resolution.meta(self.instrumentOf(raw)), account, resolution.context
        )

    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        data = await self.getJSON(
            f"{BASE}/perpetualPositions",
            params={"address": account, "subaccountNumber": SUBACCOUNT, "status": "OPEN"},
            notFound={},
        )
        return (data or {}).get("positions") or []

    async def markets(self) -> dict[str, InstrumentMeta]:
        async def fetch():
            data = await self.getJSON(f"{BASE}/perpetualMarkets")
            instruments = {}
            for ticker, m in ((data or {}).get("markets") or {}).items():
                step, tick = m.get("stepSize"), m.get("tickSize")
                instruments[ticker] = InstrumentMeta(
                    sizeDecimals=decimalsFromStep(step) if step else DEFAULT_SIZE_DECIMALS,
                    priceDecimals=decimalsFromStep(tick) if tick else 2,
                    markPrice=m.get("oraclePrice"),
                    maintenanceMarginFraction=toDecimal(m.get("maintenanceMarginFraction"))
                    or DEFAULT_MMF,
                    initialMarginFraction=toDecimal(m.get("initialMarginFraction"))
                    or DEFAULT_IMF,
                )

            return instruments

        return await self.cached("markets", fetch)

    async def subaccount(self, account: str) -> Optional[dict]:
        data = await self.getJSON(
            f"{BASE}/addresses/{account}/subaccountNumber/{SUBACCOUNT}", notFound=None
        )
        return (data or {}).get("subaccount")

    async def resolveMetadata(self, raws, account, credentials=None) -> Resolution:
        instruments, sub = await asyncio.gather(self.markets(), self.subaccount(account))
        sub = sub or {}

        default = InstrumentMeta(sizeDecimals=DEFAULT_SIZE_DECIMALS)
        exposures = []
        for raw in raws:
            market = self.instrumentOf(raw)
            meta = instruments.get(market, default)
            exposures.append(
                (
                    market,
                    positionNotional(raw, meta),
                    meta.maintenanceMarginFraction or DEFAULT_MMF,
                )
            )

        context = crossMarginContext(
            exposures, sub.get("equity"), sub.get("freeCollateral")
        )

        # keep the dYdX size decimals default for markets missing from the list
        resolved = {m: instruments.get(m, default) for m, _, _ in exposures}
        return Resolution(resolved, context)

    async def fetchAccountSummary(self, account: str, credentials=None):
        sub, history = await asyncio.gather(
            self.subaccount(account),
            self.getJSON(
                f"{BASE}/historical-pnl",
                params={"address": account, "subaccountNumber": SUBACCOUNT, "limit": 1},
                notFound={},
            ),
        )

        if sub is None:
            return None

        pnl = (history or {}).get("historicalPnl") or []
        return AccountSummary(
            source=self.id,
            account=account,
            balance=decimalOr(sub.get("equity")),
            realizedPnl=decimalOr(pnl[0].get("totalPnl")) if pnl else Decimal(0),
        )
