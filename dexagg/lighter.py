"""Lighter (zk order book perps).

One L1 address owns a master account plus any number of sub-accounts, each
with its own 'account_index'. Positions from every sub-account are flattened
into one list, so the index has to be part of the position id or two
sub-accounts holding the same market would collide.

Docs: https://apidocs.lighter.xyz
"""

import asyncio

from decimal import Decimal

from typing import Any, Optional

from loguru import logger

from dexagg.decimalmath import decimalOr, intOr, normalizeDecimal, toDecimal
from dexagg.errors import AuthError
from dexagg.models import AccountSummary, InstrumentMeta, NormalizedPosition, Resolution
from dexagg.risk import leverageFromInitialMarginFraction, notional, roi
from dexagg.source import Source, collect, nowMs

BASE = "https://mainnet.zklighter.elliot.ai/api/v1"

# body-level error code Lighter sends for a bad or expired read token
INVALID_AUTH = 20013


def normalizePosition(
    raw: dict,
    meta: InstrumentMeta,
    account: str,
    context=None,
    now: Optional[int] = None,
) -> NormalizedPosition:
    # IMF arrives as a percent string: "5.00" means 5%, i.e. 20x
    imfPct = decimalOr(raw.get("initial_margin_fraction"))
    imf = imfPct / 100

    size = abs(decimalOr(raw.get("position")))
    entry = decimalOr(raw.get("avg_entry_price"))
    mark = decimalOr(meta.markPrice)
    positionValue = abs(decimalOr(raw.get("position_value")))

    # mark first, then the venue's position value, then entry
    sizeNotional: Optional[Decimal] = None
    if mark > 0:
        sizeNotional = notional(size, mark)
    elif positionValue > 0:
        sizeNotional = positionValue
    elif entry > 0:
        sizeNotional = notional(size, entry)

    # allocated_margin is only populated for isolated positions; cross
    # positions get an estimate of notional * IMF
    allocated = decimalOr(raw.get("allocated_margin"))
    if allocated > 0:
        margin = allocated
    elif sizeNotional is not None and imf > 0:
        margin = sizeNotional * imf
    else:
        margin = Decimal(0)

    unrealized = raw.get("unrealized_pnl")
    r = roi(unrealized, margin)

    accountIndex = raw.get("account_index")
    accountIndex = "na" if accountIndex is None else accountIndex
    symbol = raw.get("symbol", "")

    return NormalizedPosition(
        id=f"lighter-{account}-{accountIndex}-{symbol}",
        source="lighter",
        account=account,
        instrument=symbol,
        side="long" if raw.get("sign") == 1 else "short",
        size=normalizeDecimal(size),
        sizeNotional=None if sizeNotional is None else normalizeDecimal(sizeNotional),
        entryPrice=normalizeDecimal(entry),
        markPrice=normalizeDecimal(mark) if mark > 0 else None,
        unrealizedPnl=normalizeDecimal(unrealized),
        realizedPnl=None
        if toDecimal(raw.get("realized_pnl")) is None
        else normalizeDecimal(raw["realized_pnl"]),
        roiPercent=None if r is None else normalizeDecimal(r),
        fundingAccrued=None
        if toDecimal(raw.get("total_funding_paid_out")) is None
        else normalizeDecimal(raw["total_funding_paid_out"]),
        leverage=float(leverageFromInitialMarginFraction(imf)),
        marginMode="isolated" if raw.get("margin_mode") == 1 else "cross",
        marginUsed=normalizeDecimal(margin),
        maxLeverage=meta.maxLeverage,
        liquidationPrice=raw.get("liquidation_price"),
        sizeDecimals=meta.sizeDecimals,
        priceDecimals=meta.priceDecimals,
        timestamp=now or nowMs(),
    )


class Lighter(Source):
    id = "lighter"
    name = "Lighter"

    def positionSize(self, raw: dict) -> Any:
        return raw.get("position")

    def instrumentOf(self, raw: dict) -> str:
        return raw.get("symbol", "")

    def normalize(self, raw: dict, resolution: Resolution, account: str):
        return normalizePosition(
            raw, resolution.meta(self.instrumentOf(raw)), account, resolution.context
        )

    def checkBody(self, body: Any) -> Any:
        if isinstance(body, dict) and body.get("code") == INVALID_AUTH:
            raise AuthError(self.id, body.get("message") or "invalid read token")

        return body

    async def accounts(self, account: str, credentials=None) -> list[dict]:
        params = {"by": "l1_address", "value": account}
        if credentials is not None:
            params["auth"] = credentials.readToken

        # unknown address is a 404 here, which just means "no accounts"
        data = await self.getJSON(f"{BASE}/account", params=params, notFound={})
        return (data or {}).get("accounts") or []

    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        positions = []
        for acct in await self.accounts(account, credentials):
            for p in acct.get("positions") or []:
                positions.append({**p, "account_index": acct.get("account_index")})

        return positions

    async def orderBooks(self) -> list[dict]:
        async def fetch():
            data = await self.getJSON(f"{BASE}/orderBooks")
            return (data or {}).get("order_books") or []

        return await self.cached("orderBooks", fetch)

    async def markPrice(self, symbol: str) -> Optional[str]:
        """Mark price from order book details. Never cached: it moves constantly."""
        try:
            data = await self.getJSON(
                f"{BASE}/orderBookDetails", params={"symbol": symbol}, notFound=None
            )
        except AuthError:
            raise
        except Exception as e:
            logger.warning("[{}] No mark price for {}: {}", self.id, symbol, e)
            return None

        return ((data or {}).get("order_book") or {}).get("mark_price")

    async def resolveMetadata(self, raws, account, credentials=None) -> Resolution:
        symbols = sorted({self.instrumentOf(r) for r in raws})
        books, marks = await asyncio.gather(
            self.orderBooks(), asyncio.gather(*[self.markPrice(s) for s in symbols])
        )

        bySymbol = {b.get("symbol"): b for b in books}
        instruments = {}
        for symbol, mark in zip(symbols, marks):
            book = bySymbol.get(symbol, {})
            instruments[symbol] = InstrumentMeta(
                sizeDecimals=intOr(book.get("supported_size_decimals"), 0),
                priceDecimals=intOr(book.get("supported_price_decimals"), 2),
                markPrice=mark,
            )

        return Resolution(instruments)

    async def fetchAccountSummary(self, account: str, credentials=None):
        accounts = await self.accounts(account, credentials)
        if not accounts:
            return None

        balance = Decimal(0)
        realized = Decimal(0)
        unrealized = Decimal(0)
        for acct in accounts:
            balance += decimalOr(acct.get("total_asset_value", acct.get("collateral")))
            for p in acct.get("positions") or []:
                realized += decimalOr(p.get("realized_pnl"))
                unrealized += decimalOr(p.get("unrealized_pnl"))

        return AccountSummary(
            source=self.id,
            account=account,
            balance=balance,
            realizedPnl=realized,
            unrealizedPnl=unrealized,
        )
