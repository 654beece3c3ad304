"""Extended (Starknet perps).

Authenticated with an X-Api-Key header. Every response is wrapped in
{status: OK|ERROR, data, error}. Extended is cross margin only and reports
value, margin, leverage, and liquidation price per position.
"""

from typing import Any, Optional

from dexagg.decimalmath import decimalOr, floatOr, intOr, normalizeDecimal, toDecimal
from dexagg.errors import TransportError
from dexagg.models import AccountSummary, InstrumentMeta, NormalizedPosition, Resolution
from dexagg.risk import marginUsed, roi
from dexagg.source import Source, nowMs, timestampMs

BASE = "https://api.starknet.extended.exchange/api/v1"

MARKETS_TTL = 60


def stripQuote(market: str) -> str:
    """'BTC-USD' -> 'BTC'"""
    return market[: -len("-USD")] if market.endswith("-USD") else market


def normalizePosition(
    raw: dict,
    meta: InstrumentMeta,
    account: str,
    context=None,
    now: Optional[int] = None,
) -> NormalizedPosition:
    market = raw.get("market", "")
    sizeNotional = abs(decimalOr(raw.get("value")))
    leverage = decimalOr(raw.get("leverage"))

    # reported margin when present, else notional / leverage
    margin = decimalOr(raw.get("margin"))
    if margin <= 0:
        margin = marginUsed(False, 0, sizeNotional, leverage)

    unrealized = decimalOr(raw.get("unrealisedPnl"))
    r = roi(unrealized, margin)

    return NormalizedPosition(
        id=f"extended-{account}-{market}",
        source="extended",
        account=account,
        instrument=stripQuote(market),
        side="short" if str(raw.get("side", "")).upper() == "SHORT" else "long",
        size=normalizeDecimal(raw.get("size")),
        sizeNotional=normalizeDecimal(sizeNotional),
        entryPrice=normalizeDecimal(raw.get("openPrice")),
        markPrice=None
        if toDecimal(raw.get("markPrice")) is None
        else normalizeDecimal(raw["markPrice"]),
        unrealizedPnl=normalizeDecimal(unrealized),
        realizedPnl=None
        if toDecimal(raw.get("realisedPnl")) is None
        else normalizeDecimal(raw["realisedPnl"]),
        roiPercent=None if r is None else normalizeDecimal(r),
        fundingAccrued=None,
        leverage=float(leverage),
        marginMode="cross",
        marginUsed=normalizeDecimal(margin),
        maxLeverage=meta.maxLeverage,
        liquidationPrice=raw.get("liquidationPrice"),
        sizeDecimals=meta.sizeDecimals,
        priceDecimals=meta.priceDecimals,
        timestamp=timestampMs(raw.get("updatedTime"), now or nowMs()),
    )


class Extended(Source):
    id = "extended"
    name = "Extended"
    requiresCredentials = True

    def positionSize(self, raw: dict) -> Any:
        return raw.get("size")

    def instrumentOf(self, raw: dict) -> str:
        return raw.get("market", "")

    def normalize(self, raw: dict, resolution: Resolution, account: str):
        return normalizePosition(
            raw, resolution.meta(self.instrumentOf(raw)), account, resolution.context
        )

    def checkBody(self, body: Any) -> Any:
        if isinstance(body, dict) and body.get("status") == "ERROR":
            message = (body.get("error") or {}).get("message") or "Unknown"
            raise TransportError(self.id, f"API error: {message}")

        return body

    async def authed(self, path: str, credentials) -> Any:
        creds = self.requireCredentials(credentials)
        body = await self.getJSON(f"{BASE}{path}", headers={"X-Api-Key": creds.apiKey})
        return (body or {}).get("data")

    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        return await self.authed("/user/positions", credentials) or []

    async def markets(self) -> list[dict]:
        async def fetch():
            body = await self.getJSON(f"{BASE}/info/markets")
            return (body or {}).get("data") or []

        return await self.cached("markets", fetch, ttl=MARKETS_TTL)

    async def resolveMetadata(self, raws, account, credentials=None) -> Resolution:
        instruments = {}
        for m in await self.markets():
            if not (m.get("active") and m.get("status") == "ACTIVE"):
                continue

            instruments[m["name"]] = InstrumentMeta(
                sizeDecimals=intOr(m.get("assetPrecision"), 0),
                priceDecimals=intOr(m.get("collateralAssetPrecision"), 2),
                maxLeverage=floatOr((m.get("tradingConfig") or {}).get("maxLeverage")),
            )

        return Resolution(instruments)

    async def fetchAccountSummary(self, account: str, credentials=None):
        balance = await self.authed("/user/balance", credentials)
        if not balance:
            return None

        return AccountSummary(
            source=self.id,
            account=account,
            balance=decimalOr(balance.get("equity")),
            unrealizedPnl=decimalOr(balance.get("unrealisedPnl")),
        )
