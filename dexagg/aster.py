"""Aster (Binance-style futures API).

Positions come from signed endpoints: HMAC-SHA256 over the sorted query
string (with a fresh timestamp) plus the X-MBX-APIKEY header. Market precision
comes from the public exchangeInfo endpoint.
"""

import hashlib
import hmac

from typing import Any, Optional

from dexagg.decimalmath import decimalOr, intOr, normalizeDecimal, toDecimal
from dexagg.models import AccountSummary, InstrumentMeta, NormalizedPosition, Resolution
from dexagg.risk import marginUsed, roi, sideFromSignedSize
from dexagg.source import Source, nowMs, timestampMs

BASE = "https://fapi.asterdex.com"

# exchangeInfo changes more often than other venues' market lists
EXCHANGE_INFO_TTL = 60

QUOTE_SUFFIXES = ("USDT", "USDC")


def stripQuote(symbol: str) -> str:
    """'BTCUSDT' -> 'BTC'"""
    for suffix in QUOTE_SUFFIXES:
        if symbol.endswith(suffix) and len(symbol) > len(suffix):
            return symbol[: -len(suffix)]

    return symbol


def sign(params: dict[str, Any], secret: str) -> str:
    """Sorted query string with its HMAC-SHA256 signature appended."""
    query = "&".join(f"{k}={params[k]}" for k in sorted(params))
    signature = hmac.new(secret.encode(), query.encode(), hashlib.sha256).hexdigest()
    return f"{query}&signature={signature}"


def normalizePosition(
    raw: dict,
    meta: InstrumentMeta,
    account: str,
    context=None,
    now: Optional[int] = None,
) -> NormalizedPosition:
    symbol = raw.get("symbol", "")
    size = decimalOr(raw.get("positionAmt"))
    leverage = decimalOr(raw.get("leverage"))
    isolated = str(raw.get("marginType", "")).lower() == "isolated"
    sizeNotional = abs(decimalOr(raw.get("notional")))

    margin = marginUsed(isolated, raw.get("isolatedMargin"), sizeNotional, leverage)
    unrealized = decimalOr(raw.get("unRealizedProfit"))
    r = roi(unrealized, margin)

    # hedge mode holds LONG and SHORT on one symbol at once
    positionSide = raw.get("positionSide") or "BOTH"
    key = symbol if positionSide == "BOTH" else f"{symbol}-{positionSide}"

    return NormalizedPosition(
        id=f"aster-{account}-{key}",
        source="aster",
        account=account,
        instrument=stripQuote(symbol),
        side=sideFromSignedSize(size),
        size=normalizeDecimal(abs(size)),
        sizeNotional=normalizeDecimal(sizeNotional),
        entryPrice=normalizeDecimal(raw.get("entryPrice")),
        markPrice=None
        if toDecimal(raw.get("markPrice")) is None
        else normalizeDecimal(raw["markPrice"]),
        unrealizedPnl=normalizeDecimal(unrealized),
        realizedPnl=None,
        roiPercent=None if r is None else normalizeDecimal(r),
        fundingAccrued=None,
        leverage=float(leverage),
        marginMode="isolated" if isolated else "cross",
        marginUsed=normalizeDecimal(margin),
        maxLeverage=meta.maxLeverage,
        liquidationPrice=raw.get("liquidationPrice"),
        sizeDecimals=meta.sizeDecimals,
        priceDecimals=meta.priceDecimals,
        timestamp=timestampMs(raw.get("updateTime"), now or nowMs()),
    )


class Aster(Source):
    id = "aster"
    name = "Aster"
    requiresCredentials = True

    def positionSize(self, raw: dict) -> Any:
        return raw.get("positionAmt")

    def instrumentOf(self, raw: dict) -> str:
        # metadata is keyed by the raw exchange symbol
        return raw.get("symbol", "")

    def normalize(self, raw: dict, resolution: Resolution, account: str):
        return normalizePosition(
            raw, resolution.meta(self.instrumentOf(raw)), account, resolution.context
        )

    async def signed(self, path: str, credentials, params: Optional[dict] = None):
        creds = self.requireCredentials(credentials)
        params = dict(params or {})
        params["timestamp"] = nowMs()

        return await self.getJSON(
            f"{BASE}{path}?{sign(params, creds.apiSecret)}",
            headers={"X-MBX-APIKEY": creds.apiKey},
        )

    async def fetchRawPositions(self, account: str, credentials=None) -> list[dict]:
        return await self.signed("/fapi/v2/positionRisk", credentials) or []

    async def exchangeInfo(self) -> list[dict]:
        async def fetch():
            data = await self.getJSON(f"{BASE}/fapi/v1/exchangeInfo")
            return (data or {}).get("symbols") or []

        return await self.cached("exchangeInfo", fetch, ttl=EXCHANGE_INFO_TTL)

    async def resolveMetadata(self, raws, account, credentials=None) -> Resolution:
        instruments = {
            s["symbol"]: InstrumentMeta(
                sizeDecimals=intOr(s.get("quantityPrecision"), 0),
                priceDecimals=intOr(s.get("pricePrecision"), 2),
            )
            for s in await self.exchangeInfo()
        }

        return Resolution(instruments)

    async def fetchAccountSummary(self, account: str, credentials=None):
        data = await self.signed("/fapi/v2/account", credentials)
        if not data:
            return None

        return AccountSummary(
            source=self.id,
            account=account,
            balance=decimalOr(
                data.get("totalMarginBalance", data.get("totalWalletBalance"))
            ),
            unrealizedPnl=decimalOr(data.get("totalUnrealizedProfit")),
        )
