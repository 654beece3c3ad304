import asyncio
import hashlib
import hmac
from decimal import Decimal

import pytest

from dexagg.aster import BASE, Aster, normalizePosition, sign, stripQuote
from dexagg.config import AsterCredentials
from dexagg.errors import AuthError
from dexagg.models import InstrumentMeta

NOW = 1700000000000

CREDS = AsterCredentials("key", "secret")


def raw(**kw):
    r = dict(
        symbol="BTCUSDT",
        positionAmt="-0.01",
        entryPrice="60000",
        markPrice="59000",
        unRealizedProfit="10",
        liquidationPrice="70000",
        leverage="10",
        marginType="cross",
        isolatedMargin="0",
        notional="-590",
        positionSide="BOTH",
        updateTime=NOW,
    )
    r |= kw
    return r


def test_strip_quote():
    assert stripQuote("BTCUSDT") == "BTC"
    assert stripQuote("ETHUSDC") == "ETH"
    assert stripQuote("USDT") == "USDT"
    assert stripQuote("SOLBUSD") == "SOLBUSD"


def test_sign():
    query = sign({"timestamp": 1, "a": "x"}, "secret")
    expected = hmac.new(b"secret", b"a=x&timestamp=1", hashlib.sha256).hexdigest()
    assert query == f"a=x&timestamp=1&signature={expected}"


def test_normalize_cross():
    p = normalizePosition(raw(), InstrumentMeta(sizeDecimals=3, priceDecimals=1), "default")

    assert p.id == "aster-default-BTCUSDT"
    assert p.instrument == "BTC"
    assert p.side == "short"
    assert p.size == "0.01"
    assert p.sizeNotional == "590"
    assert p.marginUsed == "59"
    assert p.marginMode == "cross"
    assert p.roiPercent.startswith("16.949")
    assert p.liquidationPrice == "70000"
    assert p.timestamp == NOW


def test_normalize_isolated_and_hedge_mode():
    p = normalizePosition(
        raw(marginType="isolated", isolatedMargin="80", positionSide="SHORT"),
        InstrumentMeta(),
        "default",
    )

    assert p.id == "aster-default-BTCUSDT-SHORT"
    assert p.isolated
    assert p.marginUsed == "80"


def test_normalize_zero_liquidation_is_none():
    p = normalizePosition(raw(liquidationPrice="0"), InstrumentMeta(), "default")
    assert p.liquidationPrice is None


def test_requires_credentials(venue):
    src, fake = venue(Aster, {})

    with pytest.raises(AuthError):
        asyncio.run(src.fetchPositions("default"))

    assert not fake.calls


def routes():
    return {
        f"{BASE}/fapi/v2/positionRisk": [raw(), raw(symbol="ETHUSDT", positionAmt="0")],
        f"{BASE}/fapi/v1/exchangeInfo": {
            "symbols": [
                {"symbol": "BTCUSDT", "quantityPrecision": 3, "pricePrecision": 1}
            ]
        },
        f"{BASE}/fapi/v2/account": {
            "totalMarginBalance": "5000.5",
            "totalWalletBalance": "4990",
            "totalUnrealizedProfit": "10.5",
        },
    }


def test_signed_positions(venue):
    src, fake = venue(Aster, routes())
    positions = asyncio.run(src.fetchPositions("default", CREDS))

    assert [p.id for p in positions] == ["aster-default-BTCUSDT"]
    assert positions[0].sizeDecimals == 3
    assert positions[0].priceDecimals == 1

    call = fake.called(f"{BASE}/fapi/v2/positionRisk")[0]
    assert call["headers"] == {"X-MBX-APIKEY": "key"}
    assert "timestamp=" in call["url"]
    assert "&signature=" in call["url"]


def test_account_summary(venue):
    src, _ = venue(Aster, routes())
    summary = asyncio.run(src.fetchAccountSummary("default", CREDS))

    assert summary.balance == Decimal("5000.5")
    assert summary.unrealizedPnl == Decimal("10.5")


def test_null_precision_uses_defaults(venue):
    r = routes()
    r[f"{BASE}/fapi/v1/exchangeInfo"] = {
        "symbols": [
            {"symbol": "BTCUSDT", "quantityPrecision": None, "pricePrecision": "?"}
        ]
    }
    src, _ = venue(Aster, r)

    positions = asyncio.run(src.fetchPositions("default", CREDS))
    assert positions[0].sizeDecimals == 0
    assert positions[0].priceDecimals == 2
