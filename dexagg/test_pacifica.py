import asyncio
from decimal import Decimal

import pytest

from dexagg.errors import TransportError
from dexagg.models import AccountContext, InstrumentMeta
from dexagg.pacifica import BASE, Pacifica, normalizePosition, normalizeSide

NOW = 1700000000000


def raw(**kw):
    r = dict(
        symbol="SOL",
        side="bid",
        amount="10",
        entry_price="100",
        margin="0",
        funding="-0.5",
        isolated=False,
        created_at=1690000000000,
        updated_at=1700000000123,
    )
    r |= kw
    return r


def test_sides():
    assert normalizeSide("bid") == "long"
    assert normalizeSide("ASK") == "short"
    assert normalizeSide("sell") == "short"
    assert normalizeSide("long") == "long"
    assert normalizeSide("sideways") == "long"


def test_normalize_with_mark_and_leverage():
    p = normalizePosition(
        raw(),
        InstrumentMeta(sizeDecimals=2, priceDecimals=3, markPrice="110", maxLeverage=20),
        "SoLAcct",
        AccountContext(leverage={"SOL": 5.0}),
    )

    assert p.id == "pacifica-SoLAcct-SOL"
    assert p.side == "long"
    assert p.sizeNotional == "1100"
    assert p.unrealizedPnl == "100"
    assert p.marginUsed == "220"
    assert p.roiPercent.startswith("45.45")
    assert p.leverage == 5.0
    assert p.maxLeverage == 20.0
    assert p.fundingAccrued == "-0.5"
    assert p.timestamp == 1700000000123


def test_normalize_short_pnl():
    p = normalizePosition(
        raw(side="ask"),
        InstrumentMeta(markPrice="110", maxLeverage=10),
        "SoLAcct",
    )

    assert p.side == "short"
    assert p.unrealizedPnl == "-100"
    assert p.leverage == 10.0
    assert p.marginUsed == "110"


def test_normalize_without_mark():
    p = normalizePosition(raw(), InstrumentMeta(), "SoLAcct", now=NOW)

    assert p.markPrice is None
    assert p.sizeNotional is None
    assert p.unrealizedPnl == "0"
    assert p.roiPercent is None
    assert p.leverage == 1.0
    # priced at entry instead
    assert p.marginUsed == "1000"


def test_normalize_isolated_margin():
    p = normalizePosition(
        raw(isolated=True, margin="300"),
        InstrumentMeta(markPrice="110", maxLeverage=10),
        "SoLAcct",
    )

    assert p.isolated
    assert p.marginUsed == "300"


def test_unsuccessful_body():
    src = Pacifica(None, None)
    with pytest.raises(TransportError):
        src.checkBody({"success": False, "data": None, "error": "bad account"})

    body = {"success": True, "data": []}
    assert src.checkBody(body) is body


def routes(**kw):
    r = {
        f"{BASE}/positions": {
            "success": True,
            "data": [raw(), raw(symbol="BTC", amount="0")],
        },
        f"{BASE}/info": {
            "success": True,
            "data": [
                {
                    "symbol": "SOL",
                    "tick_size": "0.01",
                    "lot_size": "0.001",
                    "max_leverage": 20,
                }
            ],
        },
        f"{BASE}/info/prices": {
            "success": True,
            "data": [{"symbol": "SOL", "mark": "110", "oracle": "110.1"}],
        },
        f"{BASE}/account/settings": {
            "success": True,
            "data": [{"symbol": "SOL", "isolated": False, "leverage": 5}],
        },
    }
    r |= kw
    return r


def test_positions(venue):
    src, _ = venue(Pacifica, routes())
    positions = asyncio.run(src.fetchPositions("SoLAcct"))

    assert len(positions) == 1
    p = positions[0]
    assert p.sizeDecimals == 3
    assert p.priceDecimals == 2
    assert p.markPrice == "110"
    assert p.leverage == 5.0
    assert p.marginUsed == "220"


def test_positions_without_settings(venue):
    src, _ = venue(
        Pacifica,
        routes(**{f"{BASE}/account/settings": {"success": True, "data": []}}),
    )
    positions = asyncio.run(src.fetchPositions("SoLAcct"))

    # falls back to the market's max leverage
    assert positions[0].leverage == 20.0


def test_account_summary(venue):
    src, fake = venue(
        Pacifica,
        {
            f"{BASE}/portfolio": {
                "success": True,
                "data": [
                    {"account_equity": "900", "pnl": "-10", "timestamp": 1},
                    {"account_equity": "1000", "pnl": "25.5", "timestamp": 2},
                ],
            },
            f"{BASE}/portfolio/volume": {
                "success": True,
                "data": {"volume_all_time": "123456"},
            },
        },
    )

    summary = asyncio.run(src.fetchAccountSummary("SoLAcct"))
    assert summary.balance == Decimal("1000")
    assert summary.realizedPnl == Decimal("25.5")
    assert summary.totalVolume == Decimal("123456")
    assert fake.called(f"{BASE}/portfolio")[0]["params"]["time_range"] == "all"


def test_account_summary_missing(venue):
    src, _ = venue(Pacifica, {})
    assert asyncio.run(src.fetchAccountSummary("SoLAcct")) is None


def test_malformed_leverage_fields_fall_back(venue):
    src, _ = venue(
        Pacifica,
        routes(
            **{
                f"{BASE}/info": {
                    "success": True,
                    "data": [
                        {
                            "symbol": "SOL",
                            "tick_size": "0.01",
                            "lot_size": "0.001",
                            "max_leverage": None,
                        }
                    ],
                },
                f"{BASE}/account/settings": {
                    "success": True,
                    "data": [{"symbol": "SOL", "leverage": "junk"}],
                },
            }
        ),
    )

    positions = asyncio.run(src.fetchPositions("SoLAcct"))
    assert positions[0].maxLeverage is None
    assert positions[0].leverage == 1.0
