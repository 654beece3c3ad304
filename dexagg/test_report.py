from decimal import Decimal

from dexagg.aggregator import aggregate
from dexagg.errors import ErrorKind, FetchError
from dexagg.models import AccountSummary, NormalizedPosition
from dexagg.report import (
    describePortfolio,
    formatPosition,
    mn,
    portfolioFrame,
    positionsFrame,
)


def position(id="hyperliquid-0xabc-ETH", **kw):
    base = dict(
        id=id,
        source="hyperliquid",
        account="0xabc",
        instrument="ETH",
        side="long",
        size="0.123456",
        sizeNotional="370.55",
        entryPrice="3000.56789",
        markPrice="3001.999",
        unrealizedPnl="12.349",
        realizedPnl=None,
        roiPercent="5.6789",
        fundingAccrued="0.000123456",
        leverage=3.33333,
        marginMode="cross",
        marginUsed="123.456",
        maxLeverage=25.0,
        liquidationPrice=None,
        sizeDecimals=4,
        priceDecimals=2,
        timestamp=1,
    )
    base |= kw
    return NormalizedPosition(**base)


def test_mn():
    assert mn(1000) == "$1,000.00"
    assert mn(Decimal("-1234.5")) == "-$1,234.50"


def test_format_position_truncates():
    got = formatPosition(position())

    assert got["size"] == "0.1234"
    assert got["entryPrice"] == "3000.56"
    assert got["markPrice"] == "3001.99"
    assert got["unrealizedPnl"] == "12.34"
    assert got["roiPercent"] == "5.67"
    assert got["fundingAccrued"] == "0.0001"
    assert got["marginUsed"] == "123.45"
    assert got["leverage"] == 3.33
    assert got["liquidationPrice"] is None
    assert got["realizedPnl"] is None


def test_positions_frame_largest_first():
    df = positionsFrame(
        [
            position(),
            position(id="hyperliquid-0xabc-BTC", instrument="BTC", sizeNotional="9000"),
        ]
    )

    assert list(df.index) == ["hyperliquid-0xabc-BTC", "hyperliquid-0xabc-ETH"]
    assert df.loc["hyperliquid-0xabc-ETH", "size"] == "0.1234"


def test_positions_frame_empty():
    assert positionsFrame([]).empty


def snapshot():
    return aggregate(
        {
            "hyperliquid": AccountSummary(
                "hyperliquid",
                "0xabc",
                balance=Decimal(1000),
                realizedPnl=Decimal(-20),
                notional=Decimal(1500),
            ),
            "lighter": None,
            "aster": FetchError(ErrorKind.AUTH, "aster", "default", "no key"),
        },
        [FetchError(ErrorKind.AUTH, "aster", "default", "no key")],
    )


def test_portfolio_frame():
    df = portfolioFrame(snapshot())

    assert list(df.index) == ["aster", "hyperliquid", "lighter", "TOTAL"]
    assert df.loc["aster", "status"] == "error: AUTH"
    assert df.loc["lighter", "status"] == "no data"
    assert df.loc["hyperliquid", "status"] == "ok"
    assert df.loc["TOTAL", "status"] == "1.50x"
    assert df.loc["TOTAL", "notional"] == 1500.0


def test_describe_portfolio():
    text = describePortfolio(snapshot())

    assert "Balance:    $1,000.00" in text
    assert "Total PnL:  -$20.00" in text
    assert "Leverage:   1.50x" in text
    assert "ERROR aster/default AUTH: no key" in text
