"""Human-facing views: display strings and pandas tables.

Display formatting only ever truncates (never rounds) using each position's
own sizeDecimals/priceDecimals. Nothing here feeds back into calculations."""

from decimal import Decimal

from typing import Any, Iterable, Optional

import pandas as pd  # type: ignore

from dexagg.decimalmath import formatDecimals, formatSize
from dexagg.errors import FetchError
from dexagg.models import AccountSummary, NormalizedPosition, PortfolioSnapshot

# dollars get cents, funding keeps enough precision to see small accruals
PNL_DECIMALS = 2
FUNDING_DECIMALS = 4


def mn(val: Any) -> str:
    """format numeric input as money"""
    return f"${Decimal(val):,.2f}".replace("$-", "-$")


def _maybe(value: Optional[str], decimals: int) -> Optional[str]:
    return None if value is None else formatDecimals(value, decimals)


def formatPosition(p: NormalizedPosition) -> dict[str, Any]:
    """Position fields truncated for display, keyed like the position itself."""
    return dict(
        id=p.id,
        source=p.source,
        account=p.account,
        instrument=p.instrument,
        side=p.side,
        size=formatSize(p.size, p.sizeDecimals),
        sizeNotional=_maybe(p.sizeNotional, PNL_DECIMALS),
        entryPrice=formatDecimals(p.entryPrice, p.priceDecimals),
        markPrice=_maybe(p.markPrice, p.priceDecimals),
        liquidationPrice=_maybe(p.liquidationPrice, p.priceDecimals),
        unrealizedPnl=formatDecimals(p.unrealizedPnl, PNL_DECIMALS),
        realizedPnl=_maybe(p.realizedPnl, PNL_DECIMALS),
        roiPercent=_maybe(p.roiPercent, PNL_DECIMALS),
        fundingAccrued=_maybe(p.fundingAccrued, FUNDING_DECIMALS),
        marginUsed=formatDecimals(p.marginUsed, PNL_DECIMALS),
        leverage=round(p.leverage, 2),
        maxLeverage=p.maxLeverage,
        marginMode=p.marginMode,
    )


def positionsFrame(positions: Iterable[NormalizedPosition]) -> pd.DataFrame:
    """One display row per position, indexed by position id, largest first."""
    rows = [(formatPosition(p), float(p.notionalOrEstimate())) for p in positions]
    if not rows:
        return pd.DataFrame()

    df = pd.DataFrame([r for r, _ in rows])
    df["notional"] = [n for _, n in rows]
    df = df.sort_values("notional", ascending=False).set_index("id")
    return df


def portfolioFrame(snapshot: PortfolioSnapshot) -> pd.DataFrame:
    """Per-source breakdown plus a TOTAL row."""
    rows = []
    for source, entry in sorted(snapshot.perSource.items()):
        row: dict[str, Any] = dict(source=source)
        if isinstance(entry, AccountSummary):
            row |= dict(
                balance=float(entry.balance),
                volume=float(entry.totalVolume),
                pnl=float(entry.realizedPnl),
                unrealizedPnl=float(entry.unrealizedPnl),
                notional=float(entry.notional),
                status="ok",
            )
        elif isinstance(entry, FetchError):
            row["status"] = f"error: {entry.kind.name}"
        else:
            row["status"] = "no data"

        rows.append(row)

    rows.append(
        dict(
            source="TOTAL",
            balance=float(snapshot.totalBalance),
            volume=float(snapshot.totalVolume),
            pnl=float(snapshot.totalPnl),
            unrealizedPnl=float(snapshot.totalUnrealizedPnl),
            notional=float(snapshot.totalNotional),
            status=f"{snapshot.compositeLeverage:.2f}x",
        )
    )

    return pd.DataFrame(rows).set_index("source")


def describePortfolio(snapshot: PortfolioSnapshot) -> str:
    lines = [
        f"Balance:    {mn(snapshot.totalBalance)}",
        f"Notional:   {mn(snapshot.totalNotional)}",
        f"Unrealized: {mn(snapshot.totalUnrealizedPnl)}",
        f"Total PnL:  {mn(snapshot.totalPnl)}",
        f"Leverage:   {snapshot.compositeLeverage:.2f}x",
    ]

    for e in snapshot.errors:
        lines.append(f"ERROR {e.source}/{e.account} {e.kind.name}: {e.message}")

    return "\n".join(lines)
