"""Position risk math.

Everything here is pure: no I/O, no venue knowledge. Inputs are anything
decimalmath.toDecimal() accepts; money results are Decimal, leverage results
are plain floats since sub-cent precision never changes a displayed ratio."""

from decimal import Decimal, ROUND_HALF_UP

from typing import Any, Iterable, Optional

from dexagg.decimalmath import decimalOr, toDecimal
from dexagg.models import AccountContext, Side

ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)


def pnl(side: Side, entry: Any, mark: Any, size: Any) -> Decimal:
    """Unrealized PnL: (mark - entry) * |size| for longs, reversed for shorts."""
    e = decimalOr(entry)
    m = decimalOr(mark)
    s = abs(decimalOr(size))

    if side == "long":
        return (m - e) * s

    return (e - m) * s


def notional(size: Any, price: Any) -> Decimal:
    return abs(decimalOr(size)) * decimalOr(price)


def marginUsed(isolated: bool, apiMargin: Any, notional: Any, leverage: Any) -> Decimal:
    """Margin backing one position.

    Isolated positions with a venue-reported margin use it verbatim; the
    venue's number is ground truth. Everything else is notional / leverage."""
    api = decimalOr(apiMargin)
    if isolated and api > 0:
        return api

    lev = decimalOr(leverage)
    if lev <= 0:
        return ZERO

    return decimalOr(notional) / lev


def roi(pnl: Any, margin: Any) -> Optional[Decimal]:
    """PnL as a percent of margin, None when margin is zero."""
    m = decimalOr(margin)
    if m.is_zero():
        return None

    return decimalOr(pnl) / m * HUNDRED


def leverageFromInitialMarginFraction(imf: Any) -> float:
    f = toDecimal(imf)
    if f is None or f <= 0:
        return 1

    return int((ONE / f).quantize(ONE, rounding=ROUND_HALF_UP))


def maintenanceMargin(notional: Any, mmf: Any) -> Decimal:
    return abs(decimalOr(notional)) * decimalOr(mmf)


def sideFromSignedSize(size: Any) -> Side:
    return "short" if decimalOr(size) < 0 else "long"


def isZeroSize(size: Any) -> bool:
    """True for zero, garbage, and non-finite sizes (all get filtered out)."""
    d = toDecimal(size)
    return d is None or d.is_zero()


def crossLiquidationPrice(
    side: Side,
    entry: Any,
    size: Any,
    equity: Any,
    otherMaintenance: Any,
    mmf: Any,
) -> Optional[Decimal]:
    """Liquidation price for a position sharing equity with other positions.

    Available equity is account equity minus what every *other* position
    needs for maintenance. Then:
        long:  (entry * |size| - A) / (|size| * (1 - mmf))
        short: (A + entry * |size|) / (|size| * (1 + mmf))

    Returns None when the account is already under water on a rollup basis
    (A <= 0), on a zero denominator, or when the price is non-positive
    (the position can't be liquidated at any positive price)."""
    available = decimalOr(equity) - decimalOr(otherMaintenance)
    if available <= 0:
        return None

    e = decimalOr(entry)
    s = abs(decimalOr(size))
    f = decimalOr(mmf)

    if side == "long":
        denominator = s * (ONE - f)
        if denominator.is_zero():
            return None

        price = (e * s - available) / denominator
    else:
        denominator = s * (ONE + f)
        if denominator.is_zero():
            return None

        price = (available + e * s) / denominator

    if price <= 0:
        return None

    return price


def proportionalMargin(
    positionNotional: Any, totalNotional: Any, totalMarginUsed: Any
) -> tuple[Decimal, float]:
    """Split account-level margin across positions by notional share.

    Returns (positionMargin, leverage); leverage is 1 when no margin lands
    on this position."""
    pn = abs(decimalOr(positionNotional))
    tn = decimalOr(totalNotional)
    tm = decimalOr(totalMarginUsed)

    if tn <= 0 or tm <= 0:
        return ZERO, 1

    margin = pn / tn * tm
    if margin <= 0:
        return ZERO, 1

    return margin, float(pn / margin)


def crossMarginContext(
    exposures: Iterable[tuple[str, Any, Any]],
    equity: Any,
    freeCollateral: Any,
) -> AccountContext:
    """Build account context from (instrument, notional, mmf) exposures.

    Total margin used is taken as equity - free collateral."""
    maintenance: dict[str, Decimal] = {}
    total = ZERO
    for instrument, n, mmf in exposures:
        n = abs(decimalOr(n))
        maintenance[instrument] = maintenance.get(instrument, ZERO) + maintenanceMargin(
            n, mmf
        )
        total += n

    eq = decimalOr(equity)
    return AccountContext(
        equity=eq,
        totalMarginUsed=eq - decimalOr(freeCollateral),
        totalNotional=total,
        maintenance=maintenance,
    )
