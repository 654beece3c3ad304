"""Decimal string helpers for position sizes and prices.

Every function here accepts whatever an upstream venue handed us (str, int,
float, Decimal, None) and returns a plain decimal string. Nothing raises on
garbage input: display must never crash because one field was malformed, so
unparseable values collapse to "0" (or None where "unknown" is meaningful).
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_DOWN

from typing import Any, Optional

# Perps allow at most 6 decimals of price precision minus the size decimals,
# and never more than 5 significant figures (unless the price is an integer).
MAX_PRICE_DECIMALS = 6
MAX_SIG_FIGS = 5

ZERO = Decimal(0)


def toDecimal(value: Any) -> Optional[Decimal]:
    """Parse 'value' into a finite Decimal, or None if it isn't one."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, float):
        # repr() gives the shortest round-tripping string so 0.1 stays 0.1
        # instead of expanding into its full binary representation.
        d = _parse(repr(value))
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, str):
        d = _parse(value)
    else:
        return None

    if d is None or not d.is_finite():
        return None

    return d


def _parse(s: str) -> Optional[Decimal]:
    s = s.strip().replace(",", "")
    if not s:
        return None

    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def decimalOr(value: Any, default: Decimal = ZERO) -> Decimal:
    d = toDecimal(value)
    return default if d is None else d


def intOr(value: Any, default: int) -> int:
    """Whole-number venue field (precisions, decimals), 'default' when unusable."""
    d = toDecimal(value)
    return default if d is None else int(d)


def floatOr(value: Any, default: Optional[float] = None) -> Optional[float]:
    d = toDecimal(value)
    return default if d is None else float(d)


def normalizeDecimal(value: Any) -> str:
    """Canonical decimal string: no exponent, no trailing zeros, no '-0'."""
    d = toDecimal(value)
    if d is None:
        return "0"

    return _plain(d)


def _plain(d: Decimal) -> str:
    if d.is_zero():
        return "0"

    s = format(d, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")

    # '-0.000' already caught above, but truncation can produce '-0' too
    if s in {"-0", ""}:
        return "0"

    return s


def _truncate(d: Decimal, exp: int) -> Decimal:
    """Quantize toward zero so the last kept digit sits at 10**exp."""
    if d.as_tuple().exponent >= exp:
        return d

    # precision must cover every digit kept or quantize() signals InvalidOperation
    ctx = Context(prec=max(28, d.adjusted() - exp + 2))
    return d.quantize(Decimal(1).scaleb(exp), rounding=ROUND_DOWN, context=ctx)


def truncateToDecimals(value: Any, decimals: int) -> str:
    """Drop digits past 'decimals' places, toward zero (never rounds up).

    A negative 'decimals' returns the normalized input unchanged."""
    d = toDecimal(value)
    if d is None:
        return "0"

    if decimals < 0:
        return _plain(d)

    return _plain(_truncate(d, -decimals))


def magnitude(value: Any) -> Optional[int]:
    """Order of magnitude: floor(log10(|value|)), or None for zero/garbage."""
    d = toDecimal(value)
    if d is None or d.is_zero():
        return None

    return d.adjusted()


def truncateToSignificantFigures(value: Any, figures: int) -> str:
    d = toDecimal(value)
    if d is None or d.is_zero():
        return "0"

    if figures < 1:
        return _plain(d)

    # Last kept digit sits at exponent (magnitude - figures + 1)
    exp = d.adjusted() - figures + 1
    return _plain(_truncate(d, exp))


def priceDecimals(price: Any, sizeDecimals: int) -> int:
    """How many decimals a price may carry given the instrument's size decimals.

    Takes the stricter of the decimal-place limit (6 - sizeDecimals) and the
    5 significant figure limit expressed as decimal places.

    >>> priceDecimals("103948.5", 5)
    0
    >>> priceDecimals("1234.56", 5)
    1
    """
    mag = magnitude(price)
    if mag is None:
        return 0

    maxDecimals = max(MAX_PRICE_DECIMALS - sizeDecimals, 0)
    sigFigDecimals = max(0, MAX_SIG_FIGS - mag - 1)
    return min(maxDecimals, sigFigDecimals)


def isIntegerString(value: Any) -> bool:
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        return False

    s = str(value).strip()
    if s.startswith("-"):
        s = s[1:]

    return s.isdigit()


def formatPrice(price: Any, sizeDecimals: int) -> str:
    """Truncate a price for display.

    Integer prices are always valid regardless of significant figures, so
    they pass through (normalized). Everything else gets the stricter of the
    two precision rules from priceDecimals()."""
    if isIntegerString(price):
        return normalizeDecimal(price)

    if toDecimal(price) is None:
        return "0"

    return truncateToDecimals(price, priceDecimals(price, sizeDecimals))


def formatSize(size: Any, sizeDecimals: int) -> str:
    return truncateToDecimals(size, sizeDecimals)


def formatDecimals(value: Any, decimals: int) -> str:
    return truncateToDecimals(value, decimals)


def decimalsFromStep(step: Any) -> int:
    """Decimal places implied by a tick or lot size: '0.01' -> 2, '1' -> 0."""
    d = toDecimal(step)
    if d is None or d <= 0:
        return 0

    # normalize() strips trailing zeros so '0.0100' counts as 2
    exp = d.normalize().as_tuple().exponent
    return max(-exp, 0)


def isZero(value: Any) -> bool:
    d = toDecimal(value)
    return d is None or d.is_zero()
