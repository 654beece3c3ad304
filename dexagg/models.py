import dataclasses
from dataclasses import dataclass, field
from decimal import Decimal

from typing import Any, Literal, Optional, Union

import orjson

from dexagg.decimalmath import normalizeDecimal, toDecimal
from dexagg.errors import FetchError

Side = Literal["long", "short"]
MarginMode = Literal["isolated", "cross"]


@dataclass(slots=True, frozen=True)
class NormalizedPosition:
    """One open perp position in venue-independent form.

    All price/size/money fields are decimal strings so they survive any
    serialization boundary without binary float damage. 'size' is always
    absolute; direction lives only in 'side'."""

    # "{source}-{account}-{instrumentKey}", unique per open position
    id: str
    source: str
    account: str
    instrument: str
    side: Side

    size: str
    sizeNotional: Optional[str]
    entryPrice: str
    markPrice: Optional[str]
    unrealizedPnl: str
    realizedPnl: Optional[str]
    roiPercent: Optional[str]
    fundingAccrued: Optional[str]

    leverage: float
    marginMode: MarginMode
    marginUsed: str
    maxLeverage: Optional[float]

    # None means "not computable" or "unreachable", never 0
    liquidationPrice: Optional[str]

    # display only, never used for math
    sizeDecimals: int
    priceDecimals: int

    # epoch milliseconds
    timestamp: int

    def __post_init__(self) -> None:
        # frozen, so all fixups go through object.__setattr__
        size = toDecimal(self.size)
        object.__setattr__(self, "size", normalizeDecimal(abs(size) if size else 0))

        liq = toDecimal(self.liquidationPrice)
        object.__setattr__(
            self, "liquidationPrice", normalizeDecimal(liq) if liq and liq > 0 else None
        )

        if self.leverage is None or self.leverage < 0:
            object.__setattr__(self, "leverage", 0.0)

        object.__setattr__(self, "sizeDecimals", max(int(self.sizeDecimals), 0))
        object.__setattr__(self, "priceDecimals", max(int(self.priceDecimals), 0))

    @property
    def isLong(self) -> bool:
        return self.side == "long"

    @property
    def isolated(self) -> bool:
        return self.marginMode == "isolated"

    def notionalOrEstimate(self) -> Decimal:
        """Notional at mark, falling back to entry when mark is unknown."""
        if self.sizeNotional is not None:
            return abs(toDecimal(self.sizeNotional) or Decimal(0))

        price = toDecimal(self.markPrice) or toDecimal(self.entryPrice) or Decimal(0)
        return abs(Decimal(self.size) * price)

    def asdict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    def toJSON(self) -> bytes:
        return orjson.dumps(self.asdict())

    @classmethod
    def fromJSON(cls, data: bytes | str) -> "NormalizedPosition":
        return cls(**orjson.loads(data))


@dataclass(slots=True, frozen=True)
class InstrumentMeta:
    """What a venue told us about one instrument."""

    sizeDecimals: int = 0
    priceDecimals: int = 2
    markPrice: Optional[str] = None
    maintenanceMarginFraction: Optional[Decimal] = None
    initialMarginFraction: Optional[Decimal] = None
    maxLeverage: Optional[float] = None


# used when an instrument is absent from the resolved metadata
DEFAULT_META = InstrumentMeta()

ResolvedMetadata = dict[str, InstrumentMeta]


@dataclass(slots=True, frozen=True)
class AccountContext:
    """Account-wide numbers cross-margin venues need for per-position risk."""

    equity: Decimal = Decimal(0)
    totalMarginUsed: Decimal = Decimal(0)
    totalNotional: Decimal = Decimal(0)

    # instrument -> maintenance margin required by that position
    maintenance: dict[str, Decimal] = field(default_factory=dict)

    # instrument -> leverage configured on the account (if the venue has it)
    leverage: dict[str, float] = field(default_factory=dict)

    @property
    def totalMaintenance(self) -> Decimal:
        return sum(self.maintenance.values(), Decimal(0))

    def otherMaintenance(self, instrument: str) -> Decimal:
        """Maintenance margin of every position except 'instrument'."""
        return self.totalMaintenance - self.maintenance.get(instrument, Decimal(0))


@dataclass(slots=True, frozen=True)
class Resolution:
    """Everything a normalizer needs beyond the raw record itself."""

    instruments: ResolvedMetadata = field(default_factory=dict)
    context: Optional[AccountContext] = None

    def meta(self, instrument: str) -> InstrumentMeta:
        return self.instruments.get(instrument, DEFAULT_META)


@dataclass(slots=True, frozen=True)
class AccountSummary:
    source: str
    account: str
    balance: Decimal = Decimal(0)
    totalVolume: Decimal = Decimal(0)
    realizedPnl: Decimal = Decimal(0)
    unrealizedPnl: Decimal = Decimal(0)
    notional: Decimal = Decimal(0)

    def merge(self, other: "AccountSummary") -> "AccountSummary":
        """Sum two summaries of the same source (multiple accounts)."""
        return AccountSummary(
            source=self.source,
            account=",".join(a for a in (self.account, other.account) if a),
            balance=self.balance + other.balance,
            totalVolume=self.totalVolume + other.totalVolume,
            realizedPnl=self.realizedPnl + other.realizedPnl,
            unrealizedPnl=self.unrealizedPnl + other.unrealizedPnl,
            notional=self.notional + other.notional,
        )


# per-source breakdown value: summary, explicit "requested but no data", or error
SourceBreakdown = Union[AccountSummary, FetchError, None]


@dataclass(slots=True, frozen=True)
class PortfolioSnapshot:
    totalBalance: Decimal
    totalVolume: Decimal
    totalPnl: Decimal
    totalUnrealizedPnl: Decimal
    totalNotional: Decimal

    # total notional / total balance, or 0 when balance <= 0
    compositeLeverage: float

    # missing key: source not requested
    perSource: dict[str, SourceBreakdown] = field(default_factory=dict)
    errors: list[FetchError] = field(default_factory=list)

    def requested(self, source: str) -> bool:
        return source in self.perSource

    def errored(self, source: str) -> bool:
        return isinstance(self.perSource.get(source), FetchError)
