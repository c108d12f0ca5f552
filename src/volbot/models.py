"""Shared data models for the volume ranking bot.

All monetary values use Decimal. Never use float for prices or volumes.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType


@dataclass(frozen=True)
class InstrumentSnapshot:
    """One perpetual symbol's instantaneous ticker state."""

    symbol: str
    last_price: Decimal
    turnover_24h: Decimal = Decimal("0")
    price_change_24h: Decimal = Decimal("0")  # fraction, 0.05 == +5%


@dataclass(frozen=True)
class Candle:
    """A single kline reduced to the fields the aggregator consumes."""

    open_time: int  # Unix milliseconds
    open_price: Decimal
    close_price: Decimal
    volume: Decimal  # quote-currency turnover


@dataclass(frozen=True)
class TimeframeMeasurement:
    """A symbol's aggregated volume and price change over one timeframe window."""

    symbol: str
    last_price: Decimal
    volume: Decimal
    price_change_pct: Decimal  # open of oldest candle to close of newest, percent


@dataclass(frozen=True)
class DailyTopRecord:
    """Top-K symbols by daily volume for one UTC day."""

    day_start: int  # Unix milliseconds, 00:00 UTC
    symbols: tuple[str, ...]


@dataclass(frozen=True)
class RankedResultSet:
    """Every named bucket for one timeframe, published as a single value.

    The bucket mapping is read-only so a published set can be handed to
    readers without copying.
    """

    timeframe: str
    buckets: Mapping[str, tuple[TimeframeMeasurement, ...]]
    refreshed_at: float  # Unix seconds
    candidate_count: int = 0
    excluded_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "buckets", MappingProxyType(dict(self.buckets)))

    @property
    def bucket_names(self) -> tuple[str, ...]:
        return tuple(self.buckets)
