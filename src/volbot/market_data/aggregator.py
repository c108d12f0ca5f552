"""Timeframe aggregation -- collapse a candle window into one measurement.

Core formula:
  volume           = sum(candle.volume)                        (quote currency)
  price_change_pct = (close_newest - open_oldest) / open_oldest * 100
                     (0 when open_oldest is 0)

An incomplete window is not a partial result: fewer candles than the
timeframe requires yields no measurement at all.
"""

from collections.abc import Sequence
from decimal import Decimal

from volbot.exceptions import IncompleteWindow
from volbot.logging import get_logger
from volbot.market_data.timeframes import get_timeframe
from volbot.models import Candle, TimeframeMeasurement

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


class TimeframeAggregator:
    """Stateless conversion of candle windows into TimeframeMeasurement."""

    def aggregate(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        last_price: Decimal = Decimal("0"),
    ) -> TimeframeMeasurement | None:
        """Aggregate one symbol's window for a timeframe.

        Args:
            symbol: Exchange symbol.
            timeframe: Ranking timeframe the candles were fetched for.
            candles: Candles in chronological order (oldest first).
            last_price: Latest traded price from the ticker snapshot.

        Returns:
            The measurement, or None when the window is incomplete.
            Non-positive volume is NOT filtered here; callers discard it.
        """
        try:
            window = self._complete_window(symbol, timeframe, candles)
        except IncompleteWindow as e:
            logger.debug(
                "incomplete_window",
                symbol=symbol,
                timeframe=timeframe,
                got=e.got,
                required=e.required,
            )
            return None

        volume = sum((c.volume for c in window), Decimal("0"))
        open_price = window[0].open_price
        close_price = window[-1].close_price

        if open_price == 0:
            change = Decimal("0")
        else:
            change = (close_price - open_price) / open_price * _HUNDRED

        return TimeframeMeasurement(
            symbol=symbol,
            last_price=last_price,
            volume=volume,
            price_change_pct=change,
        )

    @staticmethod
    def _complete_window(
        symbol: str, timeframe: str, candles: Sequence[Candle]
    ) -> Sequence[Candle]:
        """Return the most recent candle_count candles or raise IncompleteWindow."""
        required = get_timeframe(timeframe).candle_count
        if len(candles) < required:
            raise IncompleteWindow(symbol, timeframe, len(candles), required)
        return candles[-required:]
