"""Timeframe table and window alignment.

Each ranking timeframe is covered exactly by a fixed number of klines of a
fixed sub-interval:

  5m  = 5 x 1m     15m = 3 x 5m     1h = 4 x 15m
  4h  = 4 x 1h     1d  = 1 x 1D

Live refreshes aggregate the most recently COMPLETED window, never the one
in progress, so a partially filled candle cannot skew the ranking.
"""

from dataclasses import dataclass

MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000


@dataclass(frozen=True)
class TimeframeSpec:
    """Kline layout that covers one ranking timeframe."""

    name: str
    interval: str  # Bybit kline interval code
    candle_ms: int
    candle_count: int

    @property
    def duration_ms(self) -> int:
        return self.candle_ms * self.candle_count


TIMEFRAMES: dict[str, TimeframeSpec] = {
    "5m": TimeframeSpec("5m", "1", MINUTE_MS, 5),
    "15m": TimeframeSpec("15m", "5", 5 * MINUTE_MS, 3),
    "1h": TimeframeSpec("1h", "15", 15 * MINUTE_MS, 4),
    "4h": TimeframeSpec("4h", "60", HOUR_MS, 4),
    "1d": TimeframeSpec("1d", "D", DAY_MS, 1),
}

DAILY_TIMEFRAME = "1d"


def get_timeframe(name: str) -> TimeframeSpec:
    """Look up a timeframe, raising ValueError for unsupported names."""
    try:
        return TIMEFRAMES[name]
    except KeyError:
        raise ValueError(
            f"Unsupported timeframe {name!r}, expected one of {list(TIMEFRAMES)}"
        ) from None


def aligned_window_end(timeframe: str, now_ms: int) -> int:
    """Return the last millisecond of the most recently completed window.

    floor(now / duration) * duration is the start of the window in progress;
    one millisecond before it closes the previous one.
    """
    duration = get_timeframe(timeframe).duration_ms
    return (now_ms // duration) * duration - 1


def window_start(timeframe: str, window_end_ms: int) -> int:
    """Return the first millisecond of the window ending at window_end_ms."""
    return window_end_ms - get_timeframe(timeframe).duration_ms + 1


def day_start(ts_ms: int) -> int:
    """Canonical 00:00 UTC boundary of the day containing ts_ms."""
    return (ts_ms // DAY_MS) * DAY_MS
