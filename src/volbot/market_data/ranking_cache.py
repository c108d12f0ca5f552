"""Published ranking state shared between the refresh cycle and readers.

Single writer (VolumeRefresher), many readers (HTTP adapter). Each timeframe
holds one immutable RankedResultSet that is replaced by a single reference
assignment, so a reader sees either the previous complete set or the new
complete set, never a mix. A timeframe without a published set is NOT READY,
which is different from a published set whose buckets are empty.
"""

import time
from collections.abc import Callable

from volbot.logging import get_logger
from volbot.models import RankedResultSet, TimeframeMeasurement

logger = get_logger(__name__)


class _NotReady:
    """Sentinel for reads before a timeframe's first successful refresh."""

    _instance: "_NotReady | None" = None

    def __new__(cls) -> "_NotReady":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_READY"


NOT_READY = _NotReady()


class RankingCache:
    """Per-timeframe published result sets and the last refresh time.

    Args:
        timeframes: Timeframes this cache serves.
        clock: Returns current Unix time in seconds (injectable for tests).
    """

    def __init__(
        self,
        timeframes: list[str],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._timeframes = tuple(timeframes)
        self._results: dict[str, RankedResultSet] = {}
        self._last_refresh: float | None = None
        self._clock = clock

    @property
    def timeframes(self) -> tuple[str, ...]:
        return self._timeframes

    def publish(self, result_set: RankedResultSet) -> None:
        """Atomically replace a timeframe's result set and advance the refresh time."""
        if result_set.timeframe not in self._timeframes:
            raise ValueError(f"Timeframe {result_set.timeframe!r} is not served by this cache")
        self._results[result_set.timeframe] = result_set
        self._last_refresh = result_set.refreshed_at
        logger.debug(
            "ranked_result_set_published",
            timeframe=result_set.timeframe,
            sizes={name: len(items) for name, items in result_set.buckets.items()},
        )

    def is_ready(self, timeframe: str) -> bool:
        return timeframe in self._results

    def ready_timeframes(self) -> list[str]:
        return [tf for tf in self._timeframes if tf in self._results]

    def get_result_set(self, timeframe: str) -> RankedResultSet | None:
        """Return the whole published set for a timeframe, or None if not ready."""
        return self._results.get(timeframe)

    def get_ranked_result_set(
        self, timeframe: str, bucket: str
    ) -> tuple[TimeframeMeasurement, ...] | _NotReady:
        """Return one bucket of a timeframe, or NOT_READY.

        Raises:
            KeyError: The timeframe is populated but has no such bucket.
        """
        result_set = self._results.get(timeframe)
        if result_set is None:
            return NOT_READY
        return result_set.buckets[bucket]

    def get_last_refresh_time(self) -> float | None:
        """Unix seconds of the most recent successful publish, or None."""
        return self._last_refresh

    def seconds_since_refresh(self) -> float | None:
        if self._last_refresh is None:
            return None
        return self._clock() - self._last_refresh
