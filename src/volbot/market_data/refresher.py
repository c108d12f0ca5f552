"""Volume refresher -- the periodic driver behind the ranking cache.

Each cycle refreshes every configured timeframe SEQUENTIALLY (bounding peak
request volume); symbol fetches within a timeframe run concurrently in
batches. Per timeframe:

  1. FETCH: ticker snapshots, eligible universe, aligned candle windows
  2. MEASURE: aggregate, discard missing and non-positive volume
  3. HISTORY (1d only): record the day's top-K, prune, recompute exclusions
  4. RANK: drop excluded base assets, fill each bucket, sort, cap
  5. PUBLISH: swap the timeframe's result set into the cache

A failure in one timeframe leaves its previous result set published and
does not affect the other timeframes. Cycles never overlap: a cycle that
starts while another is running is skipped.

On cold start the history is backfilled from the prior retention_days of
daily candles before the first live cycle, so exclusions apply to the very
first published result.
"""

import asyncio
import time
from collections.abc import Callable, Sequence

from volbot.config import HistorySettings, ScannerSettings
from volbot.exceptions import SourceUnavailable
from volbot.logging import get_logger, refresh_context
from volbot.market_data.aggregator import TimeframeAggregator
from volbot.market_data.buckets import BucketProfile, build_buckets, rank_by_volume
from volbot.market_data.history import HistoryTracker
from volbot.market_data.ranking_cache import RankingCache
from volbot.market_data.source import MarketDataSource
from volbot.market_data.timeframes import (
    DAILY_TIMEFRAME,
    DAY_MS,
    HOUR_MS,
    aligned_window_end,
    day_start,
    get_timeframe,
)
from volbot.models import InstrumentSnapshot, RankedResultSet, TimeframeMeasurement

logger = get_logger(__name__)


class VolumeRefresher:
    """Runs refresh cycles and owns the write side of the ranking cache.

    Args:
        source: Market data source.
        aggregator: Candle window aggregator.
        history: Daily top-volume history (used only if the profile tracks it).
        cache: Ranking cache to publish into.
        profile: Bucket profile selecting the published buckets.
        scanner_settings: Refresh interval and timeframes.
        history_settings: Retention, top-K, threshold and backfill options.
        clock: Returns current Unix time in seconds (injectable for tests).
    """

    def __init__(
        self,
        source: MarketDataSource,
        aggregator: TimeframeAggregator,
        history: HistoryTracker,
        cache: RankingCache,
        profile: BucketProfile,
        scanner_settings: ScannerSettings,
        history_settings: HistorySettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        for timeframe in scanner_settings.timeframes:
            get_timeframe(timeframe)

        self._source = source
        self._aggregator = aggregator
        self._history = history
        self._cache = cache
        self._profile = profile
        self._timeframes = list(scanner_settings.timeframes)
        self._refresh_interval = scanner_settings.refresh_interval
        self._history_settings = history_settings
        self._clock = clock
        self._cycle_lock = asyncio.Lock()
        self._cycle_count = 0
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def tracks_history(self) -> bool:
        return self._profile.track_history

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Begin backfill and periodic refresh in the background."""
        if self._running:
            logger.warning("volume_refresher_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            "volume_refresher_started",
            refresh_interval=self._refresh_interval,
            timeframes=self._timeframes,
            profile=self._profile.name,
        )

    async def stop(self) -> None:
        """Abandon any in-flight cycle and stop the driver.

        The cache only changes through whole-value publishes, so cancelling
        mid-cycle leaves the last published sets intact.
        """
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("volume_refresher_stopped")

    async def _run(self) -> None:
        if self.tracks_history and self._history_settings.backfill_on_start:
            try:
                await self.backfill_history()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("history_backfill_failed", exc_info=True)

        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("refresh_cycle_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._refresh_interval)

    # ──────────────────────────────────────────────
    # Refresh cycle
    # ──────────────────────────────────────────────

    async def run_cycle(self) -> bool:
        """Refresh every timeframe once.

        Returns:
            False if skipped because another cycle is still running.
        """
        if self._cycle_lock.locked():
            logger.warning("refresh_cycle_skipped", reason="previous_cycle_running")
            return False

        async with self._cycle_lock:
            self._cycle_count += 1
            started = time.monotonic()
            refreshed: list[str] = []
            with refresh_context(cycle=self._cycle_count):
                for timeframe in self._timeframes:
                    if await self._refresh_guarded(timeframe):
                        refreshed.append(timeframe)

            logger.info(
                "refresh_cycle_complete",
                cycle=self._cycle_count,
                refreshed=refreshed,
                failed=[tf for tf in self._timeframes if tf not in refreshed],
                duration_seconds=round(time.monotonic() - started, 2),
            )
            return True

    async def _refresh_guarded(self, timeframe: str) -> bool:
        """Refresh one timeframe, containing any failure to that timeframe."""
        with refresh_context(timeframe=timeframe):
            try:
                await self.refresh_timeframe(timeframe)
                return True
            except asyncio.CancelledError:
                raise
            except SourceUnavailable as e:
                logger.warning("timeframe_refresh_skipped", reason=str(e))
            except Exception:
                logger.error("timeframe_refresh_failed", exc_info=True)
        return False

    async def refresh_timeframe(self, timeframe: str) -> RankedResultSet:
        """Run the full refresh algorithm for one timeframe and publish it.

        Raises:
            SourceUnavailable: The ticker snapshot could not be fetched, or
                every eligible symbol's candle fetch failed.
        """
        now_ms = int(self._clock() * 1000)
        window_end_ms = aligned_window_end(timeframe, now_ms)

        snapshots = await self._source.fetch_instrument_snapshots()
        measurements = await self._measure(timeframe, snapshots, window_end_ms)

        if timeframe == DAILY_TIMEFRAME and self.tracks_history:
            self._update_history(measurements, window_end_ms, now_ms)

        is_excluded = self._history.is_excluded if self.tracks_history else _never
        buckets = build_buckets(measurements, self._profile.rules, is_excluded)

        result_set = RankedResultSet(
            timeframe=timeframe,
            buckets=buckets,
            refreshed_at=self._clock(),
            candidate_count=len(measurements),
            excluded_count=sum(1 for m in measurements if is_excluded(m.symbol)),
        )
        self._cache.publish(result_set)

        logger.info(
            "timeframe_refreshed",
            candidates=result_set.candidate_count,
            excluded=result_set.excluded_count,
            window_end=window_end_ms,
        )
        return result_set

    async def _measure(
        self,
        timeframe: str,
        snapshots: Sequence[InstrumentSnapshot],
        window_end_ms: int,
    ) -> list[TimeframeMeasurement]:
        """Fetch and aggregate the window for every eligible symbol.

        Returns only measurements with positive volume, in universe order.
        """
        universe = self._source.eligible_symbols(snapshots)
        prices = {s.symbol: s.last_price for s in universe}

        async def fetch_one(symbol: str) -> TimeframeMeasurement | None:
            candles = await self._source.fetch_candle_window(symbol, timeframe, window_end_ms)
            return self._aggregator.aggregate(symbol, timeframe, candles, prices[symbol])

        fetched = await self._source.fetch_batched([s.symbol for s in universe], fetch_one)
        measurements = [m for _, m in fetched if m is not None and m.volume > 0]

        logger.debug(
            "timeframe_measured",
            universe=len(universe),
            measured=len(measurements),
        )
        return measurements

    # ──────────────────────────────────────────────
    # Exclusion history
    # ──────────────────────────────────────────────

    def _update_history(
        self,
        measurements: Sequence[TimeframeMeasurement],
        window_end_ms: int,
        now_ms: int,
    ) -> None:
        """Record the completed day's top-K, prune, and rebuild exclusions.

        Runs without awaiting, so cancellation cannot interleave with it.
        """
        settings = self._history_settings
        if measurements:
            top = rank_by_volume(measurements, settings.top_k)
            self._history.record_day(day_start(window_end_ms), [m.symbol for m in top])
        self._history.prune_older_than(settings.retention_days, now_ms)
        self._history.recompute_exclusions(settings.min_appearances)

    async def backfill_history(self) -> int:
        """Seed the history from the prior retention_days of daily candles.

        Each day's window is anchored to backfill_anchor_hour UTC so every
        day yields one complete daily candle. A day that fails is skipped,
        leaving a gap, rather than aborting the backfill.

        Returns:
            Number of days recorded.
        """
        settings = self._history_settings
        now_ms = int(self._clock() * 1000)
        today = day_start(now_ms)

        try:
            snapshots = await self._source.fetch_instrument_snapshots()
        except SourceUnavailable as e:
            logger.warning("history_backfill_skipped", reason=str(e))
            return 0

        logger.info("history_backfill_started", days=settings.retention_days)
        recorded = 0

        for days_ago in range(settings.retention_days, 0, -1):
            day = today - days_ago * DAY_MS
            if self._history.has_day(day):
                continue

            anchor_ms = day + settings.backfill_anchor_hour * HOUR_MS
            try:
                measurements = await self._measure(DAILY_TIMEFRAME, snapshots, anchor_ms)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("history_backfill_day_failed", day_start=day, exc_info=True)
                continue

            if not measurements:
                logger.warning("history_backfill_day_empty", day_start=day)
                continue

            top = rank_by_volume(measurements, settings.top_k)
            if self._history.record_day(day, [m.symbol for m in top]):
                recorded += 1

        self._history.prune_older_than(settings.retention_days, now_ms)
        exclusions = self._history.recompute_exclusions(settings.min_appearances)

        logger.info(
            "history_backfill_complete",
            days_recorded=recorded,
            retained_days=len(self._history.records),
            exclusions=len(exclusions),
        )
        return recorded


def _never(symbol: str) -> bool:
    return False
