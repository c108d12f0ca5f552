"""Tests for VolumeRefresher: refresh algorithm, history, backfill, lifecycle.

Tests verify:
- A refresh publishes every bucket of the profile, ranked by volume
- Dated futures, failed symbols and incomplete windows are left out
- A ticker or kline outage keeps every previously published result set
- One symbol's unexpected error drops only that symbol
- A failure in one timeframe does not block the others
- The 1d refresh feeds the exclusion history
- Backfill seeds 7 days and skips failing days
- Overlapping cycles are skipped; stop() abandons an in-flight cycle cleanly
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import NOW_S, make_kline_rows, make_ticker
from volbot.config import ExchangeSettings, HistorySettings, ScannerSettings
from volbot.exceptions import SourceUnavailable, SymbolUnavailable
from volbot.market_data.aggregator import TimeframeAggregator
from volbot.market_data.buckets import GAINING, LOSING, TOP_VOLUME, get_profile
from volbot.market_data.history import HistoryTracker
from volbot.market_data.ranking_cache import NOT_READY, RankingCache
from volbot.market_data.refresher import VolumeRefresher
from volbot.market_data.source import MarketDataSource
from volbot.market_data.timeframes import DAY_MS, day_start

NOW_MS = int(NOW_S * 1000)
TODAY = day_start(NOW_MS)

# symbol -> (turnover per candle, close price with every open at 100)
MARKET = {
    "BTCUSDT": ("1000", "101"),
    "ETHUSDT": ("800", "98"),
    "SOLUSDT": ("500", "100"),
    "1000PEPEUSDT": ("300", "105"),
    "BTCUSDT-27DEC24": ("5000", "110"),
}


def _tickers() -> list[dict]:
    return [make_ticker(s) for s in MARKET] + [make_ticker("ETHUSDC")]


def _klines(symbol: str, interval: str, limit: int, end_ms: int | None = None) -> list:
    volume, close = MARKET[symbol]
    return make_kline_rows(end_ms, interval, limit, volume=volume, close_price=close)


class Clock:
    def __init__(self, now: float = NOW_S) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def market_client(mock_client: AsyncMock) -> AsyncMock:
    mock_client.fetch_tickers_raw.side_effect = _tickers
    mock_client.fetch_klines_raw.side_effect = _klines
    return mock_client


def _build(
    client: AsyncMock,
    clock: Clock,
    profile: str = "momentum",
    timeframes: list[str] | None = None,
    **history_overrides,
) -> tuple[VolumeRefresher, RankingCache, HistoryTracker]:
    scanner = ScannerSettings(
        batch_size=2,
        batch_pause_seconds=0.0,
        refresh_interval=3600,
        timeframes=timeframes or ["5m", "15m", "1h", "4h", "1d"],
        profile=profile,
    )
    history_settings = HistorySettings(**history_overrides)
    source = MarketDataSource(
        client, scanner, ExchangeSettings(request_timeout_seconds=1.0), clock=clock
    )
    history = HistoryTracker()
    cache = RankingCache(scanner.timeframes, clock=clock)
    refresher = VolumeRefresher(
        source=source,
        aggregator=TimeframeAggregator(),
        history=history,
        cache=cache,
        profile=get_profile(profile),
        scanner_settings=scanner,
        history_settings=history_settings,
        clock=clock,
    )
    return refresher, cache, history


def _symbols(items) -> list[str]:
    return [m.symbol for m in items]


# ---------------------------------------------------------------------------
# Refresh algorithm
# ---------------------------------------------------------------------------


class TestRefreshTimeframe:
    @pytest.mark.asyncio
    async def test_publishes_ranked_buckets(self, market_client: AsyncMock, clock: Clock) -> None:
        refresher, cache, _ = _build(market_client, clock)

        await refresher.refresh_timeframe("1h")

        assert _symbols(cache.get_ranked_result_set("1h", TOP_VOLUME)) == [
            "BTCUSDT",
            "ETHUSDT",
            "SOLUSDT",
            "1000PEPEUSDT",
        ]
        assert _symbols(cache.get_ranked_result_set("1h", GAINING)) == ["BTCUSDT", "1000PEPEUSDT"]
        assert _symbols(cache.get_ranked_result_set("1h", LOSING)) == ["ETHUSDT"]
        assert cache.get_last_refresh_time() == NOW_S

    @pytest.mark.asyncio
    async def test_measurement_values(self, market_client: AsyncMock, clock: Clock) -> None:
        refresher, cache, _ = _build(market_client, clock)

        await refresher.refresh_timeframe("1h")

        btc = cache.get_ranked_result_set("1h", TOP_VOLUME)[0]
        assert btc.volume == Decimal("4000")  # four 15m candles
        assert btc.price_change_pct == Decimal("1")
        assert btc.last_price == Decimal("100")

    @pytest.mark.asyncio
    async def test_unavailable_symbol_dropped(self, market_client: AsyncMock, clock: Clock) -> None:
        def klines(symbol, interval, limit, end_ms=None):
            if symbol == "ETHUSDT":
                raise SymbolUnavailable(symbol, "Invalid symbol")
            if symbol == "SOLUSDT":
                raise SourceUnavailable("connection reset")
            return _klines(symbol, interval, limit, end_ms)

        market_client.fetch_klines_raw.side_effect = klines
        refresher, cache, _ = _build(market_client, clock)

        await refresher.refresh_timeframe("15m")

        assert _symbols(cache.get_ranked_result_set("15m", TOP_VOLUME)) == [
            "BTCUSDT",
            "1000PEPEUSDT",
        ]

    @pytest.mark.asyncio
    async def test_unexpected_symbol_error_dropped(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        def klines(symbol, interval, limit, end_ms=None):
            if symbol == "SOLUSDT":
                raise ValueError("unparsable kline payload")
            return _klines(symbol, interval, limit, end_ms)

        market_client.fetch_klines_raw.side_effect = klines
        refresher, cache, _ = _build(market_client, clock, timeframes=["1h"])

        await refresher.run_cycle()

        assert _symbols(cache.get_ranked_result_set("1h", TOP_VOLUME)) == [
            "BTCUSDT",
            "ETHUSDT",
            "1000PEPEUSDT",
        ]

    @pytest.mark.asyncio
    async def test_incomplete_window_excluded(self, market_client: AsyncMock, clock: Clock) -> None:
        def klines(symbol, interval, limit, end_ms=None):
            rows = _klines(symbol, interval, limit, end_ms)
            return rows[:3] if symbol == "BTCUSDT" else rows

        market_client.fetch_klines_raw.side_effect = klines
        refresher, cache, _ = _build(market_client, clock)

        await refresher.refresh_timeframe("1h")

        assert "BTCUSDT" not in _symbols(cache.get_ranked_result_set("1h", TOP_VOLUME))

    @pytest.mark.asyncio
    async def test_no_candidates_publishes_empty_buckets(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        market_client.fetch_klines_raw.side_effect = None
        market_client.fetch_klines_raw.return_value = []
        refresher, cache, _ = _build(market_client, clock)

        await refresher.refresh_timeframe("5m")

        assert cache.get_ranked_result_set("5m", TOP_VOLUME) == ()
        assert cache.get_ranked_result_set("5m", GAINING) == ()
        assert cache.is_ready("5m") is True
        assert cache.get_last_refresh_time() == NOW_S

    @pytest.mark.asyncio
    async def test_zero_volume_discarded(self, market_client: AsyncMock, clock: Clock) -> None:
        def klines(symbol, interval, limit, end_ms=None):
            if symbol == "SOLUSDT":
                return make_kline_rows(end_ms, interval, limit, volume="0")
            return _klines(symbol, interval, limit, end_ms)

        market_client.fetch_klines_raw.side_effect = klines
        refresher, cache, _ = _build(market_client, clock)

        result = await refresher.refresh_timeframe("4h")

        assert "SOLUSDT" not in _symbols(cache.get_ranked_result_set("4h", TOP_VOLUME))
        assert result.candidate_count == 3

    @pytest.mark.asyncio
    async def test_every_symbol_uses_same_window(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, _, _ = _build(market_client, clock)

        await refresher.refresh_timeframe("1h")

        ends = {call.kwargs["end_ms"] for call in market_client.fetch_klines_raw.await_args_list}
        assert ends == {(NOW_MS // 3_600_000) * 3_600_000 - 1}


# ---------------------------------------------------------------------------
# Cycle-level failure isolation
# ---------------------------------------------------------------------------


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_ticker_outage_keeps_previous_results(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, cache, _ = _build(market_client, clock)
        assert await refresher.run_cycle() is True
        previous = {tf: cache.get_result_set(tf) for tf in cache.timeframes}
        last_refresh = cache.get_last_refresh_time()

        clock.now += 300
        market_client.fetch_tickers_raw.side_effect = SourceUnavailable("503")
        await refresher.run_cycle()

        for tf in cache.timeframes:
            assert cache.get_result_set(tf) is previous[tf]
        assert cache.get_last_refresh_time() == last_refresh

    @pytest.mark.asyncio
    async def test_kline_outage_keeps_previous_results(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, cache, _ = _build(market_client, clock, timeframes=["1h"])
        await refresher.run_cycle()
        previous = cache.get_result_set("1h")
        assert len(previous.buckets[TOP_VOLUME]) == 4

        clock.now += 300
        market_client.fetch_klines_raw.side_effect = SourceUnavailable("network down")
        await refresher.run_cycle()

        assert cache.get_result_set("1h") is previous
        assert cache.get_last_refresh_time() == NOW_S

    @pytest.mark.asyncio
    async def test_failing_timeframe_does_not_block_others(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        def klines(symbol, interval, limit, end_ms=None):
            if interval == "15":
                raise RuntimeError("unexpected payload")
            return _klines(symbol, interval, limit, end_ms)

        market_client.fetch_klines_raw.side_effect = klines
        refresher, cache, _ = _build(market_client, clock)

        await refresher.run_cycle()

        assert cache.get_ranked_result_set("1h", TOP_VOLUME) is NOT_READY
        assert cache.ready_timeframes() == ["5m", "15m", "4h", "1d"]

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(self, market_client: AsyncMock, clock: Clock) -> None:
        refresher, cache, _ = _build(market_client, clock)

        async with refresher._cycle_lock:
            assert await refresher.run_cycle() is False

        assert cache.ready_timeframes() == []
        assert refresher.cycle_count == 0


# ---------------------------------------------------------------------------
# Exclusion history
# ---------------------------------------------------------------------------


class TestHistoryIntegration:
    @pytest.mark.asyncio
    async def test_daily_refresh_records_completed_day(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, _, history = _build(market_client, clock, top_k=2)

        await refresher.refresh_timeframe("1d")

        assert len(history.records) == 1
        assert history.records[0].day_start == TODAY - DAY_MS
        assert history.records[0].symbols == ("BTCUSDT", "ETHUSDT")

    @pytest.mark.asyncio
    async def test_daily_refresh_is_idempotent_per_day(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, _, history = _build(market_client, clock)

        await refresher.refresh_timeframe("1d")
        clock.now += 300
        await refresher.refresh_timeframe("1d")

        assert len(history.records) == 1

    @pytest.mark.asyncio
    async def test_always_top_asset_excluded(self, market_client: AsyncMock, clock: Clock) -> None:
        refresher, cache, history = _build(market_client, clock, min_appearances=5)
        for days_ago in range(2, 6):
            history.record_day(TODAY - days_ago * DAY_MS, ["PEPEUSDT", "DOGEUSDT"])

        await refresher.refresh_timeframe("1d")
        await refresher.refresh_timeframe("1h")

        assert history.exclusions == frozenset({"PEPE"})
        for tf in ("1d", "1h"):
            for bucket in (TOP_VOLUME, GAINING, LOSING):
                assert "1000PEPEUSDT" not in _symbols(cache.get_ranked_result_set(tf, bucket))
        assert cache.get_result_set("1h").excluded_count == 1

    @pytest.mark.asyncio
    async def test_volume_profile_tracks_no_history(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, cache, history = _build(market_client, clock, profile="volume")

        await refresher.refresh_timeframe("1d")

        assert history.records == ()
        assert cache.get_result_set("1d").bucket_names == (TOP_VOLUME,)


class TestBackfill:
    @pytest.mark.asyncio
    async def test_backfill_seeds_retention_window(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, _, history = _build(market_client, clock, min_appearances=7, top_k=3)

        recorded = await refresher.backfill_history()

        assert recorded == 7
        assert [r.day_start for r in history.records] == [
            TODAY - d * DAY_MS for d in range(7, 0, -1)
        ]
        assert history.exclusions == frozenset({"BTC", "ETH", "SOL"})

    @pytest.mark.asyncio
    async def test_backfill_windows_anchored_at_noon(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, _, _ = _build(market_client, clock)

        await refresher.backfill_history()

        ends = {call.kwargs["end_ms"] for call in market_client.fetch_klines_raw.await_args_list}
        assert ends == {TODAY - d * DAY_MS + 12 * 3_600_000 for d in range(1, 8)}

    @pytest.mark.asyncio
    async def test_failing_day_leaves_gap(self, market_client: AsyncMock, clock: Clock) -> None:
        bad_day = TODAY - 3 * DAY_MS

        def klines(symbol, interval, limit, end_ms=None):
            if day_start(end_ms) == bad_day:
                raise RuntimeError("server error")
            return _klines(symbol, interval, limit, end_ms)

        market_client.fetch_klines_raw.side_effect = klines
        refresher, _, history = _build(market_client, clock)

        recorded = await refresher.backfill_history()

        assert recorded == 6
        assert bad_day not in [r.day_start for r in history.records]

    @pytest.mark.asyncio
    async def test_backfill_skipped_without_tickers(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        market_client.fetch_tickers_raw.side_effect = SourceUnavailable("down")
        refresher, _, history = _build(market_client, clock)

        assert await refresher.backfill_history() == 0
        assert history.records == ()

    @pytest.mark.asyncio
    async def test_live_daily_refresh_after_backfill_adds_no_duplicate(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        refresher, _, history = _build(market_client, clock)

        await refresher.backfill_history()
        await refresher.refresh_timeframe("1d")

        assert len(history.records) == 7


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_first_cycle(self, market_client: AsyncMock, clock: Clock) -> None:
        refresher, cache, history = _build(market_client, clock, timeframes=["5m", "1d"])

        await refresher.start()
        for _ in range(100):
            if cache.ready_timeframes() == ["5m", "1d"]:
                break
            await asyncio.sleep(0.01)
        await refresher.stop()

        assert cache.ready_timeframes() == ["5m", "1d"]
        assert len(history.records) == 7

    @pytest.mark.asyncio
    async def test_stop_abandons_in_flight_cycle(
        self, market_client: AsyncMock, clock: Clock
    ) -> None:
        started = asyncio.Event()

        async def stalled(symbol, interval, limit, end_ms=None):
            started.set()
            await asyncio.Event().wait()

        market_client.fetch_klines_raw.side_effect = stalled
        refresher, cache, _ = _build(
            market_client, clock, timeframes=["1h"], backfill_on_start=False
        )

        await refresher.start()
        await asyncio.wait_for(started.wait(), timeout=1.0)
        await refresher.stop()

        assert cache.get_ranked_result_set("1h", TOP_VOLUME) is NOT_READY
        assert refresher._task is None
