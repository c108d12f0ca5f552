"""Market data source -- instrument snapshots and aligned candle windows.

Wraps a MarketDataClient with:
- Parsing of raw Bybit payloads into Decimal-valued models
- The perpetual symbol universe filter (quote suffix, no dated expiry)
- Bounded batching: up to batch_size concurrent requests, a short pause
  between batches, and a per-request timeout so one stalled symbol cannot
  stall a whole refresh

Bybit kline responses are REVERSE-SORTED (newest first); candles returned
from here are always chronological.
"""

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from decimal import Decimal, InvalidOperation
from typing import TypeVar

from volbot.config import ExchangeSettings, ScannerSettings
from volbot.exceptions import SourceUnavailable, SymbolUnavailable
from volbot.exchange.client import MarketDataClient
from volbot.logging import get_logger
from volbot.market_data.timeframes import aligned_window_end, get_timeframe, window_start
from volbot.models import Candle, InstrumentSnapshot

logger = get_logger(__name__)

T = TypeVar("T")

# Dated (calendar/quarterly) futures carry an expiry suffix such as -27DEC24
_DATED_EXPIRY = re.compile(r"-\d{2}[A-Z]{3}\d{2}")


def is_perpetual_symbol(symbol: str, quote_suffix: str = "USDT") -> bool:
    """Return True for perpetual contracts quoted in quote_suffix."""
    return symbol.endswith(quote_suffix) and not _DATED_EXPIRY.search(symbol)


class MarketDataSource:
    """Fetches ticker snapshots and candle windows. Holds no mutable state.

    Args:
        client: Exchange transport.
        scanner_settings: Batch size, pause and quote suffix.
        exchange_settings: Per-request timeout.
        clock: Returns current Unix time in seconds (injectable for tests).
    """

    def __init__(
        self,
        client: MarketDataClient,
        scanner_settings: ScannerSettings,
        exchange_settings: ExchangeSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._batch_size = max(1, scanner_settings.batch_size)
        self._batch_pause = scanner_settings.batch_pause_seconds
        self._quote_suffix = scanner_settings.quote_suffix
        self._timeout = exchange_settings.request_timeout_seconds
        self._clock = clock

    @property
    def quote_suffix(self) -> str:
        return self._quote_suffix

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ──────────────────────────────────────────────
    # Snapshots
    # ──────────────────────────────────────────────

    async def fetch_instrument_snapshots(self) -> list[InstrumentSnapshot]:
        """Fetch every ticker in one call and parse it into snapshots.

        Tickers with a missing symbol or unparsable last price are skipped.

        Raises:
            SourceUnavailable: Transport failure, timeout, or malformed response.
        """
        try:
            raw = await asyncio.wait_for(self._client.fetch_tickers_raw(), self._timeout)
        except asyncio.TimeoutError as e:
            raise SourceUnavailable("tickers request timed out") from e

        snapshots: list[InstrumentSnapshot] = []
        for ticker in raw:
            if not isinstance(ticker, dict):
                continue
            symbol = ticker.get("symbol")
            last_price = _to_decimal(ticker.get("lastPrice"))
            if not symbol or last_price is None:
                logger.warning("invalid_ticker_skipped", symbol=symbol)
                continue
            snapshots.append(
                InstrumentSnapshot(
                    symbol=symbol,
                    last_price=last_price,
                    turnover_24h=_to_decimal(ticker.get("turnover24h")) or Decimal("0"),
                    price_change_24h=_to_decimal(ticker.get("price24hPcnt")) or Decimal("0"),
                )
            )

        logger.debug("instrument_snapshots_fetched", count=len(snapshots))
        return snapshots

    def eligible_symbols(self, snapshots: Sequence[InstrumentSnapshot]) -> list[InstrumentSnapshot]:
        """Keep only perpetual contracts in the configured quote currency."""
        return [s for s in snapshots if is_perpetual_symbol(s.symbol, self._quote_suffix)]

    # ──────────────────────────────────────────────
    # Candle windows
    # ──────────────────────────────────────────────

    async def fetch_candle_window(
        self,
        symbol: str,
        timeframe: str,
        window_end_ms: int | None = None,
    ) -> list[Candle]:
        """Fetch the candles covering one timeframe window, oldest first.

        Args:
            symbol: Exchange symbol, e.g. "BTCUSDT".
            timeframe: One of the supported ranking timeframes.
            window_end_ms: Last millisecond of the window. None selects the
                most recently completed aligned window.

        Returns:
            Candles whose open time falls inside the window. May hold fewer
            candles than the timeframe requires; the aggregator decides.

        Raises:
            SymbolUnavailable: The exchange rejected the symbol or the payload
                could not be parsed.
            SourceUnavailable: Transport failure or timeout.
        """
        spec = get_timeframe(timeframe)
        end_ms = window_end_ms if window_end_ms is not None else aligned_window_end(
            timeframe, self.now_ms()
        )
        start_ms = window_start(timeframe, end_ms)

        try:
            rows = await asyncio.wait_for(
                self._client.fetch_klines_raw(
                    symbol, spec.interval, spec.candle_count, end_ms=end_ms
                ),
                self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise SourceUnavailable(f"kline request timed out for {symbol}") from e

        candles: list[Candle] = []
        for row in rows:
            candle = _parse_kline_row(row)
            if candle is None:
                raise SymbolUnavailable(symbol, f"malformed kline row {row!r}")
            if start_ms <= candle.open_time <= end_ms:
                candles.append(candle)

        candles.sort(key=lambda c: c.open_time)
        return candles

    # ──────────────────────────────────────────────
    # Batching
    # ──────────────────────────────────────────────

    async def fetch_batched(
        self,
        symbols: Sequence[str],
        fetch_one: Callable[[str], Awaitable[T]],
    ) -> list[tuple[str, T]]:
        """Run fetch_one over symbols in bounded concurrent batches.

        Failed symbols are dropped; the result keeps input order for the
        symbols that succeeded.

        Raises:
            SourceUnavailable: No symbol succeeded and none was rejected by
                the exchange; every fetch failed on transport or with an
                unexpected error.
        """
        results: list[tuple[str, T]] = []
        dropped = 0
        failed = 0

        for i in range(0, len(symbols), self._batch_size):
            batch = symbols[i : i + self._batch_size]
            outcomes = await asyncio.gather(
                *(fetch_one(symbol) for symbol in batch),
                return_exceptions=True,
            )
            for symbol, outcome in zip(batch, outcomes):
                if isinstance(outcome, SymbolUnavailable):
                    logger.debug("symbol_unavailable", symbol=symbol, reason=outcome.reason)
                    dropped += 1
                elif isinstance(outcome, SourceUnavailable):
                    logger.debug("symbol_fetch_failed", symbol=symbol, error=str(outcome))
                    failed += 1
                elif isinstance(outcome, Exception):
                    logger.warning(
                        "symbol_fetch_error",
                        symbol=symbol,
                        error=f"{type(outcome).__name__}: {outcome}",
                    )
                    failed += 1
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append((symbol, outcome))

            if i + self._batch_size < len(symbols):
                await asyncio.sleep(self._batch_pause)

        if dropped or failed:
            logger.info(
                "batch_fetch_incomplete",
                requested=len(symbols),
                dropped_symbols=dropped,
                transport_failures=failed,
            )
        if symbols and failed == len(symbols):
            raise SourceUnavailable(f"all {failed} symbol fetches failed")
        return results


def _to_decimal(value: object) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _parse_kline_row(row: object) -> Candle | None:
    """Parse [startTime, open, high, low, close, volume, turnover, ...]."""
    if not isinstance(row, (list, tuple)) or len(row) < 7:
        return None
    open_price = _to_decimal(row[1])
    close_price = _to_decimal(row[4])
    turnover = _to_decimal(row[6])
    if open_price is None or close_price is None or turnover is None:
        return None
    try:
        open_time = int(row[0])
    except (TypeError, ValueError):
        return None
    return Candle(
        open_time=open_time,
        open_price=open_price,
        close_price=close_price,
        volume=turnover,
    )
