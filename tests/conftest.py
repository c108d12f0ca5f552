"""Shared test fixtures for the volume ranking bot."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from volbot.config import AppSettings, ExchangeSettings, HistorySettings, ScannerSettings
from volbot.exchange.client import MarketDataClient
from volbot.market_data.timeframes import TIMEFRAMES

# 2024-01-10 15:07:30 UTC
NOW_S = 1_704_899_250.0

_CANDLE_MS_BY_INTERVAL = {spec.interval: spec.candle_ms for spec in TIMEFRAMES.values()}


def make_kline_rows(
    end_ms: int,
    interval: str,
    limit: int,
    volume: Decimal | str = "100",
    open_price: Decimal | str = "100",
    close_price: Decimal | str = "100",
) -> list[list[str]]:
    """Build Bybit-style kline rows (newest first) ending at or before end_ms.

    Every candle carries the same open, close and turnover.
    """
    candle_ms = _CANDLE_MS_BY_INTERVAL[interval]
    newest = (end_ms // candle_ms) * candle_ms
    return [
        [
            str(newest - i * candle_ms),
            str(open_price),
            str(max(Decimal(str(open_price)), Decimal(str(close_price)))),
            str(min(Decimal(str(open_price)), Decimal(str(close_price)))),
            str(close_price),
            "1",
            str(volume),
        ]
        for i in range(limit)
    ]


def make_ticker(symbol: str, last_price: str = "100", pcnt: str = "0.01") -> dict:
    return {
        "symbol": symbol,
        "lastPrice": last_price,
        "turnover24h": "1000000",
        "price24hPcnt": pcnt,
    }


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (no API, fast batches)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(request_timeout_seconds=1.0),
        scanner=ScannerSettings(batch_size=2, batch_pause_seconds=0.0),
        history=HistorySettings(),
    )


@pytest.fixture
def mock_client() -> AsyncMock:
    """Mock MarketDataClient; tests set tickers and kline behaviour."""
    client = AsyncMock(spec=MarketDataClient)
    client.fetch_tickers_raw = AsyncMock(return_value=[])
    client.fetch_klines_raw = AsyncMock(return_value=[])
    return client
