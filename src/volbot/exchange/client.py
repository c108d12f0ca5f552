"""Abstract market data client interface.

Defines the contract for all exchange implementations. The market data
layer depends only on this interface, keeping Bybit-specific transport
details isolated in the concrete implementation.
"""

from abc import ABC, abstractmethod


class MarketDataClient(ABC):
    """Abstract base class for public market data API clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the underlying connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (CRITICAL for ccxt async)."""
        ...

    @abstractmethod
    async def fetch_tickers_raw(self) -> list[dict]:
        """Fetch the raw ticker list for every instrument in the category.

        Each dict carries at least: symbol, lastPrice, turnover24h, price24hPcnt.
        """
        ...

    @abstractmethod
    async def fetch_klines_raw(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_ms: int | None = None,
    ) -> list[list]:
        """Fetch raw kline rows for a symbol.

        Returns rows of [startTime, open, high, low, close, volume, turnover]
        as strings, NEWEST FIRST (Bybit ordering). When end_ms is given only
        candles starting at or before it are returned.
        """
        ...
