"""Bybit public market data client via ccxt async.

Uses ccxt's implicit v5 endpoints rather than the unified fetch_ohlcv /
fetch_tickers, because ranking needs the raw quote-currency turnover field
that the unified OHLCV shape drops.
"""

import ccxt.async_support as ccxt_async

from volbot.config import ExchangeSettings
from volbot.exceptions import SourceUnavailable, SymbolUnavailable
from volbot.exchange.client import MarketDataClient
from volbot.logging import get_logger

logger = get_logger(__name__)


class BybitClient(MarketDataClient):
    """Concrete Bybit market data client using ccxt async (public endpoints only)."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._exchange = ccxt_async.bybit(
            {
                "enableRateLimit": True,
                "timeout": int(settings.request_timeout_seconds * 1000),
                "options": {"defaultType": "swap"},
            }
        )
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)

    @property
    def exchange(self) -> ccxt_async.bybit:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Nothing to preload: only public market endpoints are used."""
        logger.info(
            "bybit_client_ready",
            category=self._settings.category,
            testnet=self._settings.testnet,
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        logger.info("closing_bybit_connection")
        await self._exchange.close()
        logger.info("bybit_connection_closed")

    async def fetch_tickers_raw(self) -> list[dict]:
        """Fetch every ticker in the configured category in a single call."""
        try:
            response = await self._exchange.public_get_v5_market_tickers(
                {"category": self._settings.category}
            )
        except ccxt_async.BaseError as e:
            raise SourceUnavailable(f"tickers request failed: {e}") from e

        tickers = _result_list(response)
        if tickers is None:
            raise SourceUnavailable("tickers response missing result.list")
        return tickers

    async def fetch_klines_raw(
        self,
        symbol: str,
        interval: str,
        limit: int,
        end_ms: int | None = None,
    ) -> list[list]:
        """Fetch kline rows for one symbol, newest first."""
        params: dict = {
            "category": self._settings.category,
            "symbol": symbol,
            "interval": interval,
            "limit": limit,
        }
        if end_ms is not None:
            params["end"] = end_ms

        try:
            response = await self._exchange.public_get_v5_market_kline(params)
        except (ccxt_async.BadSymbol, ccxt_async.BadRequest, ccxt_async.BadResponse) as e:
            raise SymbolUnavailable(symbol, str(e)) from e
        except ccxt_async.NetworkError as e:
            raise SourceUnavailable(f"kline request failed for {symbol}: {e}") from e
        except ccxt_async.ExchangeError as e:
            raise SymbolUnavailable(symbol, str(e)) from e
        except ccxt_async.BaseError as e:
            raise SourceUnavailable(f"kline request failed for {symbol}: {e}") from e

        rows = _result_list(response)
        if rows is None:
            raise SymbolUnavailable(symbol, "kline response missing result.list")
        return rows


def _result_list(response: object) -> list | None:
    """Extract result.list from a Bybit v5 response envelope."""
    if not isinstance(response, dict):
        return None
    result = response.get("result")
    if not isinstance(result, dict):
        return None
    rows = result.get("list")
    if not isinstance(rows, list):
        return None
    return rows
