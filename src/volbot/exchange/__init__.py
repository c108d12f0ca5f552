"""Exchange client layer -- Bybit public market data via ccxt."""

from volbot.exchange.bybit_client import BybitClient
from volbot.exchange.client import MarketDataClient

__all__ = ["BybitClient", "MarketDataClient"]
