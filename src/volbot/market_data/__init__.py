"""Market data layer -- candle aggregation, exclusion history, and volume ranking."""

from volbot.market_data.aggregator import TimeframeAggregator
from volbot.market_data.history import HistoryTracker, base_asset
from volbot.market_data.ranking_cache import NOT_READY, RankingCache
from volbot.market_data.refresher import VolumeRefresher
from volbot.market_data.source import MarketDataSource, is_perpetual_symbol

__all__ = [
    "NOT_READY",
    "HistoryTracker",
    "MarketDataSource",
    "RankingCache",
    "TimeframeAggregator",
    "VolumeRefresher",
    "base_asset",
    "is_perpetual_symbol",
]
