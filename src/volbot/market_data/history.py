"""Rolling daily top-volume history and the adaptive exclusion set.

Instruments that sit in the daily top-K by volume almost every day carry
little ranking signal. The tracker keeps one DailyTopRecord per UTC day for
the retention window and excludes any base asset that appears in at least
min_appearances of the retained records.

The exclusion set is always rebuilt from scratch from the retained records
and swapped in as a whole, never patched incrementally, so it stays
consistent with pruning.
"""

import re
import time
from collections import Counter
from collections.abc import Iterable

from volbot.logging import get_logger
from volbot.market_data.timeframes import DAY_MS, day_start
from volbot.models import DailyTopRecord

logger = get_logger(__name__)

# Size-multiplier prefix on low-priced contracts: 1000PEPE, 10000LADYS, 1000000MOG
_MULTIPLIER_PREFIX = re.compile(r"^10+(?=[A-Z])")


def base_asset(symbol: str, quote_suffix: str = "USDT") -> str:
    """Derive the base asset from a symbol.

    Strips the quote suffix, then a leading size multiplier:
    "1000PEPEUSDT" -> "PEPE", "BTCUSDT" -> "BTC", "1INCHUSDT" -> "1INCH".
    """
    base = symbol[: -len(quote_suffix)] if quote_suffix and symbol.endswith(quote_suffix) else symbol
    return _MULTIPLIER_PREFIX.sub("", base)


class HistoryTracker:
    """Owns the DailyTopRecord sequence and the derived ExclusionSet.

    Args:
        quote_suffix: Quote currency stripped when deriving base assets.
    """

    def __init__(self, quote_suffix: str = "USDT") -> None:
        self._quote_suffix = quote_suffix
        self._records: list[DailyTopRecord] = []
        self._exclusions: frozenset[str] = frozenset()

    @property
    def records(self) -> tuple[DailyTopRecord, ...]:
        """Retained records ordered by day."""
        return tuple(self._records)

    @property
    def exclusions(self) -> frozenset[str]:
        """Current exclusion set (base assets)."""
        return self._exclusions

    def has_day(self, day_start_ms: int) -> bool:
        return any(r.day_start == day_start_ms for r in self._records)

    def record_day(self, day_start_ms: int, top_symbols: Iterable[str]) -> bool:
        """Append a record for the day unless one already exists.

        Args:
            day_start_ms: Timestamp inside the day; normalized to 00:00 UTC.
            top_symbols: Top-K symbols by daily volume, highest first.

        Returns:
            True if a record was added, False if the day was already recorded.
        """
        boundary = day_start(day_start_ms)
        if self.has_day(boundary):
            return False

        record = DailyTopRecord(day_start=boundary, symbols=tuple(top_symbols))
        self._records.append(record)
        self._records.sort(key=lambda r: r.day_start)
        logger.info(
            "daily_top_recorded",
            day_start=boundary,
            symbols=len(record.symbols),
            retained_days=len(self._records),
        )
        return True

    def prune_older_than(self, retention_days: int, now_ms: int | None = None) -> int:
        """Drop records older than retention_days before today's UTC boundary.

        Returns:
            Number of records removed.
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        cutoff = day_start(now_ms) - retention_days * DAY_MS

        kept = [r for r in self._records if r.day_start >= cutoff]
        removed = len(self._records) - len(kept)
        self._records = kept

        if removed:
            logger.debug("history_pruned", removed=removed, retained_days=len(kept))
        return removed

    def recompute_exclusions(self, min_appearances: int) -> frozenset[str]:
        """Rebuild the exclusion set from the retained records.

        A base asset counts at most once per record, so 1000PEPEUSDT and
        PEPEUSDT in the same day count as one appearance.
        """
        counts: Counter[str] = Counter()
        for record in self._records:
            counts.update({base_asset(s, self._quote_suffix) for s in record.symbols})

        exclusions = frozenset(
            asset for asset, count in counts.items() if count >= min_appearances
        )
        if exclusions != self._exclusions:
            logger.info(
                "exclusions_updated",
                count=len(exclusions),
                added=sorted(exclusions - self._exclusions),
                removed=sorted(self._exclusions - exclusions),
            )
        self._exclusions = exclusions
        return exclusions

    def is_excluded(self, symbol: str) -> bool:
        return base_asset(symbol, self._quote_suffix) in self._exclusions
