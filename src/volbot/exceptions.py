"""Custom exceptions for the volume ranking bot.

Market data and aggregation exceptions live here to avoid circular
imports between the exchange and market data layers.
"""


class VolumeBotError(Exception):
    """Base exception for all bot errors."""


class SourceUnavailable(VolumeBotError):
    """Raised when the exchange cannot be reached or returns an unparsable payload.

    Recoverable: the current refresh is skipped and retried next cycle.
    """


class SymbolUnavailable(VolumeBotError):
    """Raised when a single symbol's kline request is rejected or malformed.

    Recoverable: only that symbol is dropped from the batch.
    """

    def __init__(self, symbol: str, reason: str = "") -> None:
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{symbol}: {reason}" if reason else symbol)


class IncompleteWindow(VolumeBotError):
    """Raised when fewer candles than a timeframe requires were returned."""

    def __init__(self, symbol: str, timeframe: str, got: int, required: int) -> None:
        self.symbol = symbol
        self.timeframe = timeframe
        self.got = got
        self.required = required
        super().__init__(
            f"{symbol} {timeframe}: {got} of {required} candles"
        )
