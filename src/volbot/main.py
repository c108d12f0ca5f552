"""Entry point for the perpetual volume ranker.

Wires all components together, optionally embeds the FastAPI read API,
and starts the volume refresher. When the API is enabled (default), the
refresher and the API share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. BybitClient (public market data via ccxt)
4. MarketDataSource (snapshots, candle windows, batching)
5. TimeframeAggregator
6. HistoryTracker (daily top-K history, exclusion set)
7. RankingCache (published result sets)
8. VolumeRefresher (periodic refresh driver)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from volbot.config import AppSettings
from volbot.exchange.bybit_client import BybitClient
from volbot.logging import get_logger, setup_logging
from volbot.market_data.aggregator import TimeframeAggregator
from volbot.market_data.buckets import get_profile
from volbot.market_data.history import HistoryTracker
from volbot.market_data.ranking_cache import RankingCache
from volbot.market_data.refresher import VolumeRefresher
from volbot.market_data.source import MarketDataSource


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Does NOT start anything; the refresher is started by the lifespan
    (API mode) or run() (headless mode).
    """
    profile = get_profile(settings.scanner.profile)

    exchange_client = BybitClient(settings.exchange)
    source = MarketDataSource(exchange_client, settings.scanner, settings.exchange)
    aggregator = TimeframeAggregator()
    history = HistoryTracker(quote_suffix=settings.scanner.quote_suffix)
    ranking_cache = RankingCache(settings.scanner.timeframes)

    refresher = VolumeRefresher(
        source=source,
        aggregator=aggregator,
        history=history,
        cache=ranking_cache,
        profile=profile,
        scanner_settings=settings.scanner,
        history_settings=settings.history,
    )

    return {
        "exchange_client": exchange_client,
        "source": source,
        "aggregator": aggregator,
        "history": history,
        "ranking_cache": ranking_cache,
        "refresher": refresher,
        "profile": profile,
    }


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set stop_event on SIGINT/SIGTERM. Must be called inside the running loop."""
    logger = get_logger("volbot.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: exposes the read side on app.state, connects the exchange
    client and starts the refresher.

    On shutdown: stops the refresher (abandoning any in-flight cycle) and
    closes the exchange client.
    """
    logger = get_logger("volbot.main")
    settings: AppSettings = app.state.settings
    components = app.state.components

    app.state.ranking_cache = components["ranking_cache"]
    app.state.history = components["history"]
    app.state.profile = components["profile"]
    app.state.quote_suffix = settings.scanner.quote_suffix

    await components["exchange_client"].connect()
    await components["refresher"].start()

    logger.info("lifespan_started", profile=components["profile"].name)

    yield

    await components["refresher"].stop()
    await components["exchange_client"].close()

    logger.info("volume_ranker_stopped")


async def run() -> None:
    """Run the volume ranker.

    When the API is enabled (DASHBOARD_ENABLED=true, the default), uvicorn
    serves the read API and the lifespan manages the refresher. Otherwise
    the refresher runs headless until SIGINT/SIGTERM.
    """
    settings = AppSettings()

    setup_logging(settings.log_level)
    logger = get_logger("volbot.main")

    components = _build_components(settings)

    if settings.dashboard.enabled:
        from volbot.dashboard.app import create_dashboard_app

        app = create_dashboard_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            profile=settings.scanner.profile,
        )

        config = uvicorn.Config(
            app,
            host=settings.dashboard.host,
            port=settings.dashboard.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
    else:
        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        logger.info(
            "starting_headless",
            profile=settings.scanner.profile,
            refresh_interval=settings.scanner.refresh_interval,
        )

        try:
            await components["exchange_client"].connect()
            await components["refresher"].start()
            await stop_event.wait()
        finally:
            await components["refresher"].stop()
            await components["exchange_client"].close()
            logger.info("volume_ranker_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
