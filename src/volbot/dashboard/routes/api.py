"""JSON API endpoints exposing the published volume rankings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from volbot.dashboard.formatting import (
    display_symbol,
    format_change,
    format_price,
    format_volume,
)
from volbot.market_data.ranking_cache import NOT_READY
from volbot.models import TimeframeMeasurement

log = structlog.get_logger(__name__)

router = APIRouter()


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _entry(rank: int, m: TimeframeMeasurement, quote_suffix: str) -> dict[str, Any]:
    return {
        "rank": rank,
        "symbol": m.symbol,
        "display_symbol": display_symbol(m.symbol, quote_suffix),
        "last_price": str(m.last_price),
        "volume": str(m.volume),
        "price_change_pct": str(m.price_change_pct),
        "display": {
            "price": format_price(m.last_price),
            "volume": format_volume(m.volume),
            "change": format_change(m.price_change_pct),
        },
    }


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Readiness per timeframe and the last successful refresh."""
    cache = request.app.state.ranking_cache
    history = request.app.state.history
    profile = request.app.state.profile

    return JSONResponse(content={
        "profile": profile.name,
        "buckets": list(profile.bucket_names),
        "timeframes": list(cache.timeframes),
        "ready_timeframes": cache.ready_timeframes(),
        "last_refresh": _iso(cache.get_last_refresh_time()),
        "history_days": len(history.records) if profile.track_history else 0,
        "exclusion_count": len(history.exclusions) if profile.track_history else 0,
    })


@router.get("/volume/{timeframe}/{bucket}")
async def get_bucket(timeframe: str, bucket: str, request: Request) -> JSONResponse:
    """Ranked entries of one bucket; 503 until the timeframe's first refresh."""
    cache = request.app.state.ranking_cache
    profile = request.app.state.profile
    quote_suffix = request.app.state.quote_suffix

    if timeframe not in cache.timeframes:
        return JSONResponse(status_code=404, content={"error": f"unknown timeframe {timeframe}"})
    if bucket not in profile.bucket_names:
        return JSONResponse(status_code=404, content={"error": f"unknown bucket {bucket}"})

    entries = cache.get_ranked_result_set(timeframe, bucket)
    if entries is NOT_READY:
        log.debug("bucket_not_ready", timeframe=timeframe, bucket=bucket)
        return JSONResponse(status_code=503, content={"status": "not_ready"})

    result_set = cache.get_result_set(timeframe)
    return JSONResponse(content={
        "timeframe": timeframe,
        "bucket": bucket,
        "refreshed_at": _iso(result_set.refreshed_at),
        "entries": [_entry(i, m, quote_suffix) for i, m in enumerate(entries, 1)],
    })


@router.get("/exclusions")
async def get_exclusions(request: Request) -> JSONResponse:
    """Base assets currently excluded and the days the decision is based on."""
    history = request.app.state.history
    profile = request.app.state.profile

    if not profile.track_history:
        return JSONResponse(content={"enabled": False, "exclusions": [], "days": []})

    return JSONResponse(content={
        "enabled": True,
        "exclusions": sorted(history.exclusions),
        "days": [
            {
                "day": datetime.fromtimestamp(r.day_start / 1000, tz=timezone.utc).date().isoformat(),
                "symbols": list(r.symbols),
            }
            for r in history.records
        ],
    })
