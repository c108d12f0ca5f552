"""FastAPI application factory for the read-only ranking API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from volbot.dashboard.routes import api


def create_dashboard_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        FastAPI application with the JSON API mounted under /api. Route
        handlers read ranking_cache, history and profile from app.state.
    """
    app = FastAPI(
        title="Perpetual Volume Ranker",
        lifespan=lifespan,
    )
    app.include_router(api.router, prefix="/api")
    return app
