"""FastAPI application entry point for the community dashboard API."""

import logging
import sys

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from dashboard.config import Settings, settings as default_settings
from dashboard.errors import register_error_handlers
from dashboard.services.analytics import AnalyticsTracker, LogAnalytics, SqlAnalytics
from dashboard.services.cache import TemporalCache
from dashboard.services.stores import SqlCacheStore, make_store

# Structured logging: JSON for production, human-readable for local
if default_settings.is_production:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}',
        stream=sys.stdout,
    )
else:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    cache: TemporalCache | None = None,
    http_client: httpx.AsyncClient | None = None,
    analytics: AnalyticsTracker | None = None,
) -> FastAPI:
    """Build the app. Collaborators not passed in are created at startup."""
    settings = settings or default_settings
    app = FastAPI(title="Community Dashboard API", version="1.0.0")

    app.state.settings = settings
    app.state.cache = cache
    app.state.http_client = http_client
    app.state.analytics = analytics

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Security headers
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Centralized error handlers
    register_error_handlers(app)

    from dashboard.routes.health import router as health_router
    from dashboard.routes.widgets import router as widgets_router

    app.include_router(health_router)
    app.include_router(widgets_router)

    owned: list = []

    @app.on_event("startup")
    async def _startup() -> None:
        missing = settings.validate()
        if missing:
            logger.warning("Missing env vars (live data may fall back): %s", ", ".join(missing))

        if app.state.cache is None:
            store = make_store(settings)
            app.state.cache = TemporalCache(store, single_flight=settings.cache_single_flight)
            owned.append(store)
        if app.state.http_client is None:
            app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
            owned.append(app.state.http_client)
        if app.state.analytics is None:
            store = app.state.cache.store
            if isinstance(store, SqlCacheStore):
                app.state.analytics = SqlAnalytics(store.engine)
            else:
                app.state.analytics = LogAnalytics()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        for resource in owned:
            if isinstance(resource, httpx.AsyncClient):
                await resource.aclose()
            else:
                await resource.close()
        owned.clear()

    return app


app = create_app()
