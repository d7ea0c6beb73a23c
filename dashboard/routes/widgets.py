"""Widget data routes, one cached lookup per data domain.

GET /api/weather     → OpenWeatherMap, 15 min
GET /api/ferry       → BC Ferries, 30 min
GET /api/gas-prices  → NRCan weekly prices, 6 h

Every response is the payload plus ``cached``. Upstream failures come back as
200 with ``source: "fallback"``; only a failing fallback is an error.
"""

import logging

import httpx
from fastapi import APIRouter, Depends

from dashboard.config import Settings
from dashboard.routes.deps import get_analytics, get_cache, get_http_client, get_settings
from dashboard.services.analytics import AnalyticsTracker, event_source
from dashboard.services.cache import TemporalCache
from dashboard.services.ferry import get_ferries
from dashboard.services.gas_prices import get_gas_prices
from dashboard.services.weather import get_weather

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


async def _respond(
    widget: str,
    lookup,
    cache: TemporalCache,
    client: httpx.AsyncClient,
    settings: Settings,
    analytics: AnalyticsTracker,
) -> dict:
    payload, cached = await lookup(cache, client, settings)
    await analytics.track(
        "api_call", widget, settings.location, {"source": event_source(payload, cached)}
    )
    return {**payload, "cached": cached}


@router.get("/weather")
async def weather(
    cache: TemporalCache = Depends(get_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    analytics: AnalyticsTracker = Depends(get_analytics),
) -> dict:
    return await _respond("weather", get_weather, cache, client, settings, analytics)


@router.get("/ferry")
async def ferry(
    cache: TemporalCache = Depends(get_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    analytics: AnalyticsTracker = Depends(get_analytics),
) -> dict:
    return await _respond("ferry", get_ferries, cache, client, settings, analytics)


@router.get("/gas-prices")
async def gas_prices(
    cache: TemporalCache = Depends(get_cache),
    client: httpx.AsyncClient = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    analytics: AnalyticsTracker = Depends(get_analytics),
) -> dict:
    return await _respond("gas_prices", get_gas_prices, cache, client, settings, analytics)
