"""Request-scoped access to the process-wide collaborators built in app.py."""

import httpx
from fastapi import Request

from dashboard.config import Settings
from dashboard.services.analytics import AnalyticsTracker
from dashboard.services.cache import TemporalCache


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> TemporalCache:
    return request.app.state.cache


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_analytics(request: Request) -> AnalyticsTracker:
    return request.app.state.analytics
