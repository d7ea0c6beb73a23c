"""Health and readiness check routes."""

import logging

from fastapi import APIRouter, Depends

from dashboard.config import Settings
from dashboard.routes.deps import get_cache, get_settings
from dashboard.services.cache import TemporalCache

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/ready")
async def ready(settings: Settings = Depends(get_settings)) -> dict:
    """Lightweight readiness check, no external calls."""
    return {"status": "ok", "service": "community-dashboard", "commit": settings.git_sha}


@router.get("/health")
async def health(
    settings: Settings = Depends(get_settings),
    cache: TemporalCache = Depends(get_cache),
) -> dict:
    """Readiness plus cache backend and missing configuration."""
    missing = settings.validate()
    return {
        "status": "ok",
        "service": "community-dashboard",
        "commit": settings.git_sha,
        "cache": getattr(cache.store, "name", type(cache.store).__name__),
        "missing_config": missing,
    }
