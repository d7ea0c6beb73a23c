"""Per-request usage tracking for dashboard widgets.

One event per data request, tagged with where the answer came from
("cache", "openweathermap", "fallback", ...). Tracking never fails a request.
"""

import asyncio
import logging
from typing import Protocol

from sqlalchemy import insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dashboard.services.cache import utc_now
from dashboard.services.stores import analytics as analytics_table

logger = logging.getLogger(__name__)


class AnalyticsTracker(Protocol):
    async def track(self, event_type: str, widget: str, location: str, data: dict) -> None:
        ...


class LogAnalytics:
    async def track(self, event_type: str, widget: str, location: str, data: dict) -> None:
        logger.info("%s widget=%s location=%s data=%s", event_type, widget, location, data)


class SqlAnalytics:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def track(self, event_type: str, widget: str, location: str, data: dict) -> None:
        try:
            await asyncio.to_thread(self._insert, event_type, widget, location, data)
        except SQLAlchemyError as e:
            logger.warning("Analytics write failed for %s/%s: %s", widget, event_type, e)

    def _insert(self, event_type: str, widget: str, location: str, data: dict) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(analytics_table).values(
                    event_type=event_type,
                    widget_name=widget,
                    user_location=location,
                    data=data,
                    created_at=utc_now(),
                )
            )


def event_source(payload: dict, cached: bool) -> str:
    if cached:
        return "cache"
    return str(payload.get("source", "unknown"))
