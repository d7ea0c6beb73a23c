"""Backing stores for TemporalCache.

MemoryCacheStore keeps entries per process (each uvicorn worker has its own).
SqlCacheStore keeps them in the ``api_cache`` table so every worker and
redeploy shares one row per key.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dashboard.config import Settings
from dashboard.errors import StoreUnavailable
from dashboard.services.cache import CacheEntry

logger = logging.getLogger(__name__)

metadata = MetaData()

api_cache = Table(
    "api_cache",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("cache_key", String(255), unique=True, nullable=False),
    Column("data", JSON, nullable=False),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

analytics = Table(
    "analytics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", String(100), nullable=False),
    Column("widget_name", String(100)),
    Column("user_location", String(100)),
    Column("data", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


class CacheStore(Protocol):
    """Key -> entry mapping with an atomic upsert."""

    name: str

    async def get(self, key: str) -> CacheEntry | None:
        ...

    async def put(self, entry: CacheEntry) -> None:
        ...

    async def close(self) -> None:
        ...


class MemoryCacheStore:
    name = "memory"

    def __init__(self):
        # key -> (json text, expires_at, created_at); replaced by a single assignment
        self._rows: dict[str, tuple[str, datetime, datetime]] = {}

    async def get(self, key: str) -> CacheEntry | None:
        row = self._rows.get(key)
        if row is None:
            return None
        data, expires_at, created_at = row
        return CacheEntry(key=key, value=json.loads(data), expires_at=expires_at, created_at=created_at)

    async def put(self, entry: CacheEntry) -> None:
        try:
            data = json.dumps(entry.value)
        except (TypeError, ValueError) as e:
            raise StoreUnavailable(f"Value for {entry.key} is not JSON-serializable: {e}") from e
        self._rows[entry.key] = (data, entry.expires_at, entry.created_at)

    async def close(self) -> None:
        self._rows.clear()

    def __len__(self) -> int:
        return len(self._rows)


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlCacheStore:
    """``api_cache`` rows via SQLAlchemy Core.

    The engine is synchronous; calls run in a worker thread so a slow
    database never blocks the event loop.
    """

    name = "sql"

    def __init__(self, url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if not url:
                raise ValueError("SqlCacheStore needs a database URL or an engine")
            engine = create_engine(url, pool_pre_ping=True)
        self.engine = engine

    def create_tables(self) -> None:
        metadata.create_all(self.engine)

    async def get(self, key: str) -> CacheEntry | None:
        return await asyncio.to_thread(self._get, key)

    async def put(self, entry: CacheEntry) -> None:
        await asyncio.to_thread(self._put, entry)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)

    def _get(self, key: str) -> CacheEntry | None:
        query = select(
            api_cache.c.data, api_cache.c.expires_at, api_cache.c.created_at
        ).where(api_cache.c.cache_key == key)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Cache lookup failed for {key}: {e}") from e
        except (TypeError, ValueError) as e:
            # Row exists but its JSON or timestamps do not decode
            raise StoreUnavailable(f"Cache row for {key} is unreadable: {e}") from e
        if row is None:
            return None
        return CacheEntry(
            key=key,
            value=row.data,
            expires_at=_aware(row.expires_at),
            created_at=_aware(row.created_at),
        )

    def _put(self, entry: CacheEntry) -> None:
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise StoreUnavailable(f"Upsert not supported on {dialect}")

        stmt = insert(api_cache).values(
            cache_key=entry.key,
            data=entry.value,
            expires_at=entry.expires_at,
            created_at=entry.created_at,
        )
        # value, expiry and created_at replace together in one statement
        stmt = stmt.on_conflict_do_update(
            index_elements=[api_cache.c.cache_key],
            set_={
                "data": stmt.excluded.data,
                "expires_at": stmt.excluded.expires_at,
                "created_at": stmt.excluded.created_at,
            },
        )
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise StoreUnavailable(f"Cache write failed for {entry.key}: {e}") from e


def make_store(settings: Settings) -> CacheStore:
    """In-memory store unless CACHE_DATABASE_URL points at a database."""
    if not settings.cache_database_url:
        logger.info("Using in-memory cache store")
        return MemoryCacheStore()

    store = SqlCacheStore(settings.cache_database_url)
    try:
        store.create_tables()
    except SQLAlchemyError as e:
        # Reads and writes degrade to misses until the database comes back
        logger.warning("Could not create cache tables: %s", e)
    logger.info("Using SQL cache store (%s)", store.engine.dialect.name)
    return store
