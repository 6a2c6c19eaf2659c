import aiosqlite
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 string; sorts lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    def __init__(self, path: str):
        self.path = path
        self._initialized = False

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> None:
        async with self.connect() as conn:
            await conn.execute(query, params)
            await conn.commit()

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def initialize(self) -> None:
        """Create tables once per process."""
        if self._initialized:
            return
        try:
            await self.init_tables()
        except (aiosqlite.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot initialize database at {self.path}: {e}") from e
        self._initialized = True

    async def init_tables(self) -> None:
        """Initialize tables for the content pipeline."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS content_embeddings (
                    content_hash TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    summary TEXT NOT NULL,
                    source_url TEXT,
                    source_api TEXT,
                    content_type TEXT,
                    teams TEXT DEFAULT '[]',
                    metadata TEXT DEFAULT '{}',
                    embedding BLOB NOT NULL,
                    published_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rag_content_cache (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    source_snapshot TEXT DEFAULT '{}',
                    created_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS api_usage_tracking (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    api_name TEXT NOT NULL,
                    operation_type TEXT NOT NULL,
                    tokens_used INTEGER DEFAULT 0,
                    cost_estimate REAL DEFAULT 0.0,
                    user_id TEXT,
                    timestamp TIMESTAMP NOT NULL
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rag_performance_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation_type TEXT NOT NULL,
                    user_id TEXT,
                    response_time_ms INTEGER,
                    source_apis TEXT DEFAULT '[]',
                    cache_hit BOOLEAN DEFAULT 0,
                    success BOOLEAN DEFAULT 1,
                    quality_tag TEXT,
                    error_message TEXT,
                    metadata TEXT DEFAULT '{}',
                    created_at TIMESTAMP NOT NULL
                )
            """)

            # Collaborator-owned tables, read-only for the pipeline
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    favorite_teams TEXT DEFAULT '[]'
                )
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS user_content_interactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    interaction_type TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL
                )
            """)

            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_rag_cache_user_created ON rag_content_cache(user_id, created_at)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_api_usage_timestamp ON api_usage_tracking(timestamp)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_embeddings_published ON content_embeddings(published_at)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_interactions_user ON user_content_interactions(user_id, timestamp)"
            )
            await conn.commit()
            logger.info("Database tables initialized")
