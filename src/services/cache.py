"""
ContentCache - TTL-keyed store of generated digests per user.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from core.entities import CachedDigest
from services.database import Database, from_db_timestamp, to_db_timestamp, utc_now

logger = logging.getLogger(__name__)


class ContentCache:
    """
    Reads return the newest digest for a user. Writes append a new row, so
    older digests stay available for audit but are never read.
    """

    def __init__(
        self,
        database: Database,
        ttl_hours: float = 6.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = database
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock

    async def get(self, user_id: str) -> Optional[CachedDigest]:
        """
        Newest digest whose expires_at is in the future, or None on a miss.
        Read errors propagate.
        """
        digest = await self.get_latest(user_id)
        if digest is None or not digest.is_live(self.clock()):
            return None
        return digest

    async def get_latest(self, user_id: str) -> Optional[CachedDigest]:
        """Newest digest regardless of TTL (stale-if-error)."""
        await self.db.initialize()
        row = await self.db.fetchone(
            """SELECT user_id, content, source_snapshot, created_at, expires_at
               FROM rag_content_cache
               WHERE user_id = ?
               ORDER BY created_at DESC, id DESC
               LIMIT 1""",
            (user_id,),
        )
        if row is None:
            return None

        return CachedDigest(
            user_id=row["user_id"],
            content=row["content"],
            source_snapshot=json.loads(row["source_snapshot"] or "{}"),
            created_at=from_db_timestamp(row["created_at"]),
            expires_at=from_db_timestamp(row["expires_at"]),
        )

    async def put(
        self,
        user_id: str,
        content: str,
        source_snapshot: Dict[str, Any],
    ) -> Optional[CachedDigest]:
        """
        Store a freshly generated digest. Write failures are logged and swallowed.
        """
        now = self.clock()
        digest = CachedDigest(
            user_id=user_id,
            content=content,
            source_snapshot=source_snapshot,
            created_at=now,
            expires_at=now + self.ttl,
        )
        try:
            await self.db.initialize()
            await self.db.execute(
                """
                INSERT INTO rag_content_cache (user_id, content, source_snapshot, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    content,
                    json.dumps(source_snapshot, default=str),
                    to_db_timestamp(digest.created_at),
                    to_db_timestamp(digest.expires_at),
                ),
            )
        except Exception as e:
            logger.error(f"Failed to cache digest for user {user_id}: {e}")
            return None

        logger.debug(f"Cached digest for user {user_id} until {digest.expires_at.isoformat()}")
        return digest
