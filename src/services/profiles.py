"""
User profile store - read-only view of a user's favorite teams and recent
content interactions. The tables are owned by other parts of the product.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import FrozenSet, List

from core.scoring import Interaction
from services.database import Database

logger = logging.getLogger(__name__)


class UserProfileStore(ABC):
    @abstractmethod
    async def get_favorite_teams(self, user_id: str) -> FrozenSet[str]:
        raise NotImplementedError

    @abstractmethod
    async def get_interaction_history(self, user_id: str, limit: int = 50) -> List[Interaction]:
        """Most recent first."""
        raise NotImplementedError


class SqliteProfileStore(UserProfileStore):
    def __init__(self, database: Database):
        self.db = database

    async def get_favorite_teams(self, user_id: str) -> FrozenSet[str]:
        await self.db.initialize()
        row = await self.db.fetchone(
            "SELECT favorite_teams FROM profiles WHERE id = ?",
            (user_id,),
        )
        if row is None or not row["favorite_teams"]:
            return frozenset()

        try:
            teams = json.loads(row["favorite_teams"])
        except json.JSONDecodeError:
            logger.warning(f"Malformed favorite_teams for user {user_id}")
            return frozenset()

        return frozenset(str(team).strip() for team in teams if str(team).strip())

    async def get_interaction_history(self, user_id: str, limit: int = 50) -> List[Interaction]:
        await self.db.initialize()
        rows = await self.db.fetchall(
            """SELECT content_type, interaction_type
               FROM user_content_interactions
               WHERE user_id = ?
               ORDER BY timestamp DESC, id DESC
               LIMIT ?""",
            (user_id, limit),
        )
        return [Interaction(row["content_type"], row["interaction_type"]) for row in rows]

    async def save_favorite_teams(self, user_id: str, teams: List[str]) -> None:
        """Seed helper for local runs and tests."""
        await self.db.initialize()
        await self.db.execute(
            "INSERT OR REPLACE INTO profiles (id, favorite_teams) VALUES (?, ?)",
            (user_id, json.dumps(list(teams))),
        )
