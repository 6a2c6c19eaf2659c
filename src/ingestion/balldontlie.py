"""
Ingest recent NBA game results from BallDontLie
"""
from datetime import datetime, timezone
from typing import AbstractSet, List, Optional

from core.sources import BALLDONTLIE
from ingestion.base import SourceAdapter, ContentItem, FetchSession, parse_timestamp


class BallDontLieAdapter(SourceAdapter):
    BASE_URL = "https://api.balldontlie.io/v1"
    profile = BALLDONTLIE

    def __init__(self, api_key: Optional[str] = None, per_page: int = 25, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.per_page = per_page

    def headers(self) -> dict:
        return {"Authorization": self.api_key} if self.api_key else {}

    async def fetch_items(
        self,
        affinity_hints: AbstractSet[str],
        session: FetchSession,
    ) -> List[ContentItem]:
        now = datetime.now(timezone.utc)
        cutoff = self.cutoff(now)
        resp = await session.get(
            f"{self.BASE_URL}/games",
            params={
                "start_date": cutoff.date().isoformat(),
                "end_date": now.date().isoformat(),
                "per_page": self.per_page,
            },
        )

        items: List[ContentItem] = []
        for game in resp.json().get("data", []):
            played = parse_timestamp(game.get("date"))
            if played is None or played < cutoff or played > now:
                continue

            home = (game.get("home_team") or {}).get("full_name")
            away = (game.get("visitor_team") or {}).get("full_name")
            home_score = game.get("home_team_score")
            away_score = game.get("visitor_team_score")
            if not home or not away or home_score is None or away_score is None:
                continue
            # Scheduled games report 0-0
            if home_score == 0 and away_score == 0:
                continue

            winner = home if home_score > away_score else away
            summary = "\n".join([
                f"NBA Game Result: {away} vs {home}",
                f"Date: {played.date().isoformat()}",
                f"Final Score: {away} {away_score} - {home} {home_score}",
                f"Season: {game.get('season', '')}",
                f"{winner} won by {abs(home_score - away_score)} points.",
            ])
            items.append(
                self.make_item(
                    title=f"{away} {away_score} - {home_score} {home}",
                    summary=summary,
                    url=f"https://www.balldontlie.io/#/games/{game.get('id', '')}",
                    published_at=played,
                    source_name="Ball Dont Lie",
                    affinity_hints=affinity_hints,
                )
            )

        return items
