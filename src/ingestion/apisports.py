"""
Ingest football (soccer) final scores from API-Sports
"""
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, List, Optional

from core.errors import SourceUnavailableError
from core.sources import APISPORTS
from ingestion.base import SourceAdapter, ContentItem, FetchSession, parse_timestamp

FINISHED_STATUSES = {"FT", "AET", "PEN"}


class APISportsAdapter(SourceAdapter):
    BASE_URL = "https://v3.football.api-sports.io"
    profile = APISPORTS

    def __init__(
        self,
        api_key: Optional[str],
        lookback_days: int = 1,
        max_fixtures: int = 10,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.lookback_days = lookback_days
        self.max_fixtures = max_fixtures

    def headers(self) -> dict:
        return {"x-apisports-key": self.api_key} if self.api_key else {}

    async def fetch_items(
        self,
        affinity_hints: AbstractSet[str],
        session: FetchSession,
    ) -> List[ContentItem]:
        if not self.api_key:
            raise SourceUnavailableError("API_SPORTS_API_KEY is not configured")

        now = datetime.now(timezone.utc)
        cutoff = self.cutoff(now)
        items: List[ContentItem] = []

        for offset in range(self.lookback_days + 1):
            day = (now - timedelta(days=offset)).date().isoformat()
            resp = await session.get(f"{self.BASE_URL}/fixtures", params={"date": day})
            payload = resp.json()
            if payload.get("errors"):
                raise SourceUnavailableError(f"API-Sports error: {payload['errors']}")

            for fixture in payload.get("response", []):
                item = self._normalize(fixture, affinity_hints, cutoff)
                if item is not None:
                    items.append(item)

        items.sort(key=lambda item: item.published_at, reverse=True)
        return items[: self.max_fixtures]

    def _normalize(
        self,
        fixture: dict,
        affinity_hints: AbstractSet[str],
        cutoff: datetime,
    ) -> Optional[ContentItem]:
        info = fixture.get("fixture") or {}
        status = (info.get("status") or {}).get("short")
        if status not in FINISHED_STATUSES:
            return None

        played = parse_timestamp(info.get("date"))
        if played is None or played < cutoff:
            return None

        teams = fixture.get("teams") or {}
        goals = fixture.get("goals") or {}
        home = (teams.get("home") or {}).get("name")
        away = (teams.get("away") or {}).get("name")
        if not home or not away or goals.get("home") is None or goals.get("away") is None:
            return None

        league = (fixture.get("league") or {}).get("name", "Football")
        summary = (
            f"{league}: {home} {goals['home']} - {goals['away']} {away} "
            f"(final, {status}) on {played.date().isoformat()}."
        )
        return self.make_item(
            title=f"{home} {goals['home']} - {goals['away']} {away}",
            summary=summary,
            url=f"https://www.api-football.com/fixture/{info.get('id', '')}",
            published_at=played,
            source_name="API-Sports",
            affinity_hints=affinity_hints,
        )
