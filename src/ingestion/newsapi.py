"""
Ingest sports news from NewsAPI
"""
from typing import AbstractSet, List, Optional

from core.errors import SourceUnavailableError
from core.sources import NEWSAPI
from ingestion.base import SourceAdapter, ContentItem, FetchSession, parse_timestamp


DEFAULT_DOMAINS = ["bleacherreport.com", "si.com", "nfl.com", "nba.com"]
LEAGUE_TERMS = ["NFL", "NBA", "MLB", "NHL", "soccer", "football", "basketball", "baseball", "hockey"]


class NewsAPIAdapter(SourceAdapter):
    BASE_URL = "https://newsapi.org/v2"
    profile = NEWSAPI

    def __init__(
        self,
        api_key: Optional[str],
        domains: Optional[List[str]] = None,
        page_size: int = 20,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.domains = domains or DEFAULT_DOMAINS
        self.page_size = page_size

    def headers(self) -> dict:
        return {"X-Api-Key": self.api_key} if self.api_key else {}

    def build_query(self, affinity_hints: AbstractSet[str]) -> str:
        if affinity_hints:
            return " OR ".join(sorted(affinity_hints) + LEAGUE_TERMS)
        return "NFL OR NBA OR MLB OR NHL OR sports"

    async def fetch_items(
        self,
        affinity_hints: AbstractSet[str],
        session: FetchSession,
    ) -> List[ContentItem]:
        if not self.api_key:
            raise SourceUnavailableError("NEWSAPI_API_KEY is not configured")

        cutoff = self.cutoff()
        resp = await session.get(
            f"{self.BASE_URL}/everything",
            params={
                "q": self.build_query(affinity_hints),
                "domains": ",".join(self.domains),
                "sortBy": "publishedAt",
                "from": cutoff.date().isoformat(),
                "pageSize": self.page_size,
            },
        )

        items: List[ContentItem] = []
        for article in resp.json().get("articles", []):
            title = article.get("title")
            published = parse_timestamp(article.get("publishedAt"))
            if not title or title == "[Removed]" or published is None:
                continue
            if published < cutoff:
                continue

            summary = article.get("description") or (article.get("content") or "")[:300]
            source_name = (article.get("source") or {}).get("name") or "NewsAPI"
            items.append(
                self.make_item(
                    title=title,
                    summary=summary or "Sports news update",
                    url=article.get("url", ""),
                    published_at=published,
                    source_name=source_name,
                    affinity_hints=affinity_hints,
                )
            )

        return items
