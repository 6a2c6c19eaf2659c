"""
Ingest sports highlight videos from the YouTube Data API
"""
from typing import AbstractSet, List, Optional

from core.errors import SourceUnavailableError
from core.sources import YOUTUBE
from ingestion.base import SourceAdapter, ContentItem, FetchSession, parse_timestamp


class YouTubeAdapter(SourceAdapter):
    BASE_URL = "https://www.googleapis.com/youtube/v3"
    profile = YOUTUBE

    def __init__(self, api_key: Optional[str], max_results: int = 15, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.max_results = max_results

    def build_query(self, affinity_hints: AbstractSet[str]) -> str:
        if affinity_hints:
            return f"{' '.join(sorted(affinity_hints))} highlights sports"
        return "NFL NBA MLB NHL highlights"

    async def fetch_items(
        self,
        affinity_hints: AbstractSet[str],
        session: FetchSession,
    ) -> List[ContentItem]:
        if not self.api_key:
            raise SourceUnavailableError("YOUTUBE_API_KEY is not configured")

        cutoff = self.cutoff()
        resp = await session.get(
            f"{self.BASE_URL}/search",
            params={
                "part": "snippet",
                "q": self.build_query(affinity_hints),
                "type": "video",
                "order": "date",
                "publishedAfter": cutoff.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "maxResults": self.max_results,
                "key": self.api_key,
            },
        )

        items: List[ContentItem] = []
        for video in resp.json().get("items", []):
            snippet = video.get("snippet") or {}
            video_id = (video.get("id") or {}).get("videoId")
            published = parse_timestamp(snippet.get("publishedAt"))
            if not snippet.get("title") or not video_id or published is None:
                continue
            if published < cutoff:
                continue

            items.append(
                self.make_item(
                    title=snippet["title"],
                    summary=(snippet.get("description") or "")[:300] or "Sports video highlight",
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    published_at=published,
                    source_name=snippet.get("channelTitle") or "YouTube",
                    affinity_hints=affinity_hints,
                )
            )

        return items
