"""
Ingest fan discussion from subreddit RSS feeds
"""
import logging
from datetime import datetime, timezone
from typing import AbstractSet, List, Optional

import feedparser
import httpx

from core.errors import SourceUnavailableError
from core.sources import REDDIT
from ingestion.base import SourceAdapter, ContentItem, FetchSession, strip_html

logger = logging.getLogger(__name__)

DEFAULT_SUBREDDITS = ["nfl", "nba", "baseball", "hockey", "sports"]


class RedditAdapter(SourceAdapter):
    profile = REDDIT

    def __init__(
        self,
        subreddits: Optional[List[str]] = None,
        posts_per_subreddit: int = 3,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.subreddits = subreddits or DEFAULT_SUBREDDITS
        self.posts_per_subreddit = posts_per_subreddit

    def headers(self) -> dict:
        return {"User-Agent": "sports-digest-bot/1.0"}

    async def fetch_items(
        self,
        affinity_hints: AbstractSet[str],
        session: FetchSession,
    ) -> List[ContentItem]:
        cutoff = self.cutoff()
        items: List[ContentItem] = []
        failures = 0

        for subreddit in self.subreddits:
            try:
                resp = await session.get(
                    f"https://www.reddit.com/r/{subreddit}/hot.rss",
                    params={"limit": self.posts_per_subreddit + 2},
                )
            except httpx.HTTPError as e:
                failures += 1
                logger.warning(f"Reddit RSS error for r/{subreddit}: {e}")
                continue

            feed = feedparser.parse(resp.text)
            taken = 0
            for entry in feed.entries:
                if taken >= self.posts_per_subreddit:
                    break

                title = entry.get("title", "")
                link = entry.get("link", "")
                if not title or not link:
                    continue

                published = _entry_published(entry)
                if published < cutoff:
                    continue

                body = strip_html(entry.get("summary", ""))
                items.append(
                    self.make_item(
                        title=title,
                        summary=f"{title}\n\n{body}"[:400],
                        url=link,
                        published_at=published,
                        source_name=f"r/{subreddit}",
                        affinity_hints=affinity_hints,
                    )
                )
                taken += 1

        if failures == len(self.subreddits):
            raise SourceUnavailableError("All subreddit feeds failed")

        return items


def _entry_published(entry) -> datetime:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc)
    return datetime.now(timezone.utc)
