import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from core.entities import RankedItem
from core.scoring import (
    Interaction,
    RankingWeights,
    breaking_news_boost,
    clamp_score,
    content_type_counts,
    freshness_boost,
    preference_boost,
)
from ingestion.base import ContentItem
from services.database import utc_now

logger = logging.getLogger(__name__)


class PersonalizationRanker:
    """
    Orders items by engagement prior plus preference, freshness and
    breaking-news boosts. Deterministic for identical inputs.
    """

    def __init__(self, weights: Optional[RankingWeights] = None, clock=utc_now):
        self.weights = weights or RankingWeights()
        self.clock = clock

    def score(self, item: ContentItem, counts, now: datetime) -> RankedItem:
        components = {
            "engagement": item.engagement_potential,
            "preference": preference_boost(item.content_type, counts, self.weights),
            "freshness": freshness_boost(item.published_at, now, self.weights),
            "breaking_news": breaking_news_boost(item.title, self.weights),
        }
        return RankedItem(
            item=item,
            score=clamp_score(sum(components.values())),
            components=components,
        )

    def rank(
        self,
        items: Sequence[ContentItem],
        history: Iterable[Interaction],
        now: Optional[datetime] = None,
    ) -> List[RankedItem]:
        now = now or self.clock()
        counts = content_type_counts(history, self.weights.positive_actions)

        ranked = [self.score(item, counts, now) for item in items]
        # Score desc, then newest first, then id for a total order
        ranked.sort(key=lambda r: (-r.score, -r.item.published_at.timestamp(), r.item.id))

        if ranked:
            logger.debug(f"Top ranked: {ranked[0].item.title} ({ranked[0].score:.2f})")
        return ranked

    def top_k(
        self,
        items: Sequence[ContentItem],
        history: Iterable[Interaction],
        k: int = 7,
        now: Optional[datetime] = None,
    ) -> List[RankedItem]:
        return self.rank(items, history, now)[:k]
