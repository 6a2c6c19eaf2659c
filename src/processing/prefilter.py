import logging
from datetime import datetime, timedelta
from typing import Iterable, List

from ingestion.base import ContentItem

logger = logging.getLogger(__name__)


def is_fresh(item: ContentItem, *, now: datetime, window_days: int = 14) -> bool:
    return item.published_at >= now - timedelta(days=window_days)


def filter_fresh(
    items: List[ContentItem],
    *,
    now: datetime,
    window_days: int = 14,
) -> List[ContentItem]:
    """Drop items published before the rolling freshness window."""
    fresh = [item for item in items if is_fresh(item, now=now, window_days=window_days)]

    dropped = len(items) - len(fresh)
    if dropped:
        logger.info(f"Freshness filter: dropped {dropped} items older than {window_days} days")
    return fresh


def merge_unique(primary: List[ContentItem], extra: Iterable[ContentItem]) -> List[ContentItem]:
    """
    Append extra items whose content_hash is not already present.
    """
    seen = {item.content_hash for item in primary}
    merged = list(primary)
    for item in extra:
        if item.content_hash in seen:
            continue
        seen.add(item.content_hash)
        merged.append(item)
    return merged
