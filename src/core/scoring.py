"""
Scoring components used to rank content for a user
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Sequence, Tuple, NamedTuple


class Interaction(NamedTuple):
    content_type: str
    action: str


@dataclass(frozen=True)
class RankingWeights:
    """
    Hand-tuned ranking constants. Candidates for empirical re-tuning.
    """
    preference_weight: float = 0.2
    preference_cap: int = 10
    breaking_news_boost: float = 0.25
    breaking_keywords: Tuple[str, ...] = ("breaking", "trade", "signs", "injury")
    # (max age in hours, boost), checked in order
    freshness_tiers: Tuple[Tuple[float, float], ...] = (
        (1, 0.4),
        (6, 0.3),
        (24, 0.2),
        (72, 0.15),
        (168, 0.1),
    )
    positive_actions: Tuple[str, ...] = ("view",)
    component_caps: Dict[str, float] = field(default_factory=lambda: {
        "preference": 0.2,
        "freshness": 0.4,
        "breaking_news": 0.25,
    })


def content_type_counts(
    history: Iterable[Interaction],
    positive_actions: Sequence[str],
) -> Counter:
    counts: Counter = Counter()
    for interaction in history:
        if interaction.action in positive_actions:
            counts[interaction.content_type] += 1
    return counts


def preference_boost(content_type: str, counts: Counter, weights: RankingWeights) -> float:
    occurrences = min(counts.get(content_type, 0), weights.preference_cap)
    boost = weights.preference_weight * (occurrences / weights.preference_cap)
    return min(boost, weights.component_caps["preference"])


def freshness_boost(published_at: datetime, now: datetime, weights: RankingWeights) -> float:
    hours_ago = (now - published_at).total_seconds() / 3600
    for max_hours, boost in weights.freshness_tiers:
        if hours_ago < max_hours:
            return min(boost, weights.component_caps["freshness"])
    return 0.0


def breaking_news_boost(title: str, weights: RankingWeights) -> float:
    lowered = title.lower()
    if any(keyword in lowered for keyword in weights.breaking_keywords):
        return min(weights.breaking_news_boost, weights.component_caps["breaking_news"])
    return 0.0


def clamp_score(value: float) -> float:
    return max(0.0, min(value, 1.0))
