from dataclasses import dataclass
from typing import Literal

ContentType = Literal["news", "highlight", "discussion", "stat"]


@dataclass(frozen=True)
class SourceProfile:
    """
    Declarative definition of a content provider's static priors.
    """
    name: str
    description: str
    content_type: ContentType
    engagement_potential: float
    cost_per_call: float
    embedding_ttl_hours: int


NEWSAPI = SourceProfile(
    name="newsapi",
    description="Sports news articles from major outlets",
    content_type="news",
    engagement_potential=0.85,
    cost_per_call=0.02,
    embedding_ttl_hours=24,
)

YOUTUBE = SourceProfile(
    name="youtube",
    description="Video highlights and official channel uploads",
    content_type="highlight",
    engagement_potential=0.9,
    cost_per_call=0.01,
    embedding_ttl_hours=168,
)

REDDIT = SourceProfile(
    name="reddit",
    description="Fan discussion from sports subreddits (RSS)",
    content_type="discussion",
    engagement_potential=0.75,
    cost_per_call=0.0,
    embedding_ttl_hours=168,
)

BALLDONTLIE = SourceProfile(
    name="balldontlie",
    description="Recent NBA game results",
    content_type="stat",
    engagement_potential=0.8,
    cost_per_call=0.0,
    embedding_ttl_hours=168,
)

APISPORTS = SourceProfile(
    name="apisports",
    description="Football fixtures and final scores",
    content_type="stat",
    engagement_potential=0.6,
    cost_per_call=0.01,
    embedding_ttl_hours=168,
)


ALL_SOURCES = {
    NEWSAPI.name: NEWSAPI,
    YOUTUBE.name: YOUTUBE,
    REDDIT.name: REDDIT,
    BALLDONTLIE.name: BALLDONTLIE,
    APISPORTS.name: APISPORTS,
}
