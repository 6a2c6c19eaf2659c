from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from ingestion.base import ContentItem


class QualityTag(str, Enum):
    """
    Outcome tag attached to every pipeline response.
    """
    FRESH = "fresh"
    CACHED = "cached"
    BUDGET_LIMITED = "budget-limited"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class EmbeddingRecord:
    """
    Persisted, vector-searchable projection of a ContentItem.
    """
    content_hash: str
    embedding: List[float]
    metadata: Dict[str, Any]
    expires_at: datetime
    similarity: Optional[float] = None


@dataclass(frozen=True)
class DuplicateCluster:
    """
    Group of items judged to describe the same underlying story.
    """
    primary: "ContentItem"
    duplicates: List["ContentItem"]
    similarity_score: float

    @property
    def members(self) -> List["ContentItem"]:
        return [self.primary, *self.duplicates]


@dataclass
class DedupResult:
    unique_items: List["ContentItem"] = field(default_factory=list)
    clusters: List[DuplicateCluster] = field(default_factory=list)

    @property
    def duplicates_removed(self) -> int:
        return sum(len(cluster.duplicates) for cluster in self.clusters)


@dataclass(frozen=True)
class CostRecord:
    """
    One priced external call. Immutable once written.
    """
    api: str
    operation_type: str
    tokens_or_units: int
    cost_estimate: float
    timestamp: datetime
    user_id: Optional[str] = None


@dataclass(frozen=True)
class CachedDigest:
    """
    Previously generated digest for a user.
    """
    user_id: str
    content: str
    source_snapshot: Dict[str, Any]
    created_at: datetime
    expires_at: datetime

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now

    @property
    def sources_used(self) -> List[str]:
        return list(self.source_snapshot.get("sources_used", []))


@dataclass(frozen=True)
class RankedItem:
    item: "ContentItem"
    score: float
    components: Dict[str, float]


@dataclass(frozen=True)
class PipelineResponse:
    """
    Final response handed back to callers.
    """
    summary: str
    cached: bool
    sources_used: List[str]
    quality_tag: QualityTag

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "cached": self.cached,
            "sources_used": list(self.sources_used),
            "quality_tag": self.quality_tag.value,
        }
