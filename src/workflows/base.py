"""
Contains the base class and run state for content pipelines
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional

from core.entities import DedupResult, PipelineResponse, RankedItem
from core.schemas import PersonalizedContentRequest
from core.scoring import Interaction
from ingestion.base import ContentItem, FetchResult
from services.budget import BudgetStatus
from services.performance import StageErrors


class PipelineState(str, Enum):
    CACHE_CHECK = "cache_check"
    BUDGET_CHECK = "budget_check"
    FETCHING = "fetching"
    DEDUPING = "deduping"
    RANKING = "ranking"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    CACHING = "caching"
    RESPONDING = "responding"


@dataclass
class PipelineRun:
    """
    Mutable context for one request as it moves through the states.
    """
    request: PersonalizedContentRequest
    now: datetime
    top_k: int
    started: float = field(default_factory=time.perf_counter)
    state: PipelineState = PipelineState.CACHE_CHECK
    errors: StageErrors = field(default_factory=StageErrors)

    teams: FrozenSet[str] = frozenset()
    history: List[Interaction] = field(default_factory=list)
    budget: BudgetStatus = BudgetStatus.OK
    cache_hit: bool = False

    fetch_results: List[FetchResult] = field(default_factory=list)
    items: List[ContentItem] = field(default_factory=list)
    dedup: DedupResult = field(default_factory=DedupResult)
    ranked: List[RankedItem] = field(default_factory=list)
    context_items: List[ContentItem] = field(default_factory=list)
    articles_source: str = "live"

    summary: Optional[str] = None
    response: Optional[PipelineResponse] = None

    @property
    def user_id(self) -> str:
        return self.request.user_id

    @property
    def live_sources(self) -> List[str]:
        return sorted(result.source for result in self.fetch_results if result.items)

    @property
    def sources_used(self) -> List[str]:
        return sorted({item.source_adapter for item in self.context_items if item.source_adapter})

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


class ContentPipeline(ABC):
    """
    Orchestrates cache → budget → ingestion → processing → generation
    for a single user request.
    """

    name: str

    @abstractmethod
    async def run(self, request: PersonalizedContentRequest) -> PipelineResponse:
        """
        Execute the pipeline and return a tagged response.
        Must not raise for recoverable errors.
        """
        raise NotImplementedError
