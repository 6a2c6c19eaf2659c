"""Shared test fixtures and fakes."""
import asyncio
import hashlib
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

import pytest

from core.errors import GenerationError, SourceUnavailableError
from core.scoring import Interaction
from core.sources import SourceProfile
from ingestion.base import ContentItem, SourceAdapter
from processing.deduplicator import DeduplicationEngine, LLMSimilarityStrategy
from processing.ranker import PersonalizationRanker
from processing.summarizer import DigestGenerator
from services.budget import BudgetGuard
from services.cache import ContentCache
from services.config import BudgetConfig, PricingConfig
from services.cost_ledger import CostLedger
from services.database import Database
from services.performance import PerformanceLog
from services.profiles import UserProfileStore
from services.vector_store import SqliteVectorStore
from workflows.orchestrator import PersonalizedContentPipeline


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_item(
    title: str,
    *,
    summary: str = "",
    source: str = "newsapi",
    content_type: str = "news",
    engagement: float = 0.8,
    published_at: Optional[datetime] = None,
    teams: Iterable[str] = (),
) -> ContentItem:
    return ContentItem.create(
        title=title,
        summary=summary or f"{title} summary",
        source_url=f"https://example.com/{hashlib.md5(title.encode()).hexdigest()[:8]}",
        source_name=source.title(),
        source_adapter=source,
        published_at=published_at or datetime.now(timezone.utc) - timedelta(hours=2),
        content_type=content_type,
        engagement_potential=engagement,
        teams=frozenset(teams),
    )


def text_vector(text: str, dim: int = 8) -> List[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [digest[i] / 255.0 + 0.01 for i in range(dim)]


class FakeLLM:
    """
    Stands in for OllamaClient. Similarity prompts (json_mode) get an empty
    result unless `similarities` is given.
    """

    def __init__(
        self,
        completion: str = "Big night for the Cowboys! What did you think of the trade?",
        *,
        similarities: Optional[List[dict]] = None,
        fail_complete: bool = False,
        fail_similarity: bool = False,
        fail_embed: bool = False,
        dim: int = 8,
    ):
        self.completion = completion
        self.similarities = similarities or []
        self.fail_complete = fail_complete
        self.fail_similarity = fail_similarity
        self.fail_embed = fail_embed
        self.dim = dim
        self.prompts: List[str] = []
        self.similarity_prompts: List[str] = []
        self.embedded: List[List[str]] = []

    async def complete(self, prompt: str, max_tokens: int = 400, json_mode: bool = False) -> str:
        if json_mode:
            self.similarity_prompts.append(prompt)
            if self.fail_similarity:
                raise GenerationError("similarity scoring unavailable")
            return json.dumps({"similarities": self.similarities})

        self.prompts.append(prompt)
        if self.fail_complete:
            raise GenerationError("generation service down")
        return self.completion

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.embedded.append(list(texts))
        if self.fail_embed:
            raise GenerationError("embedding service down")
        return [text_vector(text, self.dim) for text in texts]

    async def health_check(self) -> bool:
        return True


class FakeProfiles(UserProfileStore):
    def __init__(self, teams: Sequence[str] = ("Cowboys",), history: Sequence[Interaction] = ()):
        self.teams = frozenset(teams)
        self.history = list(history)

    async def get_favorite_teams(self, user_id: str):
        return self.teams

    async def get_interaction_history(self, user_id: str, limit: int = 50):
        return self.history[:limit]


TEST_PROFILES = {
    name: SourceProfile(
        name=name,
        description=f"{name} test source",
        content_type=content_type,
        engagement_potential=engagement,
        cost_per_call=0.0,
        embedding_ttl_hours=24 if name == "newsapi" else 168,
    )
    for name, content_type, engagement in [
        ("newsapi", "news", 0.85),
        ("youtube", "highlight", 0.9),
        ("reddit", "discussion", 0.75),
        ("balldontlie", "stat", 0.8),
        ("apisports", "stat", 0.6),
    ]
}


class StaticAdapter(SourceAdapter):
    """Adapter returning canned headlines, or failing, without any HTTP traffic."""

    def __init__(self, name: str, titles: Sequence[str] = (), *, fail: bool = False, delay: float = 0.0, **kwargs):
        self.profile = TEST_PROFILES[name]
        super().__init__(**kwargs)
        self.titles = list(titles)
        self.fail = fail
        self.delay = delay

    async def fetch_items(self, affinity_hints, session) -> List[ContentItem]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise SourceUnavailableError(f"{self.name} is down")

        now = datetime.now(timezone.utc)
        return [
            self.make_item(
                title=title,
                summary=f"{title}. Full story from {self.name}.",
                url=f"https://{self.name}.example.com/{re.sub(r'[^a-z0-9]+', '-', title.lower())}",
                published_at=now - timedelta(hours=index + 1),
                source_name=self.name.title(),
                affinity_hints=affinity_hints,
            )
            for index, title in enumerate(self.titles)
        ]


def healthy_adapters() -> List[StaticAdapter]:
    return [
        StaticAdapter("newsapi", ["Cowboys sign veteran linebacker", "Cowboys injury report update"]),
        StaticAdapter("youtube", ["Cowboys vs Eagles highlights"]),
        StaticAdapter("reddit", ["Game thread: Cowboys at Eagles"]),
        StaticAdapter("balldontlie", ["Lakers 112 - 108 Celtics"]),
        StaticAdapter("apisports", ["Arsenal 2 - 1 Chelsea"]),
    ]


def failing_adapters() -> List[StaticAdapter]:
    return [StaticAdapter(name, fail=True) for name in TEST_PROFILES]


@pytest.fixture()
def database(tmp_path) -> Database:
    return Database(str(tmp_path / "app.db"))


def build_pipeline(
    database: Database,
    *,
    adapters: Optional[List[SourceAdapter]] = None,
    llm: Optional[FakeLLM] = None,
    profiles: Optional[UserProfileStore] = None,
    budget: Optional[BudgetConfig] = None,
    vector_store=None,
    adapter_timeout: float = 5.0,
) -> PersonalizedContentPipeline:
    llm = llm or FakeLLM()
    ledger = CostLedger(database)
    guard = BudgetGuard(ledger, budget or BudgetConfig())
    pricing = PricingConfig()
    strategy = LLMSimilarityStrategy(llm, ledger=ledger, guard=guard, cost_per_batch=pricing.deduplication)

    return PersonalizedContentPipeline(
        adapters=adapters if adapters is not None else healthy_adapters(),
        profiles=profiles or FakeProfiles(),
        cache=ContentCache(database, ttl_hours=6),
        guard=guard,
        dedup_engine=DeduplicationEngine(strategy, batch_timeout=2.0),
        ranker=PersonalizationRanker(),
        vector_store=vector_store or SqliteVectorStore(database),
        generator=DigestGenerator(llm, ledger=ledger, guard=guard, cost_per_call=pricing.completion),
        llm=llm,
        ledger=ledger,
        performance_log=PerformanceLog(database),
        pricing=pricing,
        adapter_timeout=adapter_timeout,
    )
