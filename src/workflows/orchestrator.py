"""
PersonalizedContentPipeline - the end-to-end request flow as an explicit
state machine.

    CACHE_CHECK -> BUDGET_CHECK -> FETCHING -> DEDUPING -> RANKING
        -> RETRIEVING -> GENERATING -> CACHING -> RESPONDING

Each handler returns the next state. Early exits set run.response and jump
to RESPONDING; an unexpected exception in any state ends in a degraded
response.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from core.entities import (
    CachedDigest,
    EmbeddingRecord,
    PipelineResponse,
    QualityTag,
)
from core.errors import BudgetExhaustedError, StoreUnavailableError
from core.schemas import PersonalizedContentRequest
from ingestion.base import ContentItem, FetchResult, PartialFailure, SourceAdapter
from processing.deduplicator import DeduplicationEngine
from processing.prefilter import filter_fresh, merge_unique
from processing.ranker import PersonalizationRanker
from processing.summarizer import DigestGenerator, headline_digest, placeholder_digest
from services.budget import BudgetGuard, BudgetStatus
from services.cache import ContentCache
from services.config import PricingConfig
from services.cost_ledger import CostLedger
from services.database import utc_now
from services.llm import OllamaClient, estimate_tokens
from services.performance import PerformanceEntry, PerformanceLog, ReadinessMetrics
from services.profiles import UserProfileStore
from services.vector_store import VectorStore
from workflows.base import ContentPipeline, PipelineRun, PipelineState

logger = logging.getLogger(__name__)

Handler = Callable[[PipelineRun], Awaitable[PipelineState]]

DEFAULT_EMBEDDING_TTL_HOURS = 168


class PersonalizedContentPipeline(ContentPipeline):
    name = "personalized_content"

    def __init__(
        self,
        *,
        adapters: Sequence[SourceAdapter],
        profiles: UserProfileStore,
        cache: ContentCache,
        guard: BudgetGuard,
        dedup_engine: DeduplicationEngine,
        ranker: PersonalizationRanker,
        vector_store: VectorStore,
        generator: DigestGenerator,
        llm: OllamaClient,
        ledger: Optional[CostLedger] = None,
        performance_log: Optional[PerformanceLog] = None,
        pricing: Optional[PricingConfig] = None,
        top_k: int = 7,
        freshness_window_days: int = 14,
        min_live_items: int = 3,
        adapter_timeout: float = 10.0,
        history_limit: int = 50,
        clock=utc_now,
    ):
        self.adapters = list(adapters)
        self.profiles = profiles
        self.cache = cache
        self.guard = guard
        self.dedup_engine = dedup_engine
        self.ranker = ranker
        self.vector_store = vector_store
        self.generator = generator
        self.llm = llm
        self.ledger = ledger
        self.performance_log = performance_log
        self.pricing = pricing or PricingConfig()
        self.top_k = top_k
        self.freshness_window_days = freshness_window_days
        self.min_live_items = min_live_items
        self.adapter_timeout = adapter_timeout
        self.history_limit = history_limit
        self.clock = clock

        self.embedding_ttl_hours = {
            adapter.name: adapter.embedding_ttl_hours for adapter in self.adapters
        }

        self._handlers: Dict[PipelineState, Handler] = {
            PipelineState.CACHE_CHECK: self._check_cache,
            PipelineState.BUDGET_CHECK: self._check_budget,
            PipelineState.FETCHING: self._fetch,
            PipelineState.DEDUPING: self._deduplicate,
            PipelineState.RANKING: self._rank,
            PipelineState.RETRIEVING: self._retrieve,
            PipelineState.GENERATING: self._generate,
            PipelineState.CACHING: self._cache_digest,
        }

    async def run(self, request: PersonalizedContentRequest) -> PipelineResponse:
        run = PipelineRun(
            request=request,
            now=self.clock(),
            top_k=request.max_articles or self.top_k,
        )
        logger.info(f"Personalized content request for user {run.user_id} (force_refresh={request.force_refresh})")

        try:
            state = PipelineState.CACHE_CHECK
            while state is not PipelineState.RESPONDING:
                run.state = state
                state = await self._handlers[state](run)
        except Exception as e:
            logger.exception(
                f"Pipeline failed in {run.state.value} for user {run.user_id}: {e}",
                extra={"stage": run.state.value, "cause": type(e).__name__},
            )
            run.errors.record(run.state.value, type(e).__name__, e)
            run.response = await self._degraded_response(run)

        run.state = PipelineState.RESPONDING
        await self._log_performance(run)
        logger.info(
            f"Responding to user {run.user_id}: {run.response.quality_tag.value} "
            f"in {run.elapsed_ms()}ms ({run.errors.total()} recoverable errors)"
        )
        return run.response

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _check_cache(self, run: PipelineRun) -> PipelineState:
        if run.request.force_refresh:
            logger.info(f"Forced refresh for user {run.user_id}, skipping cache")
            return PipelineState.BUDGET_CHECK

        try:
            digest = await self.cache.get(run.user_id)
        except StoreUnavailableError:
            raise
        except Exception as e:
            run.errors.record("cache_check", type(e).__name__, e)
            return PipelineState.BUDGET_CHECK

        if digest is None:
            return PipelineState.BUDGET_CHECK

        run.cache_hit = True
        run.budget = await self.guard.check_budget()
        tag = QualityTag.BUDGET_LIMITED if run.budget is BudgetStatus.HARD_LIMIT else QualityTag.CACHED
        run.response = self._from_digest(digest, tag)
        logger.info(f"Cache hit for user {run.user_id}")
        return PipelineState.RESPONDING

    async def _check_budget(self, run: PipelineRun) -> PipelineState:
        run.budget = await self.guard.check_budget()
        if run.budget is BudgetStatus.HARD_LIMIT:
            run.response = await self._budget_limited_response(run)
            return PipelineState.RESPONDING
        return PipelineState.FETCHING

    async def _fetch(self, run: PipelineRun) -> PipelineState:
        await self._load_profile(run)

        run.fetch_results = list(
            await asyncio.gather(*(self._fetch_one(adapter, run) for adapter in self.adapters))
        )
        for result in run.fetch_results:
            if result.error is not None:
                run.errors.record("fetching", result.error.cause, f"{result.source}: {result.error.message}")

        fetched = [item for result in run.fetch_results for item in result.items]
        run.items = filter_fresh(fetched, now=run.now, window_days=self.freshness_window_days)
        logger.info(
            f"Fetched {len(fetched)} items ({len(run.items)} fresh) from "
            f"{len(run.live_sources)}/{len(self.adapters)} sources"
        )
        return PipelineState.DEDUPING

    async def _deduplicate(self, run: PipelineRun) -> PipelineState:
        run.dedup = await self.dedup_engine.deduplicate(
            run.items,
            user_id=run.user_id,
            errors=run.errors,
        )
        return PipelineState.RANKING

    async def _rank(self, run: PipelineRun) -> PipelineState:
        run.ranked = self.ranker.top_k(run.dedup.unique_items, run.history, k=run.top_k, now=run.now)
        run.context_items = [ranked.item for ranked in run.ranked]

        if run.budget is BudgetStatus.SOFT_LIMIT:
            logger.warning(f"Soft budget limit: skipping generation for user {run.user_id}")
            run.response = await self._budget_limited_response(run)
            return PipelineState.RESPONDING
        return PipelineState.RETRIEVING

    async def _retrieve(self, run: PipelineRun) -> PipelineState:
        await self._store_embeddings(run)

        live_count = len(run.context_items)
        if live_count < self.min_live_items or not run.live_sources:
            retrieved = await self._retrieve_similar(run)
            run.context_items = merge_unique(run.context_items, retrieved)[:run.top_k]
            if retrieved:
                run.articles_source = "vector" if live_count == 0 else "mixed"

        if not run.context_items:
            logger.warning(f"No content available for user {run.user_id}")
            run.response = await self._degraded_response(run)
            return PipelineState.RESPONDING
        return PipelineState.GENERATING

    async def _generate(self, run: PipelineRun) -> PipelineState:
        try:
            run.summary = await self.generator.generate(
                run.context_items,
                run.teams,
                user_id=run.user_id,
                dedup=run.dedup,
            )
        except BudgetExhaustedError as e:
            logger.warning(f"Generation refused for user {run.user_id}: {e}")
            run.budget = BudgetStatus.HARD_LIMIT
            run.response = await self._budget_limited_response(run)
            return PipelineState.RESPONDING
        except Exception as e:
            run.errors.record("generating", type(e).__name__, e)
            run.response = await self._degraded_response(run)
            return PipelineState.RESPONDING
        return PipelineState.CACHING

    async def _cache_digest(self, run: PipelineRun) -> PipelineState:
        await self.cache.put(run.user_id, run.summary, self._source_snapshot(run))
        run.response = PipelineResponse(
            summary=run.summary,
            cached=False,
            sources_used=run.sources_used,
            quality_tag=QualityTag.FRESH,
        )
        return PipelineState.RESPONDING

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_profile(self, run: PipelineRun) -> None:
        try:
            run.teams = await self.profiles.get_favorite_teams(run.user_id)
        except Exception as e:
            run.errors.record("profile", type(e).__name__, e)
        try:
            run.history = await self.profiles.get_interaction_history(run.user_id, self.history_limit)
        except Exception as e:
            run.errors.record("profile", type(e).__name__, e)

    async def _fetch_one(self, adapter: SourceAdapter, run: PipelineRun) -> FetchResult:
        try:
            return await asyncio.wait_for(
                adapter.fetch(run.teams, user_id=run.user_id),
                timeout=self.adapter_timeout,
            )
        except asyncio.TimeoutError:
            return FetchResult(
                source=adapter.name,
                error=PartialFailure(adapter.name, "timeout", f"no response within {self.adapter_timeout}s"),
            )
        except Exception as e:
            return FetchResult(
                source=adapter.name,
                error=PartialFailure(adapter.name, type(e).__name__, str(e)),
            )

    async def _store_embeddings(self, run: PipelineRun) -> None:
        items = run.dedup.unique_items
        if not items:
            return
        if not await self.guard.allows_paid_call():
            logger.info("Skipping embedding upsert: budget exhausted")
            return

        texts = [f"{item.title}. {item.summary}" for item in items]
        try:
            try:
                vectors = await self.llm.embed(texts)
            finally:
                await self._record_cost(
                    "embedding",
                    sum(estimate_tokens(t) for t in texts),
                    self.pricing.embedding,
                    run.user_id,
                )
            if len(vectors) != len(items):
                run.errors.record(
                    "retrieving", "vector_count_mismatch", f"{len(vectors)} vectors for {len(items)} items"
                )
                return
            records = [
                EmbeddingRecord(
                    content_hash=item.content_hash,
                    embedding=vector,
                    metadata=item.to_metadata(),
                    expires_at=run.now + timedelta(
                        hours=self.embedding_ttl_hours.get(item.source_adapter, DEFAULT_EMBEDDING_TTL_HOURS)
                    ),
                )
                for item, vector in zip(items, vectors)
            ]
            await self.vector_store.upsert(records)
        except Exception as e:
            run.errors.record("retrieving", type(e).__name__, e)

    async def _retrieve_similar(self, run: PipelineRun) -> List[ContentItem]:
        if not await self.guard.allows_paid_call():
            logger.info("Skipping vector retrieval: budget exhausted")
            return []

        team_text = ", ".join(sorted(run.teams)) if run.teams else "major"
        query = f"Sports news about {team_text} teams and players"
        try:
            try:
                vector = (await self.llm.embed([query]))[0]
            finally:
                await self._record_cost("query_embedding", estimate_tokens(query), self.pricing.query_embedding, run.user_id)
            records = await self.vector_store.query(
                vector,
                run.top_k,
                date_cutoff=run.now - timedelta(days=self.freshness_window_days),
            )
        except Exception as e:
            run.errors.record("retrieving", type(e).__name__, e)
            return []

        items = []
        for record in records:
            try:
                items.append(ContentItem.from_metadata(record.content_hash, record.metadata))
            except (KeyError, ValueError) as e:
                run.errors.record("retrieving", "malformed_record", e)
        logger.info(f"Retrieved {len(items)} stored items for user {run.user_id}")
        return items

    async def _record_cost(self, operation_type: str, units: int, cost: float, user_id: str) -> None:
        if self.ledger is None:
            return
        await self.ledger.record(
            api="ollama",
            operation_type=operation_type,
            tokens_or_units=units,
            cost_estimate=cost,
            user_id=user_id,
        )

    async def _latest_digest(self, run: PipelineRun) -> Optional[CachedDigest]:
        try:
            return await self.cache.get_latest(run.user_id)
        except StoreUnavailableError:
            raise
        except Exception as e:
            run.errors.record("cache_fallback", type(e).__name__, e)
            return None

    async def _budget_limited_response(self, run: PipelineRun) -> PipelineResponse:
        digest = await self._latest_digest(run)
        if digest is not None:
            return self._from_digest(digest, QualityTag.BUDGET_LIMITED)

        return PipelineResponse(
            summary=headline_digest(run.context_items, run.teams),
            cached=False,
            sources_used=run.sources_used,
            quality_tag=QualityTag.BUDGET_LIMITED,
        )

    async def _degraded_response(self, run: PipelineRun) -> PipelineResponse:
        """Stale-if-error: newest digest regardless of TTL, else a placeholder."""
        digest = await self._latest_digest(run)
        if digest is not None:
            return self._from_digest(digest, QualityTag.DEGRADED)

        return PipelineResponse(
            summary=placeholder_digest(),
            cached=False,
            sources_used=[],
            quality_tag=QualityTag.DEGRADED,
        )

    @staticmethod
    def _from_digest(digest: CachedDigest, tag: QualityTag) -> PipelineResponse:
        return PipelineResponse(
            summary=digest.content,
            cached=True,
            sources_used=digest.sources_used,
            quality_tag=tag,
        )

    def _source_snapshot(self, run: PipelineRun) -> dict:
        return {
            "sources_used": run.sources_used,
            "articles_source": run.articles_source,
            "teams": sorted(run.teams),
            "items": [
                {
                    "id": item.id,
                    "title": item.title,
                    "source_url": item.source_url,
                    "source_api": item.source_adapter,
                }
                for item in run.context_items
            ],
            "dedup": {
                "fetched": len(run.items),
                "unique": len(run.dedup.unique_items),
                "clusters": len(run.dedup.clusters),
            },
        }

    async def _log_performance(self, run: PipelineRun) -> None:
        if self.performance_log is None:
            return

        response = run.response
        readiness = ReadinessMetrics.compute(
            sources_used=run.live_sources,
            fetched=len(run.items),
            unique=len(run.dedup.unique_items),
            engagement=[item.engagement_potential for item in run.context_items],
        )
        await self.performance_log.write(
            PerformanceEntry(
                operation_type=self.name,
                user_id=run.user_id,
                response_time_ms=run.elapsed_ms(),
                source_apis=list(response.sources_used),
                cache_hit=run.cache_hit,
                success=response.quality_tag in (QualityTag.FRESH, QualityTag.CACHED),
                quality_tag=response.quality_tag.value,
                error_message=", ".join(run.errors.as_dict()) or None,
                metadata={
                    "budget_status": run.budget.value,
                    "articles_source": run.articles_source,
                    "stage_errors": run.errors.as_dict(),
                    "readiness": readiness.to_dict(),
                },
            )
        )
