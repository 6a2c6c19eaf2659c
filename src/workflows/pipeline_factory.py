"""
Pipeline Factory - Creates the personalized content pipeline from configuration.
"""
import logging
from typing import Optional

from ingestion.source_factory import create_adapters_from_config
from processing.deduplicator import DeduplicationEngine, create_similarity_strategy
from processing.ranker import PersonalizationRanker
from processing.summarizer import DigestGenerator
from services.budget import BudgetGuard
from services.cache import ContentCache
from services.config import Config
from services.cost_ledger import CostLedger
from services.database import Database
from services.llm import OllamaClient
from services.performance import PerformanceLog
from services.profiles import SqliteProfileStore, UserProfileStore
from services.vector_store import create_vector_store
from workflows.orchestrator import PersonalizedContentPipeline

logger = logging.getLogger(__name__)


def create_pipeline_from_config(
    config: Config,
    *,
    llm: Optional[OllamaClient] = None,
    database: Optional[Database] = None,
    profiles: Optional[UserProfileStore] = None,
) -> PersonalizedContentPipeline:
    """
    Wire every pipeline component from configuration.

    Args:
        config: Application config
        llm: Generation service client (created from config if omitted)
        database: SQLite database shared by the stores
        profiles: User profile store (defaults to the SQLite tables)

    Returns:
        Ready-to-run PersonalizedContentPipeline
    """
    database = database or Database(config.DATABASE_PATH)
    llm = llm or OllamaClient(
        base_url=config.OLLAMA_BASE_URL,
        model=config.OLLAMA_MODEL,
        embed_model=config.OLLAMA_EMBED_MODEL,
    )

    ledger = CostLedger(database)
    guard = BudgetGuard(ledger, config.budget)
    pricing = config.pricing

    strategy = create_similarity_strategy(
        config.dedup.strategy,
        llm,
        ledger=ledger,
        guard=guard,
        dedup_cost=pricing.deduplication,
        embedding_cost=pricing.embedding,
        max_tokens=config.dedup.max_tokens,
    )
    dedup_engine = DeduplicationEngine(
        strategy,
        threshold=config.dedup.threshold,
        window=config.dedup.window,
        batch_size=config.dedup.batch_size,
        max_concurrency=config.dedup.max_concurrency,
        batch_timeout=config.dedup.batch_timeout_seconds,
    )

    adapters = create_adapters_from_config(config, ledger)
    logger.info(
        f"Pipeline configured with {len(adapters)} sources, dedup={strategy.name}, "
        f"vector backend={config.vector_store.backend}"
    )

    return PersonalizedContentPipeline(
        adapters=adapters,
        profiles=profiles or SqliteProfileStore(database),
        cache=ContentCache(database, ttl_hours=config.CACHE_TTL_HOURS),
        guard=guard,
        dedup_engine=dedup_engine,
        ranker=PersonalizationRanker(config.ranking.weights()),
        vector_store=create_vector_store(config.vector_store, database),
        generator=DigestGenerator(
            llm,
            ledger=ledger,
            guard=guard,
            cost_per_call=pricing.completion,
            max_tokens=config.GENERATION_MAX_TOKENS,
        ),
        llm=llm,
        ledger=ledger,
        performance_log=PerformanceLog(database),
        pricing=pricing,
        top_k=config.TOP_K,
        freshness_window_days=config.FRESHNESS_WINDOW_DAYS,
        min_live_items=config.MIN_LIVE_ITEMS,
        adapter_timeout=config.ADAPTER_TIMEOUT_SECONDS,
        history_limit=config.ranking.history_limit,
    )
