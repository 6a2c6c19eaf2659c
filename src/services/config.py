"""
Loads and handles config from config.yml
Provider API keys (NEWSAPI_API_KEY, YOUTUBE_API_KEY, ...) are loaded from .env for security
"""
import logging
import os
from typing import List, Dict, Any, Optional, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from core.scoring import RankingWeights

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    """Configuration for a single content provider."""
    type: str  # newsapi, youtube, reddit, balldontlie, apisports
    enabled: bool = True
    engagement_potential: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    cost_per_call: Optional[float] = Field(default=None, ge=0.0)
    embedding_ttl_hours: Optional[int] = None
    subreddits: Optional[List[str]] = None  # For reddit
    domains: Optional[List[str]] = None  # For newsapi
    max_results: Optional[int] = None
    lookback_days: Optional[int] = None  # For apisports


class BudgetConfig(BaseModel):
    """Daily spend thresholds in USD."""
    daily_soft_limit: float = 6.0
    daily_hard_limit: float = 10.0

    @model_validator(mode="after")
    def _check_order(self) -> "BudgetConfig":
        if self.daily_hard_limit < self.daily_soft_limit:
            raise ValueError("daily_hard_limit must be >= daily_soft_limit")
        return self


class PricingConfig(BaseModel):
    """Estimated USD cost per generation-service call."""
    completion: float = 0.60
    deduplication: float = 0.12
    embedding: float = 0.02
    query_embedding: float = 0.01


class DedupConfig(BaseModel):
    strategy: Literal["llm", "embedding"] = "llm"
    threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    window: int = Field(default=4, ge=1)
    batch_size: int = Field(default=3, ge=1)
    max_concurrency: int = Field(default=2, ge=1)
    batch_timeout_seconds: float = 20.0
    max_tokens: int = 300


class RankingConfig(BaseModel):
    preference_weight: float = 0.2
    preference_cap: int = 10
    breaking_news_boost: float = 0.25
    breaking_keywords: List[str] = ["breaking", "trade", "signs", "injury"]
    freshness_tiers: List[List[float]] = [[1, 0.4], [6, 0.3], [24, 0.2], [72, 0.15], [168, 0.1]]
    positive_actions: List[str] = ["view"]
    history_limit: int = 50

    def weights(self) -> RankingWeights:
        return RankingWeights(
            preference_weight=self.preference_weight,
            preference_cap=self.preference_cap,
            breaking_news_boost=self.breaking_news_boost,
            breaking_keywords=tuple(k.lower() for k in self.breaking_keywords),
            freshness_tiers=tuple((float(hours), float(boost)) for hours, boost in self.freshness_tiers),
            positive_actions=tuple(self.positive_actions),
            component_caps={
                "preference": self.preference_weight,
                "freshness": max((boost for _, boost in self.freshness_tiers), default=0.0),
                "breaking_news": self.breaking_news_boost,
            },
        )


class VectorStoreConfig(BaseModel):
    backend: Literal["sqlite", "faiss"] = "sqlite"
    faiss_index_path: str = "data/faiss.index"
    dimension: int = 768
    min_similarity: float = 0.5


class Config(BaseModel):
    # Core
    DATABASE_PATH: str

    # Ollama
    OLLAMA_BASE_URL: str
    OLLAMA_MODEL: str
    OLLAMA_EMBED_MODEL: str

    # Pipeline
    TOP_K: int = 7
    FRESHNESS_WINDOW_DAYS: int = 14
    CACHE_TTL_HOURS: float = 6.0
    ADAPTER_TIMEOUT_SECONDS: float = 10.0
    MIN_LIVE_ITEMS: int = 3
    GENERATION_MAX_TOKENS: int = 400

    # Provider credentials
    NEWSAPI_API_KEY: Optional[str] = None
    YOUTUBE_API_KEY: Optional[str] = None
    API_SPORTS_API_KEY: Optional[str] = None
    BALLDONTLIE_API_KEY: Optional[str] = None

    budget: BudgetConfig = BudgetConfig()
    pricing: PricingConfig = PricingConfig()
    dedup: DedupConfig = DedupConfig()
    ranking: RankingConfig = RankingConfig()
    vector_store: VectorStoreConfig = VectorStoreConfig()
    sources: List[SourceConfig] = []


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def _parse_sources(data: List[Dict[str, Any]]) -> List[SourceConfig]:
    """Parse provider configuration from YAML data."""
    sources = []
    for src in data or []:
        try:
            sources.append(SourceConfig(**src))
        except Exception as e:
            logger.error(f"Failed to parse source '{src.get('type', '?')}': {e}")
    return sources


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and provider credentials from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config_path = path or _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file) or {}

    return Config(
        DATABASE_PATH=config.get("DATABASE_PATH", "data/app.db"),

        OLLAMA_BASE_URL=config.get("OLLAMA_BASE_URL", "http://localhost:11434"),
        OLLAMA_MODEL=config.get("OLLAMA_MODEL", "llama3.1:8b"),
        OLLAMA_EMBED_MODEL=config.get("OLLAMA_EMBED_MODEL", "nomic-embed-text"),

        TOP_K=int(config.get("TOP_K", 7)),
        FRESHNESS_WINDOW_DAYS=int(config.get("FRESHNESS_WINDOW_DAYS", 14)),
        CACHE_TTL_HOURS=float(config.get("CACHE_TTL_HOURS", 6)),
        ADAPTER_TIMEOUT_SECONDS=float(config.get("ADAPTER_TIMEOUT_SECONDS", 10)),
        MIN_LIVE_ITEMS=int(config.get("MIN_LIVE_ITEMS", 3)),
        GENERATION_MAX_TOKENS=int(config.get("GENERATION_MAX_TOKENS", 400)),

        NEWSAPI_API_KEY=os.getenv("NEWSAPI_API_KEY"),
        YOUTUBE_API_KEY=os.getenv("YOUTUBE_API_KEY"),
        API_SPORTS_API_KEY=os.getenv("API_SPORTS_API_KEY"),
        BALLDONTLIE_API_KEY=os.getenv("BALLDONTLIE_API_KEY"),

        budget=BudgetConfig(**config.get("budget", {})),
        pricing=PricingConfig(**config.get("pricing", {})),
        dedup=DedupConfig(**config.get("dedup", {})),
        ranking=RankingConfig(**config.get("ranking", {})),
        vector_store=VectorStoreConfig(**config.get("vector_store", {})),
        sources=_parse_sources(config.get("sources", [])),
    )


def get_enabled_sources(config: Config) -> List[SourceConfig]:
    """Get only enabled sources from the config."""
    return [src for src in config.sources if src.enabled]
