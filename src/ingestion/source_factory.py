"""
Source Factory - Creates ingestion adapters from configuration.
"""
import logging
from typing import List, Optional, TYPE_CHECKING

from ingestion.apisports import APISportsAdapter
from ingestion.balldontlie import BallDontLieAdapter
from ingestion.base import SourceAdapter
from ingestion.newsapi import NewsAPIAdapter
from ingestion.reddit import RedditAdapter
from ingestion.youtube import YouTubeAdapter
from services.config import Config, SourceConfig, get_enabled_sources

if TYPE_CHECKING:
    from services.cost_ledger import CostLedger

logger = logging.getLogger(__name__)


def create_source_adapter(
    source_config: SourceConfig,
    config: Config,
    ledger: Optional["CostLedger"] = None,
) -> SourceAdapter:
    """
    Create a source adapter from configuration.

    Args:
        source_config: Configuration for the source
        config: Application config (credentials, freshness window, timeout)
        ledger: Cost ledger the adapter records its calls in

    Returns:
        Configured SourceAdapter instance

    Raises:
        ValueError: If source type is unknown
    """
    source_type = source_config.type.lower()
    common = dict(
        engagement_potential=source_config.engagement_potential,
        cost_per_call=source_config.cost_per_call,
        embedding_ttl_hours=source_config.embedding_ttl_hours,
        freshness_days=config.FRESHNESS_WINDOW_DAYS,
        timeout=config.ADAPTER_TIMEOUT_SECONDS,
        ledger=ledger,
    )

    if source_type == "newsapi":
        return NewsAPIAdapter(
            api_key=config.NEWSAPI_API_KEY,
            domains=source_config.domains,
            page_size=source_config.max_results or 20,
            **common,
        )

    elif source_type == "youtube":
        return YouTubeAdapter(
            api_key=config.YOUTUBE_API_KEY,
            max_results=source_config.max_results or 15,
            **common,
        )

    elif source_type == "reddit":
        return RedditAdapter(
            subreddits=source_config.subreddits,
            posts_per_subreddit=source_config.max_results or 3,
            **common,
        )

    elif source_type == "balldontlie":
        return BallDontLieAdapter(
            api_key=config.BALLDONTLIE_API_KEY,
            per_page=source_config.max_results or 25,
            **common,
        )

    elif source_type == "apisports":
        return APISportsAdapter(
            api_key=config.API_SPORTS_API_KEY,
            lookback_days=source_config.lookback_days or 1,
            max_fixtures=source_config.max_results or 10,
            **common,
        )

    else:
        raise ValueError(f"Unknown source type: {source_type}")


def create_adapters_from_config(
    config: Config,
    ledger: Optional["CostLedger"] = None,
) -> List[SourceAdapter]:
    """
    Create all enabled source adapters from configuration.

    Returns:
        List of configured SourceAdapter instances
    """
    adapters = []

    for source_config in get_enabled_sources(config):
        try:
            adapter = create_source_adapter(source_config, config, ledger)
            adapters.append(adapter)
            logger.info(f"Created {source_config.type} adapter")
        except Exception as e:
            logger.error(f"Failed to create adapter for {source_config.type}: {e}")

    return adapters
