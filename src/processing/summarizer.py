"""
DigestGenerator - turns the top ranked items into a short personalized briefing.
"""
import logging
from datetime import datetime
from typing import AbstractSet, List, Optional, Sequence

from core.entities import DedupResult
from core.errors import BudgetExhaustedError, GenerationError
from ingestion.base import ContentItem
from services.budget import BudgetGuard
from services.cost_ledger import CostLedger
from services.database import utc_now
from services.llm import OllamaClient, estimate_tokens

logger = logging.getLogger(__name__)

PLACEHOLDER_DIGEST = (
    "We couldn't put together your personalized sports briefing right now. "
    "Check back in a little while for the latest on your teams."
)


def _team_context(teams: AbstractSet[str]) -> str:
    if teams:
        return f"focusing on {', '.join(sorted(teams))}"
    return "covering major sports"


def _hours_ago(published_at: datetime, now: datetime) -> int:
    return max(0, int((now - published_at).total_seconds() // 3600))


def build_prompt(
    items: Sequence[ContentItem],
    teams: AbstractSet[str],
    now: datetime,
    dedup: Optional[DedupResult] = None,
) -> str:
    source_count = len({item.source_adapter for item in items})
    recent = sum(1 for item in items if _hours_ago(item.published_at, now) < 72)

    entries = "\n\n".join(
        f"{i}. {item.title} ({item.source_adapter}) - {_hours_ago(item.published_at, now)}h ago\n{item.summary}"
        for i, item in enumerate(items, start=1)
    )

    confirmed = ""
    if dedup is not None and dedup.clusters:
        confirmed = f"\n{len(dedup.clusters)} of these stories were reported by more than one source.\n"

    return f"""Create a personalized sports briefing for a fan {_team_context(teams)}.

Recent sports content from {source_count} sources ({recent} items from the last 3 days):

{entries}
{confirmed}
Write an engaging, up-to-date summary that:
- Prioritizes the most recent content, especially the last 24-48 hours
- Leads with breaking news, trades or major developments
- Mentions when multiple sources confirm the same story
- Includes specific results, scores and player performances where available
- Uses a conversational tone, like talking to a friend
- Ends with a question about recent developments
- Stays under 300 words"""


def placeholder_digest() -> str:
    return PLACEHOLDER_DIGEST


def headline_digest(items: Sequence[ContentItem], teams: AbstractSet[str]) -> str:
    """
    Budget-limited digest assembled from headlines without a generation call.
    """
    if not items:
        return placeholder_digest()

    lines = [f"Today's top headlines {_team_context(teams)}:"]
    for item in items:
        lines.append(f"- {item.title} ({item.source_name})")
    return "\n".join(lines)


class DigestGenerator:
    def __init__(
        self,
        llm: OllamaClient,
        *,
        ledger: Optional[CostLedger] = None,
        guard: Optional[BudgetGuard] = None,
        cost_per_call: float = 0.60,
        max_tokens: int = 400,
        clock=utc_now,
    ):
        self.llm = llm
        self.ledger = ledger
        self.guard = guard
        self.cost_per_call = cost_per_call
        self.max_tokens = max_tokens
        self.clock = clock

    async def generate(
        self,
        items: List[ContentItem],
        teams: AbstractSet[str],
        *,
        user_id: Optional[str] = None,
        dedup: Optional[DedupResult] = None,
    ) -> str:
        """
        Generate the digest text. Raises BudgetExhaustedError if the hard
        limit was reached, GenerationError on failure or empty output.
        """
        if not items:
            raise GenerationError("No content to summarize")

        if self.guard is not None and not await self.guard.allows_paid_call():
            raise BudgetExhaustedError("Daily hard limit reached before generation")

        prompt = build_prompt(items, teams, self.clock(), dedup)
        summary = ""
        try:
            summary = await self.llm.complete(prompt, max_tokens=self.max_tokens)
        finally:
            if self.ledger is not None:
                await self.ledger.record(
                    api="ollama",
                    operation_type="completion",
                    tokens_or_units=estimate_tokens(prompt) + estimate_tokens(summary),
                    cost_estimate=self.cost_per_call,
                    user_id=user_id,
                )

        if not summary.strip():
            raise GenerationError("Generation service returned an empty digest")

        logger.info(f"Generated digest from {len(items)} items ({len(summary)} chars)")
        return summary.strip()
