"""
DeduplicationEngine - groups near-duplicate items from different sources.

Candidate pairs are drawn from a bounded neighbourhood in fetch order and
scored in small batches by a pluggable similarity strategy. Pairs at or above
the threshold are merged with union-find.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.entities import DedupResult
from core.schemas import SimilarityBatch
from ingestion.base import ContentItem
from processing.clustering import build_clusters
from services.budget import BudgetGuard
from services.cost_ledger import CostLedger
from services.llm import OllamaClient, estimate_tokens
from services.performance import StageErrors

logger = logging.getLogger(__name__)

Pair = Tuple[int, int]


def _extract_json(content: str) -> str:
    """
    Extract a JSON object from an LLM response, stripping markdown code blocks if present.
    """
    content = content.strip()

    pattern = r'^```(?:json)?\s*\n?(.*?)\n?```$'
    match = re.match(pattern, content, re.DOTALL)
    if match:
        return match.group(1).strip()

    object_match = re.search(r'\{.*\}', content, re.DOTALL)
    if object_match:
        return object_match.group(0)

    return content


def candidate_pairs(count: int, window: int = 4) -> List[Pair]:
    """Each item is compared with at most the next `window` items."""
    return [
        (i, j)
        for i in range(count)
        for j in range(i + 1, min(count, i + 1 + window))
    ]


def _item_text(item: ContentItem) -> str:
    return f"{item.title}. {item.summary}"


class SimilarityStrategy(ABC):
    """
    Scores candidate pairs in [0, 1]. Implementations may raise; the engine
    treats a failed batch as having no duplicates.
    """

    name: str = "base"

    async def prepare(self, items: Sequence[ContentItem], user_id: Optional[str] = None) -> Any:
        """One-off work over the whole item list. The result is handed to score_batch."""
        return None

    @abstractmethod
    async def score_batch(
        self,
        items: Sequence[ContentItem],
        pairs: List[Pair],
        context: Any = None,
        user_id: Optional[str] = None,
    ) -> Dict[Pair, float]:
        raise NotImplementedError


class LLMSimilarityStrategy(SimilarityStrategy):
    name = "llm"

    def __init__(
        self,
        llm: OllamaClient,
        *,
        ledger: Optional[CostLedger] = None,
        guard: Optional[BudgetGuard] = None,
        cost_per_batch: float = 0.12,
        max_tokens: int = 300,
    ):
        self.llm = llm
        self.ledger = ledger
        self.guard = guard
        self.cost_per_batch = cost_per_batch
        self.max_tokens = max_tokens

    def build_prompt(self, items: Sequence[ContentItem], pairs: List[Pair]) -> str:
        lines = []
        for number, (a, b) in enumerate(pairs, start=1):
            first, second = items[a], items[b]
            lines.append(
                f"Pair {number}:\n"
                f"A: {first.title} - {first.summary[:100]}\n"
                f"B: {second.title} - {second.summary[:100]}"
            )
        pairs_text = "\n\n".join(lines)

        return f"""Compare these sports content pairs and rate how likely each pair describes the same story (0-1 scale).

{pairs_text}

Return ONLY JSON in this format:
{{"similarities": [{{"pair": 1, "score": 0.95, "reason": "same trade announcement"}}]}}"""

    async def score_batch(
        self,
        items: Sequence[ContentItem],
        pairs: List[Pair],
        context: Any = None,
        user_id: Optional[str] = None,
    ) -> Dict[Pair, float]:
        if self.guard is not None and not await self.guard.allows_paid_call():
            logger.info("Skipping similarity batch: budget exhausted")
            return {}

        prompt = self.build_prompt(items, pairs)
        try:
            raw = await self.llm.complete(prompt, max_tokens=self.max_tokens, json_mode=True)
        finally:
            if self.ledger is not None:
                await self.ledger.record(
                    api="ollama",
                    operation_type="deduplication",
                    tokens_or_units=estimate_tokens(prompt),
                    cost_estimate=self.cost_per_batch,
                    user_id=user_id,
                )

        parsed = SimilarityBatch.model_validate_json(_extract_json(raw))

        scores: Dict[Pair, float] = {}
        for entry in parsed.similarities:
            if entry.pair > len(pairs):
                logger.debug(f"Ignoring score for unknown pair {entry.pair}")
                continue
            scores[pairs[entry.pair - 1]] = entry.score
            if entry.reason:
                logger.debug(f"Pair {entry.pair} scored {entry.score:.2f}: {entry.reason}")
        return scores


class EmbeddingSimilarityStrategy(SimilarityStrategy):
    """
    Cosine similarity over embeddings computed once per item list.
    """

    name = "embedding"

    def __init__(
        self,
        llm: OllamaClient,
        *,
        ledger: Optional[CostLedger] = None,
        guard: Optional[BudgetGuard] = None,
        cost_per_call: float = 0.02,
    ):
        self.llm = llm
        self.ledger = ledger
        self.guard = guard
        self.cost_per_call = cost_per_call

    async def prepare(self, items: Sequence[ContentItem], user_id: Optional[str] = None) -> Optional[np.ndarray]:
        """Row-normalized embedding matrix, or None when the budget forbids the call."""
        if self.guard is not None and not await self.guard.allows_paid_call():
            logger.info("Skipping dedup embeddings: budget exhausted")
            return None

        texts = [_item_text(item) for item in items]
        try:
            vectors = await self.llm.embed(texts)
        finally:
            if self.ledger is not None:
                await self.ledger.record(
                    api="ollama",
                    operation_type="embedding",
                    tokens_or_units=sum(estimate_tokens(t) for t in texts),
                    cost_estimate=self.cost_per_call,
                    user_id=user_id,
                )

        matrix = np.array(vectors, dtype="float32")
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return matrix / norms

    async def score_batch(
        self,
        items: Sequence[ContentItem],
        pairs: List[Pair],
        context: Any = None,
        user_id: Optional[str] = None,
    ) -> Dict[Pair, float]:
        if context is None:
            return {}
        return {
            (a, b): float(max(0.0, min(1.0, np.dot(context[a], context[b]))))
            for a, b in pairs
        }


class DeduplicationEngine:
    def __init__(
        self,
        strategy: SimilarityStrategy,
        *,
        threshold: float = 0.85,
        window: int = 4,
        batch_size: int = 3,
        max_concurrency: int = 2,
        batch_timeout: float = 20.0,
    ):
        self.strategy = strategy
        self.threshold = threshold
        self.window = window
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.batch_timeout = batch_timeout

    async def deduplicate(
        self,
        items: Sequence[ContentItem],
        *,
        user_id: Optional[str] = None,
        errors: Optional[StageErrors] = None,
    ) -> DedupResult:
        """
        Partition items into unique representatives and duplicate clusters.
        Never raises because of the similarity strategy.
        """
        items = list(items)
        if len(items) < 2:
            return DedupResult(unique_items=items, clusters=[])

        edges: List[Tuple[int, int, float]] = []

        # Exact content_hash matches need no scoring
        representatives: List[int] = []
        first_by_hash: Dict[str, int] = {}
        for index, item in enumerate(items):
            first = first_by_hash.setdefault(item.content_hash, index)
            if first == index:
                representatives.append(index)
            else:
                edges.append((first, index, 1.0))

        rep_items = [items[i] for i in representatives]
        for a, b, score in await self._semantic_edges(rep_items, user_id, errors):
            edges.append((representatives[a], representatives[b], score))

        unique_items, clusters = build_clusters(items, edges)
        logger.info(
            f"Dedup: {len(items)} -> {len(unique_items)} items ({len(clusters)} clusters, strategy={self.strategy.name})"
        )
        return DedupResult(unique_items=unique_items, clusters=clusters)

    async def _semantic_edges(
        self,
        items: List[ContentItem],
        user_id: Optional[str],
        errors: Optional[StageErrors],
    ) -> List[Tuple[int, int, float]]:
        pairs = candidate_pairs(len(items), self.window)
        if not pairs:
            return []

        try:
            context = await self.strategy.prepare(items, user_id)
        except Exception as e:
            self._record_failure(errors, e)
            return []

        batches = [pairs[i:i + self.batch_size] for i in range(0, len(pairs), self.batch_size)]
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(batch: List[Pair]) -> Dict[Pair, float]:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        self.strategy.score_batch(items, batch, context, user_id),
                        timeout=self.batch_timeout,
                    )
                except Exception as e:
                    self._record_failure(errors, e)
                    return {}

        results = await asyncio.gather(*(run(batch) for batch in batches))

        edges = []
        for scores in results:
            for (a, b), score in scores.items():
                if score >= self.threshold:
                    edges.append((a, b, score))
        return edges

    @staticmethod
    def _record_failure(errors: Optional[StageErrors], exc: Exception) -> None:
        cause = "timeout" if isinstance(exc, asyncio.TimeoutError) else type(exc).__name__
        if errors is not None:
            errors.record("dedup", cause, exc)
        else:
            logger.warning(f"Similarity batch failed ({cause}), assuming no duplicates: {exc}")


def create_similarity_strategy(
    name: str,
    llm: OllamaClient,
    *,
    ledger: Optional[CostLedger] = None,
    guard: Optional[BudgetGuard] = None,
    dedup_cost: float = 0.12,
    embedding_cost: float = 0.02,
    max_tokens: int = 300,
) -> SimilarityStrategy:
    if name == "embedding":
        return EmbeddingSimilarityStrategy(llm, ledger=ledger, guard=guard, cost_per_call=embedding_cost)
    if name == "llm":
        return LLMSimilarityStrategy(
            llm, ledger=ledger, guard=guard, cost_per_batch=dedup_cost, max_tokens=max_tokens
        )
    raise ValueError(f"Unknown similarity strategy: {name}")
