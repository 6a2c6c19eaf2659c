import asyncio
from typing import Dict, List

from conftest import FakeLLM, make_item
from processing.clustering import UnionFind, build_clusters
from processing.deduplicator import (
    DeduplicationEngine,
    EmbeddingSimilarityStrategy,
    LLMSimilarityStrategy,
    SimilarityStrategy,
    _extract_json,
    candidate_pairs,
)
from services.performance import StageErrors


class ScriptedStrategy(SimilarityStrategy):
    """Returns fixed scores for known pairs, 0.0 for the rest."""

    name = "scripted"

    def __init__(self, scores: Dict[tuple, float], fail: bool = False, delay: float = 0.0):
        self.scores = scores
        self.fail = fail
        self.delay = delay
        self.batches: List[list] = []

    async def score_batch(self, items, pairs, context=None, user_id=None):
        self.batches.append(list(pairs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("similarity backend exploded")
        return {pair: self.scores.get(pair, 0.0) for pair in pairs}


def _assert_partition(items, result):
    seen = [item.id for item in result.unique_items]
    for cluster in result.clusters:
        seen.extend(item.id for item in cluster.duplicates)
    assert sorted(seen) == sorted(item.id for item in items)


def test_candidate_pairs_are_bounded_by_window():
    pairs = candidate_pairs(6, window=2)
    assert pairs == [(0, 1), (0, 2), (1, 2), (1, 3), (2, 3), (2, 4), (3, 4), (3, 5), (4, 5)]
    assert candidate_pairs(1) == []


def test_extract_json_strips_code_fences():
    assert _extract_json('```json\n{"similarities": []}\n```') == '{"similarities": []}'
    assert _extract_json('Sure! {"similarities": []} hope that helps') == '{"similarities": []}'


def test_union_find_groups_transitively():
    uf = UnionFind(4)
    uf.union(0, 1)
    uf.union(1, 2)
    groups = sorted(sorted(members) for members in uf.groups().values())
    assert groups == [[0, 1, 2], [3]]


def test_build_clusters_picks_highest_engagement_as_primary():
    items = [
        make_item("Cowboys trade story", source="reddit", engagement=0.75),
        make_item("Lakers win", source="balldontlie", engagement=0.8),
        make_item("Cowboys complete trade", source="youtube", engagement=0.9),
    ]

    unique, clusters = build_clusters(items, [(0, 2, 0.92)])

    assert [item.title for item in unique] == ["Cowboys complete trade", "Lakers win"]
    assert len(clusters) == 1
    assert clusters[0].primary.source_adapter == "youtube"
    assert [item.title for item in clusters[0].duplicates] == ["Cowboys trade story"]
    assert clusters[0].similarity_score == 0.92


def test_exact_hash_matches_are_merged_without_scoring():
    items = [
        make_item("Cowboys sign linebacker", summary="Same text", source="newsapi"),
        make_item("Cowboys sign linebacker!", summary="same text", source="reddit", engagement=0.5),
        make_item("Lakers beat Celtics", source="balldontlie"),
    ]
    strategy = ScriptedStrategy({})
    engine = DeduplicationEngine(strategy)

    result = asyncio.run(engine.deduplicate(items))

    assert len(result.unique_items) == 2
    assert result.duplicates_removed == 1
    # Only the two distinct items are sent for scoring
    assert strategy.batches == [[(0, 1)]]
    _assert_partition(items, result)


def test_scores_at_threshold_merge_and_below_do_not():
    items = [make_item(f"Story {i}") for i in range(4)]
    strategy = ScriptedStrategy({(0, 1): 0.85, (2, 3): 0.84})
    engine = DeduplicationEngine(strategy, threshold=0.85)

    result = asyncio.run(engine.deduplicate(items))

    assert len(result.unique_items) == 3
    assert len(result.clusters) == 1
    _assert_partition(items, result)


def test_duplicate_relation_is_transitive():
    items = [make_item(f"Trade rumour {i}") for i in range(3)]
    strategy = ScriptedStrategy({(0, 1): 0.9, (1, 2): 0.95})

    result = asyncio.run(DeduplicationEngine(strategy).deduplicate(items))

    assert len(result.unique_items) == 1
    assert len(result.clusters[0].members) == 3
    assert result.clusters[0].similarity_score == 0.9


def test_failed_batches_fail_open():
    items = [make_item(f"Headline {i}") for i in range(5)]
    errors = StageErrors()
    engine = DeduplicationEngine(ScriptedStrategy({}, fail=True), batch_size=2)

    result = asyncio.run(engine.deduplicate(items, errors=errors))

    assert result.unique_items == items
    assert result.clusters == []
    # 10 candidate pairs in batches of two
    assert errors.as_dict() == {"dedup:RuntimeError": 5}


def test_batch_timeout_is_recorded_and_ignored():
    items = [make_item(f"Slow headline {i}") for i in range(3)]
    errors = StageErrors()
    engine = DeduplicationEngine(ScriptedStrategy({(0, 1): 1.0}, delay=0.5), batch_timeout=0.05)

    result = asyncio.run(engine.deduplicate(items, errors=errors))

    assert len(result.unique_items) == 3
    assert "dedup:timeout" in errors.as_dict()


def test_llm_strategy_maps_pair_numbers_and_records_cost(database):
    from services.budget import BudgetGuard
    from services.config import BudgetConfig
    from services.cost_ledger import CostLedger

    ledger = CostLedger(database)
    guard = BudgetGuard(ledger, BudgetConfig())
    llm = FakeLLM(similarities=[{"pair": 1, "score": 0.95, "reason": "same trade"}, {"pair": 9, "score": 1.0}])
    strategy = LLMSimilarityStrategy(llm, ledger=ledger, guard=guard, cost_per_batch=0.12)
    items = [
        make_item("Cowboys trade for receiver", source="newsapi"),
        make_item("Dallas acquires WR in trade", source="reddit", engagement=0.7),
    ]

    result = asyncio.run(DeduplicationEngine(strategy).deduplicate(items, user_id="u1"))
    records = asyncio.run(ledger.records_for_day())

    assert len(result.unique_items) == 1
    assert result.unique_items[0].source_adapter == "newsapi"
    assert "Pair 1:" in llm.similarity_prompts[0]
    assert [(r.operation_type, r.cost_estimate) for r in records] == [("deduplication", 0.12)]


def test_llm_strategy_garbage_output_keeps_everything():
    class GarbageLLM(FakeLLM):
        async def complete(self, prompt, max_tokens=400, json_mode=False):
            return "I could not decide"

    items = [make_item("One"), make_item("Two")]
    errors = StageErrors()
    engine = DeduplicationEngine(LLMSimilarityStrategy(GarbageLLM()))

    result = asyncio.run(engine.deduplicate(items, errors=errors))

    assert len(result.unique_items) == 2
    assert errors.total() == 1


def test_embedding_strategy_merges_identical_vectors():
    class SameVectorLLM(FakeLLM):
        async def embed(self, texts):
            return [[1.0, 0.0, 0.0] if "Cowboys" in text else [0.0, 1.0, 0.0] for text in texts]

    items = [
        make_item("Cowboys sign linebacker"),
        make_item("Cowboys add defensive depth"),
        make_item("Lakers beat Celtics"),
    ]
    engine = DeduplicationEngine(EmbeddingSimilarityStrategy(SameVectorLLM()))

    result = asyncio.run(engine.deduplicate(items))

    assert [item.title for item in result.unique_items] == ["Cowboys sign linebacker", "Lakers beat Celtics"]
    assert result.clusters[0].similarity_score == 1.0


def test_embedding_failure_keeps_everything():
    items = [make_item("One"), make_item("Two")]
    errors = StageErrors()
    engine = DeduplicationEngine(EmbeddingSimilarityStrategy(FakeLLM(fail_embed=True)))

    result = asyncio.run(engine.deduplicate(items, errors=errors))

    assert len(result.unique_items) == 2
    assert errors.as_dict() == {"dedup:GenerationError": 1}
