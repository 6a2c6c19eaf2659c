import asyncio
from datetime import timedelta

import pytest

from conftest import FakeLLM, make_item, utc
from core.entities import DedupResult, DuplicateCluster
from core.errors import BudgetExhaustedError, GenerationError
from processing.summarizer import DigestGenerator, build_prompt, headline_digest, placeholder_digest
from services.budget import BudgetGuard
from services.config import BudgetConfig
from services.cost_ledger import CostLedger

NOW = utc(2026, 3, 10, 12, 0)


def test_prompt_lists_items_with_age_and_source():
    items = [
        make_item("Cowboys trade for receiver", source="newsapi", published_at=NOW - timedelta(hours=5)),
        make_item("Lakers beat Celtics", source="balldontlie", published_at=NOW - timedelta(days=5)),
    ]

    prompt = build_prompt(items, {"Cowboys"}, NOW)

    assert "fan focusing on Cowboys" in prompt
    assert "from 2 sources (1 items from the last 3 days)" in prompt
    assert "1. Cowboys trade for receiver (newsapi) - 5h ago" in prompt
    assert "2. Lakers beat Celtics (balldontlie) - 120h ago" in prompt
    assert "Stays under 300 words" in prompt


def test_prompt_mentions_confirmed_stories():
    item = make_item("Cowboys trade for receiver")
    dedup = DedupResult(
        unique_items=[item],
        clusters=[DuplicateCluster(primary=item, duplicates=[make_item("Dallas trade")], similarity_score=0.9)],
    )

    prompt = build_prompt([item], set(), NOW, dedup)

    assert "covering major sports" in prompt
    assert "1 of these stories were reported by more than one source" in prompt


def test_headline_digest_falls_back_to_placeholder():
    assert headline_digest([], {"Cowboys"}) == placeholder_digest()
    digest = headline_digest([make_item("Cowboys win", source="reddit")], {"Cowboys"})
    assert digest.splitlines() == ["Today's top headlines focusing on Cowboys:", "- Cowboys win (Reddit)"]


def test_generate_records_cost_and_strips_output(database):
    ledger = CostLedger(database)
    llm = FakeLLM(completion="  What a week for Dallas!  ")
    generator = DigestGenerator(llm, ledger=ledger, guard=BudgetGuard(ledger, BudgetConfig()), cost_per_call=0.6)

    summary = asyncio.run(generator.generate([make_item("Cowboys win")], {"Cowboys"}, user_id="u1"))
    records = asyncio.run(ledger.records_for_day())

    assert summary == "What a week for Dallas!"
    assert [(r.operation_type, r.cost_estimate, r.user_id) for r in records] == [("completion", 0.6, "u1")]


def test_generate_rejects_empty_input_and_output():
    with pytest.raises(GenerationError):
        asyncio.run(DigestGenerator(FakeLLM()).generate([], set()))
    with pytest.raises(GenerationError):
        asyncio.run(DigestGenerator(FakeLLM(completion="   ")).generate([make_item("x")], set()))


def test_failed_generation_is_still_billed(database):
    ledger = CostLedger(database)
    generator = DigestGenerator(FakeLLM(fail_complete=True), ledger=ledger)

    with pytest.raises(GenerationError):
        asyncio.run(generator.generate([make_item("Cowboys win")], set()))
    assert len(asyncio.run(ledger.records_for_day())) == 1


def test_generate_refuses_over_hard_limit(database):
    ledger = CostLedger(database)
    guard = BudgetGuard(ledger, BudgetConfig(daily_soft_limit=0.0, daily_hard_limit=0.0))
    llm = FakeLLM()

    with pytest.raises(BudgetExhaustedError):
        asyncio.run(DigestGenerator(llm, ledger=ledger, guard=guard).generate([make_item("x")], set()))
    assert llm.prompts == []
