"""Tests for consolidation opt-in and safety guards."""

from datetime import timedelta

import pytest

from memory_keeper.config import ConsolidationConfig, ConsolidationGuards
from memory_keeper.consolidation.guards import (
    evaluate_guards,
    is_consolidation_enabled,
    is_enabled_for,
)
from memory_keeper.models import utcnow


@pytest.mark.parametrize(
    "global_enabled,project_override,expected",
    [
        (False, None, False),
        (True, None, True),
        (True, True, True),
        (True, False, False),
        (False, True, False),
    ],
)
def test_is_consolidation_enabled(global_enabled, project_override, expected):
    assert is_consolidation_enabled(global_enabled, project_override) is expected


def test_is_enabled_for_config():
    assert is_enabled_for(ConsolidationConfig()) is False
    assert is_enabled_for(ConsolidationConfig(enabled=True)) is True
    assert is_enabled_for(ConsolidationConfig(enabled=True, project_enabled=False)) is False


def test_guards_pass_for_large_old_corpus(make_memory):
    memories = [make_memory(id=f"m{i}", days_old=30) for i in range(20)]

    evaluation = evaluate_guards(memories)

    assert evaluation.should_run
    assert len(evaluation.eligible) == 20
    assert evaluation.reasons == []


def test_guards_reject_small_corpus(make_memory):
    memories = [make_memory(id=f"m{i}", days_old=30) for i in range(5)]

    evaluation = evaluate_guards(memories)

    assert evaluation.corpus_ok is False
    assert not evaluation.should_run
    assert "minimum is 20" in evaluation.reasons[0]


def test_guards_exclude_young_memories(make_memory):
    now = utcnow()
    memories = [make_memory(id=f"old{i}", created_at=now - timedelta(days=10)) for i in range(3)]
    memories += [make_memory(id=f"new{i}", created_at=now - timedelta(days=1)) for i in range(3)]

    evaluation = evaluate_guards(memories, ConsolidationGuards(min_corpus_size=5), now=now)

    assert {m.id for m in evaluation.eligible} == {"old0", "old1", "old2"}
    assert evaluation.cutoff == now - timedelta(days=7)
    assert evaluation.should_run


def test_guards_need_two_eligible(make_memory):
    memories = [make_memory(id="old", days_old=30), make_memory(id="new", days_old=0)]

    evaluation = evaluate_guards(memories, ConsolidationGuards(min_corpus_size=0))

    assert evaluation.corpus_ok is True
    assert evaluation.should_run is False
    assert "Only 1 memories" in evaluation.reasons[0]


def test_guards_ignore_tombstones(make_memory):
    memories = [make_memory(id=f"m{i}", days_old=30) for i in range(20)]
    memories[0] = memories[0].model_copy(update={"invalidated_by": "m1"})

    evaluation = evaluate_guards(memories)

    assert evaluation.corpus_ok is False
    assert all(m.id != "m0" for m in evaluation.eligible)
