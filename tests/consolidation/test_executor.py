"""
Unit tests for ConsolidationExecutor.

The executor turns a decided action into storage writes:

- **delete_duplicate**: copy links to the survivor, add a supersedes edge,
  tombstone the dropped memory (never a physical delete)
- **merge**: save a synthetic memory, copy links from both originals, add two
  supersedes edges and tombstone both originals
- **undo**: restore what a memory supersedes and delete a synthetic merge product

Every action is one transaction, so a failure leaves the store untouched.
Each test runs against both store implementations.
"""

from datetime import timedelta

import pytest

from memory_keeper.config import MERGED_MEMORY_SOURCE
from memory_keeper.consolidation.executor import (
    ConsolidationExecutor,
    average_quality,
    mean_embedding,
)
from memory_keeper.errors import NotFoundError, TransactionError, ValidationError
from memory_keeper.models import QualityFactors, utcnow


@pytest.fixture
def store(any_store):
    return any_store


@pytest.fixture
def executor(store):
    return ConsolidationExecutor(store)


@pytest.fixture
def saved(store, make_memory):
    """Save memories and return them as stored."""

    def _save(memory_id, **kwargs):
        store.save_memory(make_memory(id=memory_id, **kwargs))
        return store.get_memory(memory_id)

    return _save


def test_average_quality():
    assert average_quality(0.3, 0.9) == pytest.approx(0.6)
    assert average_quality(None, 0.9) == pytest.approx(0.9)
    assert average_quality(None, None) is None


def test_mean_embedding_is_normalised():
    mean = mean_embedding([1.0, 0.0], [0.0, 1.0])

    assert mean == pytest.approx([0.7071, 0.7071], abs=1e-4)


def test_mean_embedding_with_one_side_missing():
    assert mean_embedding(None, [0.5, 0.5]) == [0.5, 0.5]
    assert mean_embedding([1.0], [1.0, 0.0]) == [1.0]
    assert mean_embedding(None, None) is None


# delete_duplicate


def test_delete_duplicate_tombstones_without_deleting(store, executor, saved):
    keep = saved("keep")
    drop = saved("drop")
    before = store.count_memories(include_invalidated=True)

    executor.delete_duplicate(keep, drop)

    assert store.count_memories(include_invalidated=True) == before
    tombstone = store.get_memory("drop")
    assert tombstone.invalidated_by == "keep"
    assert tombstone.valid_until is not None
    assert store.get_memory("keep").is_tombstone is False


def test_delete_duplicate_adds_supersedes_edge(store, executor, saved):
    executor.delete_duplicate(saved("keep"), saved("drop"))

    edges = store.get_links_by_relation("supersedes", source_id="keep")
    assert [edge.target_id for edge in edges] == ["drop"]


def test_delete_duplicate_transfers_links(store, executor, saved):
    keep, drop = saved("keep"), saved("drop")
    saved("x")
    saved("y")
    store.create_memory_link("drop", "x", relation="caused_by", weight=0.7)
    store.create_memory_link("y", "drop", relation="references")
    store.create_memory_link("drop", "keep", relation="related")

    executor.delete_duplicate(keep, drop)

    links = store.get_memory_links("keep")
    outgoing = {(link.target_id, link.relation) for link in links.outgoing}
    assert ("x", "caused_by") in outgoing
    assert ("drop", "supersedes") in outgoing
    assert ("y", "references") in {(link.source_id, link.relation) for link in links.incoming}
    # The retired memory keeps its own links for undo
    assert len(store.get_memory_links("drop").outgoing) == 2


def test_delete_duplicate_rejects_tombstone(store, executor, saved):
    keep, drop, other = saved("keep"), saved("drop"), saved("other")
    executor.delete_duplicate(keep, drop)

    with pytest.raises(ValidationError):
        executor.delete_duplicate(other, drop)


def test_delete_duplicate_missing_memory(executor, saved, make_memory):
    with pytest.raises(NotFoundError):
        executor.delete_duplicate(saved("keep"), make_memory(id="ghost"))


def test_delete_duplicate_against_itself(store, executor, saved):
    memory = saved("same")

    with pytest.raises(ValidationError):
        executor.delete_duplicate(memory, memory)

    assert store.get_memory("same").is_tombstone is False


def test_delete_duplicate_failure_rolls_back(store, executor, saved, monkeypatch):
    keep, drop = saved("keep"), saved("drop")
    saved("x")
    store.create_memory_link("drop", "x", relation="caused_by")

    def _fail(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "invalidate_memory", _fail)

    with pytest.raises(TransactionError):
        executor.delete_duplicate(keep, drop)

    monkeypatch.undo()
    assert store.get_memory("drop").is_tombstone is False
    assert store.get_memory_links("keep").outgoing == []
    assert store.get_links_by_relation("supersedes") == []


def test_transferred_links_record_their_origin(store, executor, saved):
    keep, drop = saved("keep"), saved("drop")
    saved("x")
    store.create_memory_link("drop", "x", relation="caused_by")

    executor.delete_duplicate(keep, drop)

    by_relation = {link.relation: link for link in store.get_memory_links("keep").outgoing}
    assert by_relation["caused_by"].transferred_from == "drop"
    assert by_relation["supersedes"].transferred_from is None


# merge


def test_merge_creates_synthetic_memory(store, executor, saved):
    m1 = saved("m1", content="Worker retries jobs", tags=["worker"], quality_score=0.3, type="learning")
    m2 = saved("m2", content="Backoff doubles", tags=["worker", "retry"], quality_score=0.9, type="learning")

    merged = executor.merge(m1, m2, content="Worker retries jobs with doubling backoff")

    stored = store.get_memory(merged.id)
    assert stored.content == "Worker retries jobs with doubling backoff"
    assert stored.source == MERGED_MEMORY_SOURCE
    assert stored.quality_score == pytest.approx(0.6)
    assert stored.tags == ["worker", "retry"]
    assert stored.type == "learning"
    assert stored.embedding is not None


def test_merge_tombstones_both_originals(store, executor, saved):
    merged = executor.merge(saved("m1"), saved("m2"), content="merged")

    for original in ("m1", "m2"):
        assert store.get_memory(original).invalidated_by == merged.id
    edges = store.get_links_by_relation("supersedes", source_id=merged.id)
    assert {edge.target_id for edge in edges} == {"m1", "m2"}
    assert store.count_memories() == 1
    assert store.count_memories(include_invalidated=True) == 3


def test_merge_without_content_combines_text(executor, saved):
    merged = executor.merge(saved("m1", content="First fact."), saved("m2", content="Second fact."))

    assert merged.content == "First fact.\n\nSecond fact."


def test_merge_mixed_types_and_factors(executor, saved):
    m1 = saved("m1", type="decision", quality_factors=QualityFactors(specificity=0.2))
    m2 = saved("m2", type="error", quality_factors=QualityFactors(specificity=0.8))

    merged = executor.merge(m1, m2, content="merged")

    assert merged.type is None
    assert merged.quality_factors.specificity == pytest.approx(0.5)


def test_merge_transfers_links_without_self_loops(store, executor, saved):
    m1, m2 = saved("m1"), saved("m2")
    saved("x")
    store.create_memory_link("m1", "x", relation="leads_to")
    store.create_memory_link("m2", "x", relation="leads_to")
    store.create_memory_link("m1", "m2", relation="related")

    merged = executor.merge(m1, m2, content="merged")

    outgoing = store.get_memory_links(merged.id).outgoing
    targets = [(link.target_id, link.relation) for link in outgoing]
    assert targets.count(("x", "leads_to")) == 1
    assert all(link.target_id != merged.id for link in outgoing)
    assert ("m2", "related") not in targets


def test_merge_failure_rolls_back(store, executor, saved, monkeypatch):
    m1, m2 = saved("m1"), saved("m2")

    def _fail(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "invalidate_memory", _fail)

    with pytest.raises(TransactionError):
        executor.merge(m1, m2, content="merged")

    monkeypatch.undo()
    assert store.count_memories(include_invalidated=True) == 2
    assert store.get_links_by_relation("supersedes") == []


def test_merge_rejects_tombstoned_input(executor, saved):
    m1, m2, m3 = saved("m1"), saved("m2"), saved("m3")
    executor.merge(m1, m2, content="merged")

    with pytest.raises(ValidationError):
        executor.merge(m1, m3, content="again")


# undo


def test_undo_merge_restores_both_and_deletes_merged(store, executor, saved):
    merged = executor.merge(saved("m1"), saved("m2"), content="merged")

    result = executor.undo_consolidation(merged.id)

    assert sorted(result.restored) == ["m1", "m2"]
    assert result.deleted_merge is True
    assert result.errors == []
    assert store.get_memory(merged.id) is None
    assert store.get_memory("m1").is_tombstone is False
    assert store.get_memory("m2").is_tombstone is False
    assert store.get_links_by_relation("supersedes") == []


def test_undo_merge_keeps_original_links(store, executor, saved):
    m1, m2 = saved("m1"), saved("m2")
    saved("x")
    store.create_memory_link("m1", "x", relation="leads_to")

    merged = executor.merge(m1, m2, content="merged")
    result = executor.undo_consolidation(merged.id)

    assert result.removed_links == 1
    assert [link.target_id for link in store.get_memory_links("m1").outgoing] == ["x"]
    assert store.get_memory_links("x").incoming[0].source_id == "m1"


def test_undo_duplicate_restores_but_keeps_survivor(store, executor, saved):
    executor.delete_duplicate(saved("keep"), saved("drop"))

    result = executor.undo_consolidation("keep")

    assert result.restored == ["drop"]
    assert result.deleted_merge is False
    assert store.get_memory("keep") is not None
    assert store.get_memory("drop").is_tombstone is False


def test_undo_duplicate_removes_transferred_links(store, executor, saved):
    keep, drop = saved("keep"), saved("drop")
    saved("x")
    saved("y")
    store.create_memory_link("drop", "x", relation="caused_by")
    store.create_memory_link("y", "drop", relation="references")
    store.create_memory_link("keep", "y", relation="related")
    executor.delete_duplicate(keep, drop)

    result = executor.undo_consolidation("keep")

    assert result.removed_links == 2
    survivor = store.get_memory_links("keep")
    assert [(link.target_id, link.relation) for link in survivor.outgoing] == [("y", "related")]
    assert survivor.incoming == []
    restored = store.get_memory_links("drop")
    assert [link.target_id for link in restored.outgoing] == ["x"]
    assert [link.source_id for link in restored.incoming] == ["y"]


def test_undo_keeps_survivor_links_that_predate_the_dedup(store, executor, saved):
    keep, drop = saved("keep"), saved("drop")
    saved("x")
    store.create_memory_link("keep", "x", relation="caused_by")
    store.create_memory_link("drop", "x", relation="caused_by")
    executor.delete_duplicate(keep, drop)

    result = executor.undo_consolidation("keep")

    assert result.removed_links == 0
    outgoing = store.get_memory_links("keep").outgoing
    assert [(link.target_id, link.relation) for link in outgoing] == [("x", "caused_by")]


def test_undo_without_supersedes_is_noop(store, executor, saved):
    saved("plain")

    result = executor.undo_consolidation("plain")

    assert result.is_noop
    assert store.get_memory("plain") is not None


def test_undo_only_restores_memories_it_superseded(store, executor, saved):
    """A memory re-superseded by someone else is reported, not restored."""
    keep, drop = saved("keep"), saved("drop")
    executor.delete_duplicate(keep, drop)
    store.invalidate_memory("drop", "someone-else")

    result = executor.undo_consolidation("keep")

    assert result.restored == []
    assert len(result.errors) == 1
    assert store.get_memory("drop").invalidated_by == "someone-else"
    assert store.get_links_by_relation("supersedes", source_id="keep") == []


# history


def test_consolidation_history_newest_first(store, executor, saved):
    executor.delete_duplicate(saved("keep"), saved("drop"))
    merged = executor.merge(saved("m1"), saved("m2"), content="merged text")

    history = executor.get_consolidation_history()

    assert [entry.merged_memory_id for entry in history] == [merged.id, "keep"]
    assert history[0].synthetic is True
    assert history[0].merged_content == "merged text"
    assert sorted(history[0].original_ids) == ["m1", "m2"]
    assert history[1].synthetic is False
    assert history[1].original_ids == ["drop"]


def test_consolidation_history_limit(executor, saved):
    for i in range(3):
        executor.delete_duplicate(saved(f"keep{i}"), saved(f"drop{i}"))

    assert len(executor.get_consolidation_history(limit=2)) == 2


def test_consolidation_history_lists_transferred_links(store, executor, saved):
    keep, drop = saved("keep"), saved("drop")
    saved("x")
    store.create_memory_link("drop", "x", relation="caused_by")
    store.create_memory_link("keep", "x", relation="related")
    executor.delete_duplicate(keep, drop)

    entry = executor.get_consolidation_history()[0]

    transferred = next(
        link for link in store.get_memory_links("keep").outgoing if link.relation == "caused_by"
    )
    assert entry.transferred_link_ids == [transferred.id]


def test_merge_timestamp(store, executor, saved):
    at = utcnow() - timedelta(hours=1)

    merged = executor.merge(saved("m1"), saved("m2"), content="merged", at=at)

    assert merged.created_at == at
    assert store.get_memory("m1").valid_until == at
