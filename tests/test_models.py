"""Tests for core models and the error hierarchy."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from memory_keeper.errors import (
    MemoryKeeperError,
    NetworkError,
    StorageError,
    TransactionError,
)
from memory_keeper.models import LINK_RELATIONS, Memory, MemoryLink, QualityScore, SearchResult


def test_memory_defaults():
    memory = Memory(content="Worker retries jobs")

    assert memory.id is None
    assert memory.tags == []
    assert memory.access_count == 0
    assert memory.created_at.tzinfo is not None
    assert memory.is_tombstone is False


def test_memory_naive_datetimes_become_utc():
    memory = Memory(content="x", created_at=datetime(2025, 1, 1), valid_until=datetime(2025, 2, 1))

    assert memory.created_at == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert memory.valid_until.tzinfo is not None


def test_memory_tombstone():
    assert Memory(content="x", invalidated_by="other").is_tombstone is True


def test_memory_rejects_bad_values():
    with pytest.raises(PydanticValidationError):
        Memory(content="x", quality_score=1.5)
    with pytest.raises(PydanticValidationError):
        Memory(content="x", type="rumour")
    with pytest.raises(PydanticValidationError):
        Memory(content="x", access_count=-1)


def test_memory_link_rejects_self_loop():
    with pytest.raises(PydanticValidationError):
        MemoryLink(source_id="a", target_id="a")


def test_memory_link_relations():
    assert "supersedes" in LINK_RELATIONS
    assert len(LINK_RELATIONS) == 8
    with pytest.raises(PydanticValidationError):
        MemoryLink(source_id="a", target_id="b", relation="likes")


def test_quality_score_bounds():
    with pytest.raises(PydanticValidationError):
        QualityScore(score=1.2, confidence=0.5, factors={}, mode="heuristic")


def test_search_result_embedding():
    result = SearchResult(memory=Memory(content="x", embedding=[1.0, 0.0]), similarity=0.9)

    assert result.embedding == [1.0, 0.0]


def test_error_hierarchy():
    error = TransactionError("rolled back", context={"memory_id": "a"})

    assert isinstance(error, StorageError)
    assert isinstance(error, MemoryKeeperError)
    assert error.code == "TRANSACTION_ERROR"
    assert error.context == {"memory_id": "a"}
    assert str(error) == "rolled back"


def test_network_error_status_code():
    error = NetworkError("bad gateway", status_code=502)

    assert error.status_code == 502
    assert error.code == "NETWORK_ERROR"
