"""Shared fixtures: memory factory, vectors with a known cosine similarity, stores."""

import math
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from memory_keeper.models import Memory, utcnow
from memory_keeper.storage.memory import InMemoryMemoryStore
from memory_keeper.storage.sqlalchemy import SQLAlchemyMemoryStore

DIMENSION = 4


def vector_at(similarity: float, axis: int = 1) -> list[float]:
    """Unit vector whose cosine similarity with [1, 0, 0, 0] is ``similarity``."""
    vector = [0.0] * DIMENSION
    vector[0] = similarity
    vector[axis] = math.sqrt(max(0.0, 1.0 - similarity**2))
    return vector


BASE_VECTOR = [1.0, 0.0, 0.0, 0.0]


@pytest.fixture
def make_memory():
    """Factory for Memory objects with sensible defaults."""

    def _make(
        content: str = "Fixed the retry loop in src/worker.py:42 by adding backoff",
        embedding=None,
        days_old: float = 30,
        **kwargs,
    ) -> Memory:
        return Memory(
            content=content,
            embedding=list(embedding) if embedding is not None else list(BASE_VECTOR),
            created_at=kwargs.pop("created_at", utcnow() - timedelta(days=days_old)),
            **kwargs,
        )

    return _make


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return InMemoryMemoryStore()


@pytest.fixture
def vec():
    """``vec(similarity, axis=1)`` builds a unit vector at a known similarity to BASE_VECTOR."""
    return vector_at


def _sqlalchemy_store() -> SQLAlchemyMemoryStore:
    # One shared connection: the engine runs store calls in worker threads
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    store = SQLAlchemyMemoryStore(engine)
    store.create_tables()
    return store


@pytest.fixture
def sqlalchemy_store():
    """Fresh SQLAlchemy store on in-memory SQLite."""
    return _sqlalchemy_store()


@pytest.fixture(params=["memory", "sqlalchemy"])
def any_store(request):
    """Each MemoryStore implementation in turn."""
    if request.param == "memory":
        return InMemoryMemoryStore()
    return _sqlalchemy_store()
