"""
Storage protocols and backends for memories and memory links.

Any backend that satisfies MemoryStore can be handed to the retrieval and
consolidation services.
"""

from memory_keeper.storage.memory import InMemoryMemoryStore
from memory_keeper.storage.protocols import MemoryStore, SimilarityIndex
from memory_keeper.storage.sqlalchemy import SQLAlchemyMemoryStore

__all__ = [
    "MemoryStore",
    "SimilarityIndex",
    "InMemoryMemoryStore",
    "SQLAlchemyMemoryStore",
]
