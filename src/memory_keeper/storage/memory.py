"""
In-memory memory storage implementation.

Suitable for testing and development; data is lost on restart. Transactions
are implemented with a snapshot of the whole store that is restored if the
transaction body raises.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from memory_keeper.errors import MemoryKeeperError, TransactionError
from memory_keeper.models import (
    LinkRelation,
    Memory,
    MemoryLink,
    MemoryLinks,
    SearchResult,
    ensure_utc,
    utcnow,
)
from memory_keeper.scoring.mmr import cosine_similarity

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemoryMemoryStore:
    """
    In-memory implementation of the MemoryStore protocol.

    Memories are copied on the way in and out, so callers can never mutate
    stored state by accident.
    """

    def __init__(self):
        self._memories: Dict[str, Memory] = {}
        self._links: List[MemoryLink] = []
        self._next_link_id = 1
        self._lock = threading.RLock()
        self._transaction_depth = 0

        logger.info("InMemoryMemoryStore initialized")

    # Memories

    def save_memory(self, memory: Memory) -> str:
        with self._lock:
            memory_id = memory.id or str(uuid.uuid4())
            self._memories[memory_id] = memory.model_copy(update={"id": memory_id}, deep=True)
            logger.debug(f"Saved memory {memory_id}: '{memory.content[:50]}'")
            return memory_id

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        with self._lock:
            memory = self._memories.get(memory_id)
            return memory.model_copy(deep=True) if memory else None

    def get_active_memories_with_embeddings(self) -> List[Memory]:
        with self._lock:
            return [
                m.model_copy(deep=True)
                for m in self._memories.values()
                if not m.is_tombstone and m.embedding
            ]

    def count_memories(self, include_invalidated: bool = False) -> int:
        with self._lock:
            if include_invalidated:
                return len(self._memories)
            return sum(1 for m in self._memories.values() if not m.is_tombstone)

    def invalidate_memory(
        self, memory_id: str, superseded_by: str, at: Optional[datetime] = None
    ) -> bool:
        with self._lock:
            memory = self._memories.get(memory_id)
            if memory is None:
                return False
            memory.valid_until = ensure_utc(at) or utcnow()
            memory.invalidated_by = superseded_by
            logger.debug(f"Invalidated memory {memory_id} (superseded by {superseded_by})")
            return True

    def restore_invalidated_memory(self, memory_id: str) -> bool:
        with self._lock:
            memory = self._memories.get(memory_id)
            if memory is None:
                return False
            memory.valid_until = None
            memory.invalidated_by = None
            logger.debug(f"Restored memory {memory_id}")
            return True

    def delete_memory(self, memory_id: str) -> bool:
        with self._lock:
            if self._memories.pop(memory_id, None) is None:
                return False
            self._links = [
                link
                for link in self._links
                if link.source_id != memory_id and link.target_id != memory_id
            ]
            logger.debug(f"Deleted memory {memory_id}")
            return True

    def search(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SearchResult]:
        with self._lock:
            results = []
            for memory in self._memories.values():
                if memory.is_tombstone or not memory.embedding:
                    continue
                similarity = cosine_similarity(query_embedding, memory.embedding)
                if similarity >= min_similarity:
                    results.append(
                        SearchResult(memory=memory.model_copy(deep=True), similarity=similarity)
                    )

            results.sort(key=lambda r: r.similarity, reverse=True)
            return results[:limit]

    def record_access(
        self, memory_ids: Sequence[str], at: Optional[datetime] = None
    ) -> List[str]:
        at = ensure_utc(at) or utcnow()
        touched = []
        with self._lock:
            for memory_id in memory_ids:
                memory = self._memories.get(memory_id)
                if memory is None or memory.is_tombstone:
                    continue
                memory.access_count += 1
                memory.last_accessed = at
                touched.append(memory_id)
        return touched

    # Links

    def create_memory_link(
        self,
        source_id: str,
        target_id: str,
        relation: LinkRelation = "related",
        weight: float = 1.0,
        llm_enriched: bool = False,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        transferred_from: Optional[str] = None,
    ) -> bool:
        if source_id == target_id:
            logger.debug(f"Skipping self-loop link on {source_id}")
            return False

        with self._lock:
            for link in self._links:
                if (
                    link.source_id == source_id
                    and link.target_id == target_id
                    and link.relation == relation
                ):
                    return False

            self._links.append(
                MemoryLink(
                    id=self._next_link_id,
                    source_id=source_id,
                    target_id=target_id,
                    relation=relation,
                    weight=weight,
                    llm_enriched=llm_enriched,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    transferred_from=transferred_from,
                )
            )
            self._next_link_id += 1
            return True

    def delete_memory_link(
        self, source_id: str, target_id: str, relation: Optional[LinkRelation] = None
    ) -> bool:
        with self._lock:
            before = len(self._links)
            self._links = [
                link
                for link in self._links
                if not (
                    link.source_id == source_id
                    and link.target_id == target_id
                    and (relation is None or link.relation == relation)
                )
            ]
            return len(self._links) < before

    def get_memory_links(self, memory_id: str) -> MemoryLinks:
        with self._lock:
            return MemoryLinks(
                outgoing=[link.model_copy() for link in self._links if link.source_id == memory_id],
                incoming=[link.model_copy() for link in self._links if link.target_id == memory_id],
            )

    def get_links_by_relation(
        self, relation: LinkRelation, source_id: Optional[str] = None
    ) -> List[MemoryLink]:
        with self._lock:
            return [
                link.model_copy()
                for link in self._links
                if link.relation == relation and (source_id is None or link.source_id == source_id)
            ]

    # Transactions

    def transaction(self, fn: Callable[[], T]) -> T:
        with self._lock:
            if self._transaction_depth > 0:
                self._transaction_depth += 1
                try:
                    return fn()
                finally:
                    self._transaction_depth -= 1

            snapshot = (
                copy.deepcopy(self._memories),
                copy.deepcopy(self._links),
                self._next_link_id,
            )
            self._transaction_depth = 1
            try:
                return fn()
            except Exception as e:
                self._memories, self._links, self._next_link_id = snapshot
                logger.warning(f"Transaction rolled back: {e}")
                if isinstance(e, MemoryKeeperError):
                    raise
                raise TransactionError(f"Transaction rolled back: {e}") from e
            finally:
                self._transaction_depth = 0
