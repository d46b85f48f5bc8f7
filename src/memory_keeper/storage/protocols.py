"""
Storage protocol definitions for memories and memory links.

The scoring and consolidation code only talks to storage through these
protocols. Implementations decide how to persist; they must honour the
tombstone rule (``invalidated_by`` set means excluded from every
active-corpus scan, still fetchable by id) and the all-or-nothing
``transaction`` contract.
"""

from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence, TypeVar

from typing_extensions import runtime_checkable

from memory_keeper.models import LinkRelation, Memory, MemoryLink, MemoryLinks, SearchResult

T = TypeVar("T")


@runtime_checkable
class SimilarityIndex(Protocol):
    """Nearest-neighbour search over the active corpus."""

    def search(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SearchResult]:
        """
        Find active memories most similar to an embedding.

        Args:
            query_embedding: Vector to compare against
            limit: Maximum number of results
            min_similarity: Cosine similarity floor

        Returns:
            Results sorted by similarity, highest first; tombstones excluded
        """
        ...


@runtime_checkable
class MemoryStore(SimilarityIndex, Protocol):
    """
    Protocol for memory and link storage.

    Example:
        >>> store = InMemoryMemoryStore()
        >>> memory_id = store.save_memory(Memory(content="...", embedding=[...]))
        >>> store.transaction(lambda: store.invalidate_memory(memory_id, other_id))
    """

    def get_active_memories_with_embeddings(self) -> List[Memory]:
        """All non-tombstoned memories that carry an embedding."""
        ...

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        """Fetch by id, tombstones included."""
        ...

    def save_memory(self, memory: Memory) -> str:
        """
        Insert a memory (or replace the one with the same id).

        Returns:
            The memory id (generated when ``memory.id`` is None)
        """
        ...

    def invalidate_memory(
        self, memory_id: str, superseded_by: str, at: Optional[datetime] = None
    ) -> bool:
        """
        Tombstone a memory: ``valid_until = at``, ``invalidated_by = superseded_by``.

        Returns:
            True if the memory existed
        """
        ...

    def restore_invalidated_memory(self, memory_id: str) -> bool:
        """Clear ``valid_until`` and ``invalidated_by``. Returns True if the memory existed."""
        ...

    def delete_memory(self, memory_id: str) -> bool:
        """Physically delete a memory and its links. Only used to undo synthetic merges."""
        ...

    def count_memories(self, include_invalidated: bool = False) -> int:
        ...

    def get_memory_links(self, memory_id: str) -> MemoryLinks:
        ...

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
        """
        Create a link.

        Self-loops and exact duplicates (same source, target, relation) are
        skipped silently.
        ``transferred_from`` records the retired memory a consolidation copied
        the link from, so an undo can remove it again.

        Returns:
            True if a new link was created
        """
        ...

    def delete_memory_link(
        self, source_id: str, target_id: str, relation: Optional[LinkRelation] = None
    ) -> bool:
        """Delete matching links (any relation when ``relation`` is None)."""
        ...

    def get_links_by_relation(
        self, relation: LinkRelation, source_id: Optional[str] = None
    ) -> List[MemoryLink]:
        ...

    def transaction(self, fn: Callable[[], T]) -> T:
        """
        Run ``fn`` atomically.

        Store calls made inside ``fn`` join the transaction. If ``fn`` raises,
        nothing it did is visible afterwards and the error is re-raised
        (wrapped in ``TransactionError`` unless it already is a library error).
        """
        ...

    def record_access(
        self, memory_ids: Sequence[str], at: Optional[datetime] = None
    ) -> List[str]:
        """
        Bump ``access_count`` and ``last_accessed`` on active memories.

        Returns:
            The ids that were still active (missing/tombstoned ids are skipped)
        """
        ...
