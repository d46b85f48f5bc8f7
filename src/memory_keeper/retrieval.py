"""
Read path: semantic recall with temporal scoring and diversity re-ranking.
"""

import logging
from datetime import datetime
from typing import List, Optional

from memory_keeper.config import MemoryKeeperConfig
from memory_keeper.embeddings.protocol import TextEmbedding
from memory_keeper.models import SearchResult, utcnow
from memory_keeper.scoring.mmr import apply_mmr
from memory_keeper.scoring.temporal import apply_temporal_scoring
from memory_keeper.storage.protocols import MemoryStore

logger = logging.getLogger(__name__)


class RetrievalService:
    def __init__(
        self,
        store: MemoryStore,
        embedding: TextEmbedding,
        config: Optional[MemoryKeeperConfig] = None,
    ):
        self.store = store
        self.embedding = embedding
        self.config = config or MemoryKeeperConfig()

        logger.info(
            f"RetrievalService initialized: temporal={self.config.temporal.enabled}, "
            f"mmr={self.config.mmr.enabled}"
        )

    async def recall(
        self,
        query: str,
        limit: int = 5,
        min_similarity: float = 0.3,
        candidate_multiplier: int = 3,
        track_access: bool = True,
        now: Optional[datetime] = None,
    ) -> List[SearchResult]:
        """
        Find the memories most relevant to a query.

        Over-fetches ``limit * candidate_multiplier`` hits, applies temporal
        scoring (dropping expired memories) and MMR, then records access on
        the returned memories. A hit that was tombstoned while the query ran
        is dropped rather than reported as an error.

        Args:
            query: Natural-language query
            limit: Number of results to return
            min_similarity: Raw similarity floor for the vector search
            candidate_multiplier: Over-fetch factor before re-ranking
            track_access: Bump access counters on returned memories
            now: Reference time for temporal scoring

        Returns:
            Results ordered by final score
        """
        if limit <= 0:
            return []

        now = now or utcnow()
        query_vector = await self.embedding.embed_query(query)

        hits = self.store.search(
            query_vector,
            limit=limit * max(1, candidate_multiplier),
            min_similarity=min_similarity,
        )
        hits = [hit for hit in hits if not hit.memory.is_tombstone]

        results = apply_temporal_scoring(hits, self.config.temporal, now)

        if self.config.mmr.enabled:
            results = apply_mmr(results, query_vector, self.config.mmr.diversity_lambda, limit)
        else:
            results = results[:limit]

        if track_access and results:
            ids = [r.memory.id for r in results]
            try:
                active = set(self.store.record_access(ids, now))
            except Exception as e:
                logger.warning(f"Access tracking failed, returning results untracked: {e}")
            else:
                dropped = [memory_id for memory_id in ids if memory_id not in active]
                if dropped:
                    logger.debug(f"Dropping memories invalidated during recall: {dropped}")
                results = [r for r in results if r.memory.id in active]

        logger.debug(f"Recall '{query[:50]}' returned {len(results)} of {len(hits)} hits")
        return results
