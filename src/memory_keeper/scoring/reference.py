"""
Reference embedding cache.

Holds named sets of reference phrases and embeds them lazily on first use.
The cache is an ordinary object owned by its caller, so tests and tenants
never share computed vectors by accident.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from memory_keeper.embeddings.protocol import TextEmbedding
from memory_keeper.errors import NotFoundError
from memory_keeper.scoring.mmr import cosine_similarity
from memory_keeper.scoring.patterns import (
    HIGH_SPECIFICITY_REFERENCES,
    LOW_SPECIFICITY_REFERENCES,
)

logger = logging.getLogger(__name__)

HIGH_SPECIFICITY_SET = "high_specificity"
LOW_SPECIFICITY_SET = "low_specificity"


@dataclass
class ReferenceSet:
    phrases: List[str]
    embeddings: Optional[List[List[float]]] = None


class ReferenceEmbeddingCache:
    """
    Named reference phrase sets with lazily computed embeddings.

    Example:
        >>> cache = ReferenceEmbeddingCache(embedder)
        >>> await cache.max_similarity(vector, HIGH_SPECIFICITY_SET)
        0.71
    """

    def __init__(
        self,
        embedder: TextEmbedding,
        reference_sets: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        self.embedder = embedder
        self._sets: Dict[str, ReferenceSet] = {}

        if reference_sets is None:
            reference_sets = {
                HIGH_SPECIFICITY_SET: HIGH_SPECIFICITY_REFERENCES,
                LOW_SPECIFICITY_SET: LOW_SPECIFICITY_REFERENCES,
            }
        for name, phrases in reference_sets.items():
            self.register(name, phrases)

    def register(self, name: str, phrases: Iterable[str]) -> None:
        """Register (or replace) a phrase set; embeddings are computed on first get()."""
        self._sets[name] = ReferenceSet(phrases=list(phrases))

    async def get(self, name: str) -> List[List[float]]:
        reference_set = self._sets.get(name)
        if reference_set is None:
            raise NotFoundError(
                f'Reference set "{name}" not registered', context={"name": name}
            )

        if reference_set.embeddings is None:
            logger.debug(f"Embedding reference set {name} ({len(reference_set.phrases)} phrases)")
            reference_set.embeddings = await self.embedder.embed_documents(reference_set.phrases)

        return reference_set.embeddings

    def invalidate(self, name: Optional[str] = None) -> None:
        """Drop computed embeddings (all sets, or just ``name``); phrases are kept."""
        targets = [self._sets[name]] if name in self._sets else []
        if name is None:
            targets = list(self._sets.values())
        for reference_set in targets:
            reference_set.embeddings = None

    def is_cached(self, name: str) -> bool:
        reference_set = self._sets.get(name)
        return reference_set is not None and reference_set.embeddings is not None

    async def max_similarity(self, embedding: Sequence[float], name: str) -> float:
        """Highest cosine similarity to any phrase in the set (0.0 if none is positive)."""
        references = await self.get(name)
        best = max((cosine_similarity(embedding, ref) for ref in references), default=0.0)
        return best if best > 0 else 0.0

    async def avg_similarity(self, embedding: Sequence[float], name: str) -> float:
        references = await self.get(name)
        if not references:
            return 0.0
        return sum(cosine_similarity(embedding, ref) for ref in references) / len(references)
