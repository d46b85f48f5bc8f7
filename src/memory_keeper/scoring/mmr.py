"""
Maximal Marginal Relevance (MMR) re-ranking.

Greedily selects results that are relevant to the query but dissimilar to
what has already been selected:

    mmr = lambda * relevance - (1 - lambda) * max_similarity_to_selected

lambda=1.0 is pure relevance order; lambda=0.0 maximises spread.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from memory_keeper.models import SearchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero-norm vectors."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def apply_mmr(
    results: List[SearchResult],
    query_embedding: Sequence[float],
    lambda_: float = 0.8,
    limit: Optional[int] = None,
) -> List[SearchResult]:
    """
    Re-rank results for diversity.

    Each selected result's ``similarity`` is overwritten with its MMR score.
    Results without an embedding are appended unranked after the selected
    prefix. The list is returned unchanged when it has at most one item or no
    result carries an embedding.

    Args:
        results: Relevance-ranked results
        query_embedding: Query vector (kept for interface symmetry with search)
        lambda_: Relevance/diversity trade-off in [0, 1]
        limit: Maximum number of results to return (default: all)
    """
    if len(results) <= 1:
        return results

    with_embedding = [r for r in results if r.embedding]
    without_embedding = [r for r in results if not r.embedding]
    if not with_embedding:
        return results

    limit = len(results) if limit is None else limit
    target = min(limit, len(with_embedding))

    matrix = np.asarray([r.embedding for r in with_embedding], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    normalized = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms != 0)
    relevance = np.asarray([r.similarity for r in with_embedding], dtype=np.float64)

    remaining = list(range(len(with_embedding)))
    max_sim_to_selected = np.zeros(len(with_embedding))
    selected: List[SearchResult] = []

    while remaining and len(selected) < target:
        idx = np.asarray(remaining)
        scores = lambda_ * relevance[idx] - (1 - lambda_) * max_sim_to_selected[idx]
        best_pos = int(np.argmax(scores))
        best = remaining.pop(best_pos)

        selected.append(
            with_embedding[best].model_copy(update={"similarity": float(scores[best_pos])})
        )
        max_sim_to_selected = np.maximum(max_sim_to_selected, normalized @ normalized[best])

    logger.debug(
        f"MMR re-ranked {len(selected)} of {len(with_embedding)} results "
        f"(lambda={lambda_}, unranked={len(without_embedding)})"
    )

    return (selected + without_embedding)[:limit]
