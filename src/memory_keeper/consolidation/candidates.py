"""
Candidate generation for consolidation.

Finds pairs of active memories whose embeddings are similar enough to
consider, decides an action for each, and returns them strongest first.

Work is bounded two ways: the full pairwise comparison is done in row blocks
of a normalised numpy matrix, keeping only the strongest pairs in a bounded
heap, or, when a similarity index is supplied, each memory only asks the
index for its nearest neighbours.
"""

import heapq
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from memory_keeper.config import ConsolidationThresholds
from memory_keeper.consolidation.decision import determine_action
from memory_keeper.consolidation.models import ConsolidationCandidate, pair_id
from memory_keeper.models import Memory, ensure_utc
from memory_keeper.storage.protocols import SimilarityIndex

logger = logging.getLogger(__name__)

ScoredPair = Tuple[float, str, str]

# Pairs kept per requested candidate; retired memories make some pairs unusable.
PAIR_HEADROOM = 4


def _eligible(memories: Sequence[Memory], created_before: Optional[datetime]) -> List[Memory]:
    cutoff = ensure_utc(created_before)
    eligible = [
        m
        for m in memories
        if m.id is not None
        and not m.is_tombstone
        and m.embedding
        and (cutoff is None or m.created_at <= cutoff)
    ]
    if not eligible:
        return []

    dimension, _ = Counter(len(m.embedding) for m in eligible).most_common(1)[0]
    mismatched = [m.id for m in eligible if len(m.embedding) != dimension]
    if mismatched:
        logger.warning(
            f"Skipping {len(mismatched)} memories with embedding dimension != {dimension}: "
            f"{mismatched[:5]}"
        )
    return [m for m in eligible if len(m.embedding) == dimension]


def _pairs_from_matrix(
    memories: List[Memory], min_similarity: float, block_size: int, capacity: int
) -> Tuple[List[ScoredPair], bool]:
    """
    Strongest pairs above ``min_similarity``, at most ``capacity`` of them.

    Returns:
        (pairs, overflowed); overflowed is True when weaker pairs were discarded
    """
    matrix = np.asarray([m.embedding for m in memories], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    normalized = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms != 0)

    # Min-heap of (similarity, sequence, i, j); the weakest kept pair sits on top.
    heap: List[Tuple[float, int, int, int]] = []
    overflowed = False
    sequence = 0
    n = len(memories)

    for start in range(0, n, block_size):
        end = min(start + block_size, n)
        block = normalized[start:end] @ normalized.T
        rows, cols = np.nonzero(block >= min_similarity)
        upper = cols > rows + start
        rows, cols = rows[upper], cols[upper]

        for row, col in zip(rows.tolist(), cols.tolist()):
            similarity = float(block[row, col])
            entry = (similarity, sequence, start + row, col)
            sequence += 1
            if len(heap) < capacity:
                heapq.heappush(heap, entry)
            else:
                overflowed = True
                if similarity > heap[0][0]:
                    heapq.heapreplace(heap, entry)

    pairs = [(similarity, memories[i].id, memories[j].id) for similarity, _, i, j in heap]
    return pairs, overflowed


def _pairs_from_index(
    memories: List[Memory],
    index: SimilarityIndex,
    min_similarity: float,
    neighbours: int,
) -> List[ScoredPair]:
    eligible_ids = {m.id for m in memories}
    best: Dict[Tuple[str, str], ScoredPair] = {}

    for memory in memories:
        hits = index.search(memory.embedding, limit=neighbours + 1, min_similarity=min_similarity)
        for hit in hits:
            other_id = hit.memory.id
            if other_id == memory.id or other_id not in eligible_ids:
                continue
            key = pair_id(memory.id, other_id)
            if key not in best or hit.similarity > best[key][0]:
                best[key] = (hit.similarity, memory.id, other_id)

    return list(best.values())


def _select(
    pairs: List[ScoredPair],
    by_id: Dict[str, Memory],
    thresholds: ConsolidationThresholds,
    max_candidates: int,
) -> List[ConsolidationCandidate]:
    pairs = sorted(pairs, key=lambda p: (-p[0], pair_id(p[1], p[2])))
    seen: Set[Tuple[str, str]] = set()
    retired: Set[str] = set()
    candidates: List[ConsolidationCandidate] = []

    for similarity, id1, id2 in pairs:
        if len(candidates) >= max_candidates:
            break

        key = pair_id(id1, id2)
        if key in seen or id1 in retired or id2 in retired:
            continue
        seen.add(key)

        m1, m2 = by_id[id1], by_id[id2]
        decision = determine_action(
            similarity,
            m1.quality_score,
            m2.quality_score,
            m1.content,
            m2.content,
            m1.created_at,
            m2.created_at,
            thresholds,
            id1=m1.id,
            id2=m2.id,
        )

        keep_id = None
        if decision.action == "delete_duplicate":
            keep_id = m1.id if decision.keep == 1 else m2.id
            retired.add(m2.id if decision.keep == 1 else m1.id)
        elif decision.action == "merge":
            retired.update((m1.id, m2.id))

        candidates.append(
            ConsolidationCandidate(
                memory1=m1,
                memory2=m2,
                similarity=similarity,
                action=decision.action,
                reason=decision.reason,
                keep_id=keep_id,
            )
        )

    return candidates


def find_consolidation_candidates(
    memories: Sequence[Memory],
    thresholds: Optional[ConsolidationThresholds] = None,
    max_candidates: int = 50,
    block_size: int = 512,
    similarity_index: Optional[SimilarityIndex] = None,
    prefilter_limit: int = 10,
    created_before: Optional[datetime] = None,
) -> List[ConsolidationCandidate]:
    """
    Find and classify similar pairs among active memories.

    Pairs are sorted by similarity, highest first. Once a pair retires a
    memory (the dropped side of delete_duplicate, or both sides of merge),
    later pairs touching it are skipped so the run never acts on a memory
    twice.

    The matrix path keeps only the strongest ``PAIR_HEADROOM * max_candidates``
    pairs. If retired memories leave the selection short while weaker pairs
    were discarded, the scan is repeated with a larger heap, so the result is
    the same as ranking every pair.

    Args:
        memories: Candidate pool; tombstones and memories without embeddings are ignored
        thresholds: Similarity floor and decision thresholds
        max_candidates: Maximum number of pairs returned
        block_size: Rows per block for the matrix comparison
        similarity_index: Optional nearest-neighbour index used instead of the matrix
        prefilter_limit: Neighbours requested per memory from the index
        created_before: Only consider memories created at or before this time

    Returns:
        Candidates with their decided action
    """
    thresholds = thresholds or ConsolidationThresholds()
    eligible = _eligible(memories, created_before)
    if len(eligible) < 2 or max_candidates <= 0:
        return []

    by_id = {m.id: m for m in eligible}

    if similarity_index is not None:
        pairs = _pairs_from_index(
            eligible, similarity_index, thresholds.min_similarity, prefilter_limit
        )
        candidates = _select(pairs, by_id, thresholds, max_candidates)
    else:
        capacity = max_candidates * PAIR_HEADROOM
        while True:
            pairs, overflowed = _pairs_from_matrix(
                eligible, thresholds.min_similarity, block_size, capacity
            )
            candidates = _select(pairs, by_id, thresholds, max_candidates)
            if len(candidates) >= max_candidates or not overflowed:
                break
            capacity *= PAIR_HEADROOM
            logger.debug(f"Candidate heap too small, rescanning with capacity {capacity}")

    logger.debug(
        f"Found {len(candidates)} consolidation candidates from {len(pairs)} similar pairs "
        f"over {len(eligible)} memories"
    )
    return candidates
