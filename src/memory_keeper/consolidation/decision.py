"""
Action decision table for a pair of similar memories.

    similarity > duplicate (0.95)   delete_duplicate, keep higher quality
                                    (gap > 0.1) or else the newer memory
    similarity > merge (0.85)       delete_duplicate keeping the longer text
                                    when one contains the other, else merge
    otherwise                       keep_both
"""

from datetime import datetime
from typing import Optional

from memory_keeper.config import ConsolidationThresholds
from memory_keeper.consolidation.models import ActionDecision
from memory_keeper.models import ensure_utc

DEFAULT_QUALITY = 0.5


def _label(index: int, memory_id: Optional[str]) -> str:
    return f"#{memory_id}" if memory_id is not None else f"memory {index}"


def determine_action(
    similarity: float,
    q1: Optional[float],
    q2: Optional[float],
    content1: str,
    content2: str,
    date1: datetime,
    date2: datetime,
    thresholds: Optional[ConsolidationThresholds] = None,
    *,
    id1: Optional[str] = None,
    id2: Optional[str] = None,
) -> ActionDecision:
    """
    Decide what to do with a candidate pair.

    Args:
        similarity: Cosine similarity of the two embeddings
        q1, q2: Quality scores (None counts as 0.5)
        content1, content2: Memory texts
        date1, date2: ``created_at`` of each memory
        thresholds: Decision thresholds (defaults: 0.95 / 0.85 / gap 0.1)
        id1, id2: Optional ids, only used in the reason string

    Returns:
        ActionDecision; ``keep`` is 1 or 2 for delete_duplicate
    """
    thresholds = thresholds or ConsolidationThresholds()
    label1 = _label(1, id1)
    label2 = _label(2, id2)

    if similarity > thresholds.duplicate_similarity:
        quality1 = DEFAULT_QUALITY if q1 is None else q1
        quality2 = DEFAULT_QUALITY if q2 is None else q2

        if abs(quality1 - quality2) > thresholds.quality_gap:
            if quality1 > quality2:
                return ActionDecision(
                    "delete_duplicate", 1, f"Keep {label1} (quality {quality1:.2f} > {quality2:.2f})"
                )
            return ActionDecision(
                "delete_duplicate", 2, f"Keep {label2} (quality {quality2:.2f} > {quality1:.2f})"
            )

        if ensure_utc(date1) > ensure_utc(date2):
            return ActionDecision("delete_duplicate", 1, f"Keep {label1} (newer)")
        return ActionDecision("delete_duplicate", 2, f"Keep {label2} (newer)")

    if similarity > thresholds.merge_similarity:
        lower1 = content1.lower()
        lower2 = content2.lower()
        if lower1 in lower2 or lower2 in lower1:
            if len(content1) > len(content2):
                return ActionDecision("delete_duplicate", 1, f"Keep {label1} (more detailed)")
            return ActionDecision("delete_duplicate", 2, f"Keep {label2} (more detailed)")

        return ActionDecision("merge", None, "Both have unique information")

    return ActionDecision("keep_both", None, "Different enough to keep separate")
