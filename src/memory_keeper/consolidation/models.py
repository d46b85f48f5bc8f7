"""
Models for consolidation decisions and run results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional, Tuple

from memory_keeper.models import Memory

ConsolidationAction = Literal["delete_duplicate", "merge", "keep_both"]


@dataclass
class ActionDecision:
    """
    Outcome of the decision table for one pair.

    Attributes:
        action: What to do with the pair
        keep: 1 or 2 for the surviving memory of a delete_duplicate, else None
        reason: Human-readable audit string
    """

    action: ConsolidationAction
    keep: Optional[Literal[1, 2]]
    reason: str


@dataclass
class ConsolidationCandidate:
    memory1: Memory
    memory2: Memory
    similarity: float
    action: ConsolidationAction
    reason: str
    keep_id: Optional[str] = None

    @property
    def pair_key(self) -> str:
        return pair_key(self.memory1.id, self.memory2.id)

    @property
    def drop_id(self) -> Optional[str]:
        if self.keep_id is None:
            return None
        return self.memory2.id if self.keep_id == self.memory1.id else self.memory1.id


@dataclass
class ConsolidationResult:
    """
    Summary of a consolidation run.

    ``candidates_found`` counts the pairs the run took up. A cancelled run
    reports the untouched pairs in ``remaining`` instead, so the totals
    always reconcile.

    Examples:
        >>> result = ConsolidationResult(candidates_found=3, merged=1, deleted=1, kept=1)
        >>> result.is_reconciled
        True
    """

    candidates_found: int = 0
    merged: int = 0
    deleted: int = 0
    kept: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    remaining: int = 0
    dry_run: bool = False

    @property
    def is_reconciled(self) -> bool:
        return self.merged + self.deleted + self.kept + len(self.errors) == self.candidates_found


@dataclass
class UndoResult:
    merged_id: str
    restored: List[str] = field(default_factory=list)
    deleted_merge: bool = False
    removed_links: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.restored and not self.deleted_merge


@dataclass
class ConsolidationHistoryEntry:
    merged_memory_id: str
    merged_content: Optional[str]
    original_ids: List[str]
    merged_at: Optional[datetime]
    synthetic: bool = False
    transferred_link_ids: List[int] = field(default_factory=list)


@dataclass
class ConsolidationStats:
    total_memories: int
    duplicate_pairs: int
    merge_candidates: int
    keep_pairs: int

    @property
    def potential_reduction(self) -> int:
        return self.duplicate_pairs + self.merge_candidates


def pair_id(id1: Optional[str], id2: Optional[str]) -> Tuple[str, str]:
    """Order-independent identity of a memory pair, safe for ids containing hyphens."""
    a, b = sorted((str(id1), str(id2)))
    return a, b


def pair_key(id1: Optional[str], id2: Optional[str]) -> str:
    """Display label for a memory pair (ambiguous when ids contain hyphens; never a dict key)."""
    return "-".join(pair_id(id1, id2))
