"""
Safety gating for consolidation runs.

These checks are for the caller (scheduler, CLI, hook) to run before
starting the engine; the engine itself assumes it is authorised.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from memory_keeper.config import ConsolidationConfig, ConsolidationGuards
from memory_keeper.models import Memory, ensure_utc, utcnow

logger = logging.getLogger(__name__)


def is_consolidation_enabled(global_enabled: bool, project_override: Optional[bool] = None) -> bool:
    """Global opt-in, unless the project explicitly disables it."""
    return bool(global_enabled) and project_override is not False


def is_enabled_for(config: ConsolidationConfig) -> bool:
    return is_consolidation_enabled(config.enabled, config.project_enabled)


@dataclass
class GuardEvaluation:
    """
    Result of evaluating the consolidation guards.

    Attributes:
        eligible: Active memories old enough to consolidate
        cutoff: Memories created after this are too young
        corpus_ok: Whether the active corpus meets the minimum size
        reasons: Why the run should not proceed (empty when it may)
    """

    eligible: List[Memory]
    cutoff: datetime
    corpus_ok: bool
    reasons: List[str] = field(default_factory=list)

    @property
    def should_run(self) -> bool:
        return self.corpus_ok and not self.reasons


def evaluate_guards(
    memories: Sequence[Memory],
    guards: Optional[ConsolidationGuards] = None,
    now: Optional[datetime] = None,
) -> GuardEvaluation:
    """
    Apply the minimum-age and minimum-corpus-size guards.

    Args:
        memories: The active corpus (tombstones are ignored)
        guards: Guard settings
        now: Reference time (defaults to the current UTC time)
    """
    guards = guards or ConsolidationGuards()
    now = ensure_utc(now) or utcnow()
    cutoff = now - timedelta(days=guards.min_memory_age_days)

    active = [m for m in memories if not m.is_tombstone]
    eligible = [m for m in active if m.created_at <= cutoff]
    corpus_ok = len(active) >= guards.min_corpus_size

    reasons = []
    if not corpus_ok:
        reasons.append(
            f"Corpus has {len(active)} active memories, minimum is {guards.min_corpus_size}"
        )
    if len(eligible) < 2:
        reasons.append(
            f"Only {len(eligible)} memories older than {guards.min_memory_age_days} days"
        )

    if reasons:
        logger.info(f"Consolidation guards not met: {'; '.join(reasons)}")

    return GuardEvaluation(eligible=eligible, cutoff=cutoff, corpus_ok=corpus_ok, reasons=reasons)
