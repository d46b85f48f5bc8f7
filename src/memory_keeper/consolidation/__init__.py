"""
Memory consolidation: near-duplicate detection, action decision, soft-delete
execution and undo.
"""

from memory_keeper.consolidation.candidates import find_consolidation_candidates
from memory_keeper.consolidation.decision import determine_action
from memory_keeper.consolidation.engine import ConsolidationEngine
from memory_keeper.consolidation.executor import ConsolidationExecutor
from memory_keeper.consolidation.guards import (
    GuardEvaluation,
    evaluate_guards,
    is_consolidation_enabled,
)
from memory_keeper.consolidation.models import (
    ActionDecision,
    ConsolidationAction,
    ConsolidationCandidate,
    ConsolidationHistoryEntry,
    ConsolidationResult,
    ConsolidationStats,
    UndoResult,
)
from memory_keeper.consolidation.synthesizer import MergeSynthesizer, combine_contents

__all__ = [
    "ActionDecision",
    "ConsolidationAction",
    "ConsolidationCandidate",
    "ConsolidationEngine",
    "ConsolidationExecutor",
    "ConsolidationHistoryEntry",
    "ConsolidationResult",
    "ConsolidationStats",
    "GuardEvaluation",
    "MergeSynthesizer",
    "UndoResult",
    "combine_contents",
    "determine_action",
    "evaluate_guards",
    "find_consolidation_candidates",
    "is_consolidation_enabled",
]
