"""
memory-keeper: semantic memory retrieval scoring and soft-delete consolidation.

Core components:
- scoring: temporal decay, access boost, MMR diversity and quality scoring
- consolidation: near-duplicate detection, merge/dedup execution and undo
- retrieval: recall pipeline (search, temporal scoring, MMR, access tracking)
- storage: protocol plus in-memory and SQLAlchemy backends
- locks: one consolidation run per corpus
- models: Memory, MemoryLink and score models
"""

__version__ = "0.1.0"

from memory_keeper.config import MemoryKeeperConfig, load_config, merge_config
from memory_keeper.consolidation import (
    ConsolidationEngine,
    ConsolidationExecutor,
    ConsolidationResult,
    UndoResult,
)
from memory_keeper.errors import MemoryKeeperError
from memory_keeper.models import Memory, MemoryLink, MemoryLinks, QualityScore, SearchResult
from memory_keeper.retrieval import RetrievalService
from memory_keeper.scoring import QualityScorer

__all__ = [
    "__version__",
    # Config
    "MemoryKeeperConfig",
    "load_config",
    "merge_config",
    # Models
    "Memory",
    "MemoryLink",
    "MemoryLinks",
    "QualityScore",
    "SearchResult",
    # Services
    "ConsolidationEngine",
    "ConsolidationExecutor",
    "ConsolidationResult",
    "UndoResult",
    "QualityScorer",
    "RetrievalService",
    "MemoryKeeperError",
]
