"""Retrieval scoring: temporal decay, MMR diversity and memory quality."""

from memory_keeper.scoring.mmr import apply_mmr, cosine_similarity
from memory_keeper.scoring.quality import (
    QualityScorer,
    calculate_clarity,
    calculate_specificity,
    extract_json_object,
    format_quality_score,
    passes_quality_threshold,
    score_with_heuristics,
)
from memory_keeper.scoring.reference import ReferenceEmbeddingCache
from memory_keeper.scoring.temporal import (
    apply_temporal_scoring,
    calculate_access_boost,
    calculate_temporal_score,
    exponential_decay,
    format_temporal_score,
    get_decay_curve,
    is_valid_at,
    linear_decay,
    parse_duration,
)

__all__ = [
    "apply_mmr",
    "cosine_similarity",
    "QualityScorer",
    "calculate_clarity",
    "calculate_specificity",
    "extract_json_object",
    "format_quality_score",
    "passes_quality_threshold",
    "score_with_heuristics",
    "ReferenceEmbeddingCache",
    "apply_temporal_scoring",
    "calculate_access_boost",
    "calculate_temporal_score",
    "exponential_decay",
    "format_temporal_score",
    "get_decay_curve",
    "is_valid_at",
    "linear_decay",
    "parse_duration",
]
