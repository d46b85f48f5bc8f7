"""
Configuration models for memory-keeper.

Each component has an explicit config model with documented field defaults.
Partial overrides (from a settings file, a project config or a test) are
merged field-by-field with ``merge_config``; nested models merge recursively
and unknown keys are rejected.
"""

import logging
from typing import Any, Literal, Mapping, Optional, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from memory_keeper.errors import ConfigError

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", bound=BaseModel)

MERGED_MEMORY_SOURCE = "consolidation-llm"


class TemporalConfig(BaseModel):
    enabled: bool = Field(default=True, description="Apply decay/boost to the final score")
    decay_half_life_hours: float = Field(
        default=168.0, gt=0, description="Hours until the decay factor reaches 0.5 (7 days)"
    )
    decay_floor: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Minimum decay factor"
    )
    access_boost_enabled: bool = Field(default=True, description="Boost frequently accessed memories")
    access_boost_factor: float = Field(default=0.05, ge=0.0, description="Boost per access")
    max_access_boost: float = Field(default=0.3, ge=0.0, le=1.0, description="Cap on access boost")
    filter_expired: bool = Field(
        default=True, description="Drop memories outside their validity window"
    )


class MMRConfig(BaseModel):
    enabled: bool = Field(default=True, description="Diversity re-rank recall results")
    diversity_lambda: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Relevance/diversity trade-off (1.0 = pure relevance)",
    )


class QualityConfig(BaseModel):
    enabled: bool = Field(default=True, description="Score memory quality")
    mode: Literal["heuristic", "local", "api"] = Field(
        default="local", description="Scoring backend; local/api fall back to heuristics"
    )
    threshold: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Minimum score for passes_quality_threshold"
    )
    local_gate: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Heuristic specificity below which the classifier is skipped",
    )
    embedding_refinement: bool = Field(
        default=True, description="Refine uncertain specificity via reference embeddings"
    )
    api_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    api_max_tokens: int = Field(default=200, gt=0)


class ConsolidationThresholds(BaseModel):
    min_similarity: float = Field(
        default=0.82, ge=0.0, le=1.0, description="Floor for a pair to become a candidate"
    )
    duplicate_similarity: float = Field(
        default=0.95, ge=0.0, le=1.0, description="Above this a pair is a near-exact duplicate"
    )
    merge_similarity: float = Field(
        default=0.85, ge=0.0, le=1.0, description="Above this (and <= duplicate) pairs merge"
    )
    quality_gap: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Quality difference that decides a duplicate"
    )


class ConsolidationGuards(BaseModel):
    min_memory_age_days: float = Field(
        default=7, ge=0, description="Don't consolidate memories younger than N days"
    )
    min_corpus_size: int = Field(
        default=20, ge=0, description="Don't consolidate if the active corpus is smaller"
    )
    require_llm_merge: bool = Field(
        default=True, description="Merges must be synthesised by the LLM"
    )


class ConsolidationConfig(BaseModel):
    enabled: bool = Field(default=False, description="Global opt-in for consolidation")
    project_enabled: Optional[bool] = Field(
        default=None, description="Project override; an explicit False always wins"
    )
    thresholds: ConsolidationThresholds = Field(default_factory=ConsolidationThresholds)
    guards: ConsolidationGuards = Field(default_factory=ConsolidationGuards)
    max_candidates: int = Field(default=50, gt=0, description="Pairs processed per run")
    block_size: int = Field(
        default=512, gt=0, description="Rows per similarity block during candidate generation"
    )
    prefilter_limit: int = Field(
        default=10, gt=0, description="Neighbours requested per memory from a similarity index"
    )
    store_prefilter_above: Optional[int] = Field(
        default=None,
        gt=0,
        description=(
            "Use the store's own search as the neighbour pre-filter once the active "
            "corpus exceeds this many memories (None keeps the blocked matrix)"
        ),
    )
    link_kept_pairs: bool = Field(
        default=False, description="Record a similar_to link for keep_both pairs"
    )
    merged_source: str = Field(
        default=MERGED_MEMORY_SOURCE, description="Source marker for synthetic merged memories"
    )


class MemoryKeeperConfig(BaseModel):
    temporal: TemporalConfig = Field(default_factory=TemporalConfig)
    mmr: MMRConfig = Field(default_factory=MMRConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)


def merge_config(base: ConfigT, override: Optional[Mapping[str, Any]] = None) -> ConfigT:
    """
    Merge a partial override into a config model, field by field.

    ``None`` values in the override keep the base value. Nested models accept
    nested mappings and are merged recursively.

    Raises:
        ConfigError: On unknown keys or values that fail validation
    """
    if not override:
        return base.model_copy(deep=True)

    model_cls = type(base)
    data = base.model_dump()

    for key, value in override.items():
        if key not in model_cls.model_fields:
            raise ConfigError(
                f"Unknown {model_cls.__name__} field: {key}",
                context={"field": key},
            )
        if value is None:
            continue

        current = getattr(base, key)
        if isinstance(current, BaseModel) and isinstance(value, Mapping):
            data[key] = merge_config(current, value).model_dump()
        elif isinstance(value, BaseModel):
            data[key] = value.model_dump()
        else:
            data[key] = value

    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigError(
            f"Invalid {model_cls.__name__} override: {e}",
            context={"override": dict(override)},
        ) from e


class MemoryKeeperSettings(BaseSettings):
    """
    Environment-driven settings.

    Example:
        MEMORY_KEEPER_TEMPORAL__DECAY_HALF_LIFE_HOURS=72
        MEMORY_KEEPER_CONSOLIDATION__ENABLED=true
    """

    model_config = SettingsConfigDict(env_prefix="MEMORY_KEEPER_", env_nested_delimiter="__")

    temporal: TemporalConfig = Field(default_factory=TemporalConfig)
    mmr: MMRConfig = Field(default_factory=MMRConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)


def load_config(override: Optional[Mapping[str, Any]] = None) -> MemoryKeeperConfig:
    """Load config from the environment, then apply an optional override."""
    settings = MemoryKeeperSettings()
    config = MemoryKeeperConfig.model_validate(settings.model_dump())
    config = merge_config(config, override)

    logger.debug(
        f"Config loaded: temporal.enabled={config.temporal.enabled}, "
        f"quality.mode={config.quality.mode}, "
        f"consolidation.enabled={config.consolidation.enabled}"
    )
    return config
