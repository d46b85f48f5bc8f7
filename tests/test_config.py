"""Tests for config models, field-by-field merging and environment loading."""

import pytest

from memory_keeper.config import (
    ConsolidationConfig,
    MemoryKeeperConfig,
    TemporalConfig,
    load_config,
    merge_config,
)
from memory_keeper.errors import ConfigError


def test_defaults():
    config = MemoryKeeperConfig()

    assert config.temporal.decay_half_life_hours == 168
    assert config.temporal.max_access_boost == 0.3
    assert config.mmr.diversity_lambda == 0.8
    assert config.quality.mode == "local"
    assert config.consolidation.enabled is False
    assert config.consolidation.thresholds.duplicate_similarity == 0.95
    assert config.consolidation.guards.min_corpus_size == 20


def test_merge_overrides_only_given_fields():
    merged = merge_config(TemporalConfig(), {"decay_half_life_hours": 24})

    assert merged.decay_half_life_hours == 24
    assert merged.decay_floor == 0.1
    assert merged.access_boost_enabled is True


def test_merge_nested_models_recursively():
    merged = merge_config(
        MemoryKeeperConfig(),
        {"consolidation": {"thresholds": {"merge_similarity": 0.88}, "enabled": True}},
    )

    assert merged.consolidation.enabled is True
    assert merged.consolidation.thresholds.merge_similarity == 0.88
    assert merged.consolidation.thresholds.duplicate_similarity == 0.95
    assert merged.temporal == TemporalConfig()


def test_merge_none_keeps_base():
    base = ConsolidationConfig(max_candidates=10)

    assert merge_config(base, {"max_candidates": None}).max_candidates == 10


def test_merge_returns_copy():
    base = MemoryKeeperConfig()

    merged = merge_config(base)
    merged.temporal.enabled = False

    assert base.temporal.enabled is True


def test_merge_rejects_unknown_key():
    with pytest.raises(ConfigError) as exc_info:
        merge_config(TemporalConfig(), {"half_life": 24})

    assert exc_info.value.context == {"field": "half_life"}


def test_merge_rejects_unknown_nested_key():
    with pytest.raises(ConfigError):
        merge_config(MemoryKeeperConfig(), {"mmr": {"lambda": 0.5}})


def test_merge_rejects_invalid_value():
    with pytest.raises(ConfigError) as exc_info:
        merge_config(TemporalConfig(), {"decay_floor": 2.0})

    assert exc_info.value.code == "CONFIG_ERROR"


def test_load_config_from_environment(monkeypatch):
    monkeypatch.setenv("MEMORY_KEEPER_TEMPORAL__DECAY_HALF_LIFE_HOURS", "72")
    monkeypatch.setenv("MEMORY_KEEPER_CONSOLIDATION__ENABLED", "true")
    monkeypatch.setenv("MEMORY_KEEPER_QUALITY__MODE", "heuristic")

    config = load_config()

    assert config.temporal.decay_half_life_hours == 72
    assert config.consolidation.enabled is True
    assert config.quality.mode == "heuristic"


def test_load_config_override_beats_environment(monkeypatch):
    monkeypatch.setenv("MEMORY_KEEPER_MMR__DIVERSITY_LAMBDA", "0.5")

    config = load_config({"mmr": {"diversity_lambda": 0.9}})

    assert config.mmr.diversity_lambda == 0.9


def test_load_config_defaults_without_environment(monkeypatch):
    monkeypatch.delenv("MEMORY_KEEPER_TEMPORAL__DECAY_HALF_LIFE_HOURS", raising=False)

    assert load_config().temporal.decay_half_life_hours == 168
