"""
Unit tests for temporal scoring.

Temporal scoring combines three signals into the final retrieval score:
- exponential decay on the memory's age (half-life 168h by default)
- an additive access boost, capped
- validity windows that hide expired memories
"""

from datetime import datetime, timedelta, timezone

import pytest

from memory_keeper.config import TemporalConfig
from memory_keeper.errors import ValidationError
from memory_keeper.models import Memory, SearchResult
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

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def _result(content: str, similarity: float, hours_old: float, **kwargs) -> SearchResult:
    memory = Memory(
        id=content,
        content=content,
        created_at=NOW - timedelta(hours=hours_old),
        **kwargs,
    )
    return SearchResult(memory=memory, similarity=similarity)


# Decay


def test_exponential_decay_half_life():
    """One half-life halves the factor."""
    assert exponential_decay(168) == pytest.approx(0.5)
    assert exponential_decay(24, half_life_hours=24) == pytest.approx(0.5)


def test_exponential_decay_is_one_for_new_memories():
    assert exponential_decay(0) == 1.0
    assert exponential_decay(-5) == 1.0


def test_exponential_decay_monotonic_and_floored():
    """Older memories never decay less, and the factor never drops below the floor."""
    values = [exponential_decay(h) for h in range(0, 5000, 50)]

    for newer, older in zip(values, values[1:]):
        assert older <= newer
    assert min(values) == pytest.approx(0.1)


def test_linear_decay():
    assert linear_decay(0) == 1.0
    assert linear_decay(168, max_hours=336) == pytest.approx(0.55)
    assert linear_decay(400, max_hours=336) == 0.1


# Access boost


def test_access_boost_scales_and_caps():
    assert calculate_access_boost(0) == 0.0
    assert calculate_access_boost(4) == pytest.approx(0.2)
    assert calculate_access_boost(100) == pytest.approx(0.3)


# Validity windows


def test_is_valid_at_open_bounds():
    assert is_valid_at(None, None, NOW) is True


def test_is_valid_at_window():
    start = NOW - timedelta(days=1)
    end = NOW + timedelta(days=1)

    assert is_valid_at(start, end, NOW) is True
    assert is_valid_at(start, end, NOW - timedelta(days=2)) is False
    assert is_valid_at(start, end, NOW + timedelta(days=2)) is False


def test_is_valid_at_accepts_naive_datetimes():
    """Naive datetimes (e.g. from SQLite) are treated as UTC."""
    naive_end = (NOW - timedelta(hours=1)).replace(tzinfo=None)
    assert is_valid_at(None, naive_end, NOW) is False


# Temporal score


def test_recent_memory_outranks_week_old_memory():
    """Same semantic score: a 1h-old memory scores above a 1-week-old one."""
    fresh = Memory(content="fresh", created_at=NOW - timedelta(hours=1))
    stale = Memory(content="stale", created_at=NOW - timedelta(days=7))

    fresh_score = calculate_temporal_score(0.7, fresh, now=NOW)
    stale_score = calculate_temporal_score(0.7, stale, now=NOW)

    assert fresh_score.final_score > stale_score.final_score
    assert stale_score.decay_factor == pytest.approx(0.5)
    assert stale_score.final_score == pytest.approx(0.35)


@pytest.mark.parametrize("semantic", [-0.3, -1.0, 0.0, 0.4, 1.0])
def test_older_memory_never_outranks_newer(semantic):
    """Same semantic score and access count: age can only lower the final score."""
    fresh = Memory(content="fresh", created_at=NOW - timedelta(hours=1), access_count=6)
    stale = Memory(content="stale", created_at=NOW - timedelta(days=60), access_count=6)

    fresh_score = calculate_temporal_score(semantic, fresh, now=NOW)
    stale_score = calculate_temporal_score(semantic, stale, now=NOW)

    assert stale_score.final_score <= fresh_score.final_score


def test_negative_similarity_counts_as_zero_relevance():
    memory = Memory(content="opposite", created_at=NOW - timedelta(hours=1), access_count=6)

    score = calculate_temporal_score(-0.3, memory, now=NOW)

    assert score.final_score == pytest.approx(0.3)
    assert score.semantic_score == -0.3


def test_temporal_score_includes_access_boost():
    memory = Memory(content="popular", created_at=NOW, access_count=4)

    score = calculate_temporal_score(0.5, memory, now=NOW)

    assert score.access_boost == pytest.approx(0.2)
    assert score.final_score == pytest.approx(0.7)


def test_temporal_score_is_capped_at_one():
    memory = Memory(content="popular", created_at=NOW, access_count=50)

    score = calculate_temporal_score(0.95, memory, now=NOW)

    assert score.final_score == 1.0
    assert score.temporal_score == 1.0


def test_temporal_score_disabled_passes_semantic_through():
    memory = Memory(content="old", created_at=NOW - timedelta(days=30), access_count=3)

    score = calculate_temporal_score(0.8, memory, TemporalConfig(enabled=False), now=NOW)

    assert score.final_score == 0.8
    assert score.decay_factor < 1.0


def test_temporal_score_access_boost_disabled():
    memory = Memory(content="popular", created_at=NOW, access_count=10)

    score = calculate_temporal_score(
        0.5, memory, TemporalConfig(access_boost_enabled=False), now=NOW
    )

    assert score.access_boost == 0.0
    assert score.final_score == pytest.approx(0.5)


def test_temporal_score_from_mapping():
    """Plain dicts with ISO timestamps work like Memory objects."""
    meta = {
        "created_at": (NOW - timedelta(hours=168)).isoformat(),
        "access_count": 2,
    }

    score = calculate_temporal_score(0.6, meta, now=NOW)

    assert score.hours_elapsed == pytest.approx(168)
    assert score.final_score == pytest.approx(0.6 * 0.5 + 0.1)


def test_temporal_score_marks_expired():
    memory = Memory(
        content="expired",
        created_at=NOW - timedelta(days=2),
        valid_until=NOW - timedelta(days=1),
    )

    assert calculate_temporal_score(0.9, memory, now=NOW).is_expired is True
    assert (
        calculate_temporal_score(0.9, memory, TemporalConfig(filter_expired=False), now=NOW).is_expired
        is False
    )


# Batch scoring


def test_apply_temporal_scoring_reorders_by_final_score():
    results = [
        _result("old", 0.9, hours_old=24 * 30),
        _result("new", 0.7, hours_old=1),
    ]

    scored = apply_temporal_scoring(results, now=NOW)

    assert [r.memory.id for r in scored] == ["new", "old"]
    assert scored[0].temporal_score is not None
    assert scored[0].temporal_score.semantic_score == 0.7


def test_apply_temporal_scoring_drops_expired():
    results = [
        _result("live", 0.8, hours_old=1),
        _result("gone", 0.9, hours_old=1, valid_until=NOW - timedelta(minutes=5)),
    ]

    scored = apply_temporal_scoring(results, now=NOW)

    assert [r.memory.id for r in scored] == ["live"]


def test_apply_temporal_scoring_does_not_mutate_input():
    results = [_result("old", 0.9, hours_old=24 * 30)]

    apply_temporal_scoring(results, now=NOW)

    assert results[0].similarity == 0.9
    assert results[0].temporal_score is None


def test_apply_temporal_scoring_disabled_keeps_order():
    results = [
        _result("old", 0.9, hours_old=24 * 30),
        _result("new", 0.7, hours_old=1),
    ]

    scored = apply_temporal_scoring(results, TemporalConfig(enabled=False), now=NOW)

    assert [r.memory.id for r in scored] == ["old", "new"]
    assert [r.similarity for r in scored] == [0.9, 0.7]


def test_apply_temporal_scoring_empty():
    assert apply_temporal_scoring([], now=NOW) == []


# Durations


def test_parse_duration_days():
    assert parse_duration("7d", NOW) - NOW == timedelta(days=7)


def test_parse_duration_weeks_and_case():
    assert parse_duration("2W", NOW) - NOW == timedelta(weeks=2)


def test_parse_duration_months_clamps_day():
    base = datetime(2025, 1, 31, tzinfo=timezone.utc)

    assert parse_duration("1m", base) == datetime(2025, 2, 28, tzinfo=timezone.utc)


def test_parse_duration_years():
    assert parse_duration("1y", NOW) == NOW.replace(year=2026)


def test_parse_duration_iso_date():
    assert parse_duration("2025-12-31T00:00:00Z") == datetime(2025, 12, 31, tzinfo=timezone.utc)
    assert parse_duration("2025-12-31").tzinfo is not None


@pytest.mark.parametrize("duration", ["", "   ", "invalid", "7x", "d7", "-3d"])
def test_parse_duration_rejects_bad_input(duration):
    with pytest.raises(ValidationError) as exc_info:
        parse_duration(duration, NOW)

    assert exc_info.value.code == "VALIDATION_ERROR"


# Curve / formatting


def test_get_decay_curve():
    curve = get_decay_curve(TemporalConfig(decay_half_life_hours=24), steps=4)

    assert len(curve) == 5
    assert curve[0] == (0.0, 1.0)
    assert curve[1][0] == pytest.approx(24)
    assert curve[1][1] == pytest.approx(0.5)
    assert curve[-1][0] == pytest.approx(96)


def test_get_decay_curve_rejects_zero_steps():
    with pytest.raises(ValidationError):
        get_decay_curve(steps=0)


def test_format_temporal_score():
    memory = Memory(content="x", created_at=NOW - timedelta(hours=168), valid_until=NOW - timedelta(hours=1))
    text = format_temporal_score(calculate_temporal_score(0.8, memory, now=NOW))

    assert "Final Score: 40.0%" in text
    assert "(168h ago)" in text
    assert "EXPIRED" in text
