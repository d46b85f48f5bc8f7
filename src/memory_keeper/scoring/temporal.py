"""
Temporal scoring for memory retrieval.

Turns a raw semantic similarity into a time-aware ranking score:
- exponential decay on the memory's age (``created_at``)
- an additive boost for frequently accessed memories (``access_count``)
- validity windows (``valid_from`` / ``valid_until``) for expiring facts

All functions are pure; nothing here touches storage.
"""

import calendar
import logging
import re
from datetime import datetime, timedelta
from typing import Any, List, Mapping, Optional, Tuple, Union

from memory_keeper.config import TemporalConfig
from memory_keeper.errors import ValidationError
from memory_keeper.models import Memory, SearchResult, TemporalScore, ensure_utc, utcnow

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(\d+)([dwmy])$", re.IGNORECASE)

TemporalMeta = Union[Memory, Mapping[str, Any]]


def exponential_decay(
    hours_elapsed: float, half_life_hours: float = 168.0, floor: float = 0.1
) -> float:
    """
    Exponential decay factor: 0.5 after one half-life, never below ``floor``.

    Example:
        >>> exponential_decay(168)
        0.5
    """
    if hours_elapsed <= 0:
        return 1.0
    return max(floor, 0.5 ** (hours_elapsed / half_life_hours))


def linear_decay(hours_elapsed: float, max_hours: float = 336.0, floor: float = 0.1) -> float:
    """Linear decay from 1.0 at 0 hours to ``floor`` at ``max_hours``."""
    if hours_elapsed <= 0:
        return 1.0
    if hours_elapsed >= max_hours:
        return floor
    return max(floor, 1.0 - (hours_elapsed / max_hours) * (1.0 - floor))


def calculate_access_boost(
    access_count: int, per_access_factor: float = 0.05, cap: float = 0.3
) -> float:
    if access_count <= 0:
        return 0.0
    return min(access_count * per_access_factor, cap)


def is_valid_at(
    valid_from: Optional[datetime],
    valid_until: Optional[datetime],
    at_time: Optional[datetime] = None,
) -> bool:
    """Check a validity window; missing bounds are open."""
    at_time = ensure_utc(at_time) or utcnow()

    valid_from = ensure_utc(valid_from)
    if valid_from is not None and at_time < valid_from:
        return False

    valid_until = ensure_utc(valid_until)
    if valid_until is not None and at_time > valid_until:
        return False

    return True


def _meta_value(meta: TemporalMeta, name: str, default: Any = None) -> Any:
    if isinstance(meta, Mapping):
        return meta.get(name, default)
    return getattr(meta, name, default)


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return ensure_utc(value)


def calculate_temporal_score(
    semantic_score: float,
    meta: TemporalMeta,
    config: Optional[TemporalConfig] = None,
    now: Optional[datetime] = None,
) -> TemporalScore:
    """
    Calculate the temporal-aware score for one search hit.

    Decay is based on ``created_at``; the boost on ``access_count``. When the
    config is disabled the semantic score passes through unchanged, but the
    decay and boost are still reported.

    Args:
        semantic_score: Raw similarity from the vector search
        meta: Memory (or a mapping with the same field names)
        config: Temporal config (defaults to TemporalConfig())
        now: Reference time (defaults to the current UTC time)

    Returns:
        TemporalScore with the full breakdown
    """
    config = config or TemporalConfig()
    now = ensure_utc(now) or utcnow()

    created_at = _as_datetime(_meta_value(meta, "created_at"))
    hours_elapsed = (now - created_at).total_seconds() / 3600 if created_at else 0.0

    decay_factor = exponential_decay(
        hours_elapsed, config.decay_half_life_hours, config.decay_floor
    )

    access_boost = 0.0
    if config.access_boost_enabled:
        access_boost = calculate_access_boost(
            _meta_value(meta, "access_count", 0) or 0,
            config.access_boost_factor,
            config.max_access_boost,
        )

    is_expired = config.filter_expired and not is_valid_at(
        _as_datetime(_meta_value(meta, "valid_from")),
        _as_datetime(_meta_value(meta, "valid_until")),
        now,
    )

    temporal_score = min(1.0, decay_factor + access_boost)

    if config.enabled:
        # Negative cosines count as zero relevance; decay must never raise a score.
        relevance = min(1.0, max(0.0, semantic_score))
        final_score = min(1.0, relevance * decay_factor + access_boost)
    else:
        final_score = semantic_score

    return TemporalScore(
        final_score=final_score,
        semantic_score=semantic_score,
        temporal_score=temporal_score,
        decay_factor=decay_factor,
        access_boost=access_boost,
        is_expired=is_expired,
        hours_elapsed=hours_elapsed,
    )


def apply_temporal_scoring(
    results: List[SearchResult],
    config: Optional[TemporalConfig] = None,
    now: Optional[datetime] = None,
) -> List[SearchResult]:
    """
    Re-score search results with temporal decay and access boost.

    Expired results are dropped when ``filter_expired`` is set. When scoring
    is enabled results are re-sorted by final score; otherwise the incoming
    order is kept.
    """
    config = config or TemporalConfig()
    now = ensure_utc(now) or utcnow()

    scored: List[SearchResult] = []
    for result in results:
        breakdown = calculate_temporal_score(result.similarity, result.memory, config, now)
        if config.filter_expired and breakdown.is_expired:
            logger.debug(f"Dropping expired memory {result.memory.id}")
            continue
        scored.append(
            result.model_copy(
                update={
                    "similarity": breakdown.final_score,
                    "temporal_score": breakdown,
                }
            )
        )

    if config.enabled:
        scored.sort(key=lambda r: r.similarity, reverse=True)

    return scored


def _add_months(base: datetime, months: int) -> datetime:
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return base.replace(year=year, month=month, day=day)


def parse_duration(duration: str, base: Optional[datetime] = None) -> datetime:
    """
    Parse a relative duration or ISO-8601 date into an absolute UTC datetime.

    Relative durations are counted forward from ``base`` (validity windows such
    as "expires in 7d"): ``"7d"``, ``"2w"``, ``"1m"`` (calendar months, day
    clamped to the month end) and ``"1y"``.

    Raises:
        ValidationError: For empty or unrecognised input
    """
    if not duration or not duration.strip():
        raise ValidationError("Duration must not be empty", context={"duration": duration})

    base = ensure_utc(base) or utcnow()
    text = duration.strip()

    match = _DURATION_RE.match(text)
    if match:
        value = int(match.group(1))
        unit = match.group(2).lower()
        if unit == "d":
            return base + timedelta(days=value)
        if unit == "w":
            return base + timedelta(weeks=value)
        if unit == "m":
            return _add_months(base, value)
        return _add_months(base, 12 * value)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(
            f'Invalid duration format: {duration}. Use "7d", "2w", "1m", "1y" or an ISO date.',
            context={"duration": duration},
        ) from e

    return ensure_utc(parsed)


def get_decay_curve(
    config: Optional[TemporalConfig] = None,
    steps: int = 20,
    max_hours: Optional[float] = None,
) -> List[Tuple[float, float]]:
    """Sample ``steps + 1`` (hours, decay) points from 0 to ``max_hours``."""
    config = config or TemporalConfig()
    if steps <= 0:
        raise ValidationError("steps must be positive", context={"steps": steps})
    if max_hours is None:
        max_hours = 4 * config.decay_half_life_hours

    step = max_hours / steps
    return [
        (
            i * step,
            exponential_decay(i * step, config.decay_half_life_hours, config.decay_floor),
        )
        for i in range(steps + 1)
    ]


def format_temporal_score(score: TemporalScore) -> str:
    lines = [
        f"Final Score: {score.final_score * 100:.1f}%",
        f"  Semantic: {score.semantic_score * 100:.1f}%",
        f"  Temporal: {score.temporal_score * 100:.1f}%",
        f"    Decay: {score.decay_factor * 100:.1f}% ({score.hours_elapsed:.0f}h ago)",
        f"    Access Boost: +{score.access_boost * 100:.1f}%",
    ]
    if score.is_expired:
        lines.append("  EXPIRED")
    return "\n".join(lines)
