from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MemoryType = Literal["observation", "decision", "learning", "error", "pattern"]

LinkRelation = Literal[
    "related",
    "caused_by",
    "leads_to",
    "similar_to",
    "contradicts",
    "implements",
    "supersedes",
    "references",
]

LINK_RELATIONS: tuple[str, ...] = (
    "related",
    "caused_by",
    "leads_to",
    "similar_to",
    "contradicts",
    "implements",
    "supersedes",
    "references",
)

QualityMode = Literal["heuristic", "local", "api"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round trips, fromisoformat) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class QualityFactors(BaseModel):
    specificity: float = Field(default=0.5, ge=0.0, le=1.0)
    clarity: float = Field(default=0.5, ge=0.0, le=1.0)
    relevance: float = Field(default=0.5, ge=0.0, le=1.0)
    uniqueness: float = Field(default=0.5, ge=0.0, le=1.0)


class QualityScore(BaseModel):
    """Confidence-weighted quality estimate for a piece of content."""

    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: QualityFactors
    mode: QualityMode


class Memory(BaseModel):
    id: Optional[str] = Field(default=None, description="Assigned by the store on save")
    content: str
    tags: List[str] = Field(default_factory=list)
    source: Optional[str] = Field(default=None, description="Free-text provenance")
    type: Optional[MemoryType] = None
    embedding: Optional[List[float]] = None

    quality_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    quality_factors: Optional[QualityFactors] = None

    access_count: int = Field(default=0, ge=0, description="Number of retrieval hits")
    last_accessed: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    valid_from: Optional[datetime] = Field(
        default=None, description="Start of temporal validity (None = always valid)"
    )
    valid_until: Optional[datetime] = Field(
        default=None, description="End of temporal validity (None = never expires)"
    )
    invalidated_by: Optional[str] = Field(
        default=None, description="ID of the memory that superseded this one"
    )

    @field_validator("last_accessed", "created_at", "valid_from", "valid_until")
    @classmethod
    def _coerce_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def is_tombstone(self) -> bool:
        return self.invalidated_by is not None


class MemoryLink(BaseModel):
    """Directed, weighted edge between two memories."""

    id: Optional[int] = None
    source_id: str
    target_id: str
    relation: LinkRelation = "related"
    weight: float = Field(default=1.0, ge=0.0, le=1.0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    llm_enriched: bool = False
    transferred_from: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("valid_from", "valid_until", "created_at")
    @classmethod
    def _coerce_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _reject_self_loop(self) -> "MemoryLink":
        if self.source_id == self.target_id:
            raise ValueError(f"Memory link cannot point to itself ({self.source_id})")
        return self


class MemoryLinks(BaseModel):
    outgoing: List[MemoryLink] = Field(default_factory=list)
    incoming: List[MemoryLink] = Field(default_factory=list)


class TemporalScore(BaseModel):
    """Breakdown of a temporal-aware score."""

    final_score: float
    semantic_score: float
    temporal_score: float
    decay_factor: float
    access_boost: float
    is_expired: bool
    hours_elapsed: float


class SearchResult(BaseModel):
    """A memory hit with its (possibly re-ranked) similarity score."""

    memory: Memory
    similarity: float
    temporal_score: Optional[TemporalScore] = None

    @property
    def embedding(self) -> Optional[List[float]]:
        return self.memory.embedding
