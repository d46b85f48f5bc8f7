"""
SQLAlchemy-based memory storage implementation.

Works with any SQLAlchemy-compatible database (PostgreSQL, SQLite, MySQL,
etc.). Memories and links live in two tables; tombstones are ordinary rows
whose ``invalidated_by`` column points back into the memories table.
"""

import json
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Engine,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    or_,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base

from memory_keeper.errors import MemoryKeeperError, StorageError, TransactionError
from memory_keeper.models import (
    LinkRelation,
    Memory,
    MemoryLink,
    MemoryLinks,
    QualityFactors,
    SearchResult,
    ensure_utc,
    utcnow,
)
from memory_keeper.scoring.mmr import cosine_similarity

logger = logging.getLogger(__name__)

T = TypeVar("T")

Base = declarative_base()


class MemoryDB(Base):
    """SQLAlchemy model for memory storage."""

    __tablename__ = "memories"

    id = Column(String, primary_key=True)
    content = Column(Text, nullable=False)
    tags_json = Column(Text, nullable=False, default="[]")
    source = Column(String, nullable=True)
    type = Column(String, nullable=True)
    embedding_json = Column(Text, nullable=True)

    quality_score = Column(Float, nullable=True)
    quality_factors_json = Column(Text, nullable=True)

    access_count = Column(Integer, nullable=False, default=0)
    last_accessed = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    invalidated_by = Column(String, ForeignKey("memories.id"), nullable=True, index=True)

    __table_args__ = (Index("idx_memories_source", "source"),)

    def to_memory(self) -> Memory:
        factors = json.loads(self.quality_factors_json) if self.quality_factors_json else None
        return Memory(
            id=self.id,
            content=self.content,
            tags=json.loads(self.tags_json) if self.tags_json else [],
            source=self.source,
            type=self.type,
            embedding=json.loads(self.embedding_json) if self.embedding_json else None,
            quality_score=self.quality_score,
            quality_factors=QualityFactors(**factors) if factors else None,
            access_count=self.access_count or 0,
            last_accessed=self.last_accessed,
            created_at=self.created_at,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            invalidated_by=self.invalidated_by,
        )

    def apply(self, memory: Memory) -> None:
        """Copy fields from a Memory onto this row."""
        self.content = memory.content
        self.tags_json = json.dumps(memory.tags)
        self.source = memory.source
        self.type = memory.type
        self.embedding_json = json.dumps(memory.embedding) if memory.embedding is not None else None
        self.quality_score = memory.quality_score
        self.quality_factors_json = (
            memory.quality_factors.model_dump_json() if memory.quality_factors else None
        )
        self.access_count = memory.access_count
        self.last_accessed = memory.last_accessed
        self.created_at = memory.created_at
        self.valid_from = memory.valid_from
        self.valid_until = memory.valid_until
        self.invalidated_by = memory.invalidated_by


class MemoryLinkDB(Base):
    """SQLAlchemy model for directed memory links."""

    __tablename__ = "memory_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_id = Column(String, ForeignKey("memories.id"), nullable=False, index=True)
    target_id = Column(String, ForeignKey("memories.id"), nullable=False, index=True)
    relation = Column(String, nullable=False, default="related")
    weight = Column(Float, nullable=False, default=1.0)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    llm_enriched = Column(Boolean, nullable=False, default=False)
    # Retired memory this link was copied from during consolidation
    transferred_from = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("source_id", "target_id", "relation", name="uq_memory_links_edge"),
        CheckConstraint("source_id != target_id", name="ck_memory_links_no_self_loop"),
        Index("idx_memory_links_relation", "relation"),
    )

    def to_memory_link(self) -> MemoryLink:
        return MemoryLink(
            id=self.id,
            source_id=self.source_id,
            target_id=self.target_id,
            relation=self.relation,
            weight=self.weight,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            llm_enriched=self.llm_enriched,
            transferred_from=self.transferred_from,
            created_at=self.created_at,
        )


class SQLAlchemyMemoryStore:
    """
    SQLAlchemy-based memory storage.

    Each public call runs in its own session unless it is made inside
    ``transaction(fn)``, in which case it joins the transaction's session and
    commits (or rolls back) together with everything else ``fn`` did.

    Example:
        from sqlalchemy import create_engine
        engine = create_engine("sqlite:///memories.db")
        store = SQLAlchemyMemoryStore(engine)
        store.create_tables()
    """

    def __init__(self, engine: Engine):
        """
        Initialize the SQLAlchemy memory store.

        Args:
            engine: SQLAlchemy engine for database connection
        """
        self.engine = engine
        self._local = threading.local()
        logger.info(f"SQLAlchemyMemoryStore initialized (engine={engine.url})")

    @property
    def _active_session(self) -> Optional[Session]:
        return getattr(self._local, "session", None)

    @contextmanager
    def _session(self):
        """Context manager for database sessions with automatic commit/rollback."""
        active = self._active_session
        if active is not None:
            yield active
            return

        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {e}")
            raise StorageError(f"Database error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self):
        """Create database tables if they don't exist."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created/verified")

    def transaction(self, fn: Callable[[], T]) -> T:
        if self._active_session is not None:
            return fn()

        session = Session(self.engine, expire_on_commit=False)
        self._local.session = session
        try:
            result = fn()
            session.commit()
            return result
        except Exception as e:
            session.rollback()
            logger.warning(f"Transaction rolled back: {e}")
            if isinstance(e, MemoryKeeperError):
                raise
            raise TransactionError(f"Transaction rolled back: {e}") from e
        finally:
            self._local.session = None
            session.close()

    # Memories

    def save_memory(self, memory: Memory) -> str:
        memory_id = memory.id or str(uuid.uuid4())
        with self._session() as session:
            row = session.get(MemoryDB, memory_id)
            if row is None:
                row = MemoryDB(id=memory_id)
                session.add(row)
            row.apply(memory)
            session.flush()

        logger.debug(f"Saved memory {memory_id}: '{memory.content[:50]}'")
        return memory_id

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        with self._session() as session:
            row = session.get(MemoryDB, memory_id)
            return row.to_memory() if row else None

    def get_active_memories_with_embeddings(self) -> List[Memory]:
        with self._session() as session:
            rows = (
                session.query(MemoryDB)
                .filter(MemoryDB.invalidated_by.is_(None), MemoryDB.embedding_json.isnot(None))
                .order_by(MemoryDB.created_at)
                .all()
            )
            return [row.to_memory() for row in rows]

    def count_memories(self, include_invalidated: bool = False) -> int:
        with self._session() as session:
            query = session.query(MemoryDB)
            if not include_invalidated:
                query = query.filter(MemoryDB.invalidated_by.is_(None))
            return query.count()

    def invalidate_memory(
        self, memory_id: str, superseded_by: str, at: Optional[datetime] = None
    ) -> bool:
        with self._session() as session:
            row = session.get(MemoryDB, memory_id)
            if row is None:
                return False
            row.valid_until = ensure_utc(at) or utcnow()
            row.invalidated_by = superseded_by
            session.flush()

        logger.debug(f"Invalidated memory {memory_id} (superseded by {superseded_by})")
        return True

    def restore_invalidated_memory(self, memory_id: str) -> bool:
        with self._session() as session:
            row = session.get(MemoryDB, memory_id)
            if row is None:
                return False
            row.valid_until = None
            row.invalidated_by = None
            session.flush()

        logger.debug(f"Restored memory {memory_id}")
        return True

    def delete_memory(self, memory_id: str) -> bool:
        with self._session() as session:
            row = session.get(MemoryDB, memory_id)
            if row is None:
                return False
            session.query(MemoryLinkDB).filter(
                or_(MemoryLinkDB.source_id == memory_id, MemoryLinkDB.target_id == memory_id)
            ).delete(synchronize_session=False)
            session.delete(row)
            session.flush()

        logger.debug(f"Deleted memory {memory_id}")
        return True

    def search(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SearchResult]:
        results = []
        for memory in self.get_active_memories_with_embeddings():
            similarity = cosine_similarity(query_embedding, memory.embedding)
            if similarity >= min_similarity:
                results.append(SearchResult(memory=memory, similarity=similarity))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    def record_access(
        self, memory_ids: Sequence[str], at: Optional[datetime] = None
    ) -> List[str]:
        at = ensure_utc(at) or utcnow()
        touched = []
        with self._session() as session:
            for memory_id in memory_ids:
                row = session.get(MemoryDB, memory_id)
                if row is None or row.invalidated_by is not None:
                    continue
                row.access_count = (row.access_count or 0) + 1
                row.last_accessed = at
                touched.append(memory_id)
        return touched

    # Links

    def create_memory_link(
        self,
        source_id: str,
        target_id: str,
        relation: LinkRelation = "related",
        weight: float = 1.0,
        llm_enriched: bool = False,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        transferred_from: Optional[str] = None,
    ) -> bool:
        if source_id == target_id:
            logger.debug(f"Skipping self-loop link on {source_id}")
            return False

        with self._session() as session:
            existing = (
                session.query(MemoryLinkDB)
                .filter(
                    MemoryLinkDB.source_id == source_id,
                    MemoryLinkDB.target_id == target_id,
                    MemoryLinkDB.relation == relation,
                )
                .first()
            )
            if existing is not None:
                return False

            session.add(
                MemoryLinkDB(
                    source_id=source_id,
                    target_id=target_id,
                    relation=relation,
                    weight=weight,
                    llm_enriched=llm_enriched,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    transferred_from=transferred_from,
                    created_at=utcnow(),
                )
            )
            session.flush()
            return True

    def delete_memory_link(
        self, source_id: str, target_id: str, relation: Optional[LinkRelation] = None
    ) -> bool:
        with self._session() as session:
            query = session.query(MemoryLinkDB).filter(
                MemoryLinkDB.source_id == source_id, MemoryLinkDB.target_id == target_id
            )
            if relation is not None:
                query = query.filter(MemoryLinkDB.relation == relation)
            deleted = query.delete(synchronize_session=False)
            return deleted > 0

    def get_memory_links(self, memory_id: str) -> MemoryLinks:
        with self._session() as session:
            outgoing = session.query(MemoryLinkDB).filter(MemoryLinkDB.source_id == memory_id).all()
            incoming = session.query(MemoryLinkDB).filter(MemoryLinkDB.target_id == memory_id).all()
            return MemoryLinks(
                outgoing=[link.to_memory_link() for link in outgoing],
                incoming=[link.to_memory_link() for link in incoming],
            )

    def get_links_by_relation(
        self, relation: LinkRelation, source_id: Optional[str] = None
    ) -> List[MemoryLink]:
        with self._session() as session:
            query = session.query(MemoryLinkDB).filter(MemoryLinkDB.relation == relation)
            if source_id is not None:
                query = query.filter(MemoryLinkDB.source_id == source_id)
            rows = query.order_by(MemoryLinkDB.created_at.desc(), MemoryLinkDB.id.desc()).all()
            return [row.to_memory_link() for row in rows]
