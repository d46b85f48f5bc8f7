"""
Consolidation executor.

Applies consolidation actions through the storage protocol. Every action is
a single ``store.transaction`` so a failure leaves the corpus exactly as it
was. Originals are only ever tombstoned; the one physical delete is undoing
a synthetic merge product.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

import numpy as np

from memory_keeper.config import MERGED_MEMORY_SOURCE
from memory_keeper.consolidation.models import ConsolidationHistoryEntry, UndoResult
from memory_keeper.consolidation.synthesizer import combine_contents
from memory_keeper.errors import NotFoundError, ValidationError
from memory_keeper.models import Memory, QualityFactors, utcnow
from memory_keeper.storage.protocols import MemoryStore

logger = logging.getLogger(__name__)


def average_quality(q1: Optional[float], q2: Optional[float]) -> Optional[float]:
    """Average of the known quality scores; None if neither is known."""
    known = [q for q in (q1, q2) if q is not None]
    if not known:
        return None
    return sum(known) / len(known)


def _average_factors(
    f1: Optional[QualityFactors], f2: Optional[QualityFactors]
) -> Optional[QualityFactors]:
    known = [f for f in (f1, f2) if f is not None]
    if not known:
        return None
    if len(known) == 1:
        return known[0].model_copy()
    return QualityFactors(
        specificity=(f1.specificity + f2.specificity) / 2,
        clarity=(f1.clarity + f2.clarity) / 2,
        relevance=(f1.relevance + f2.relevance) / 2,
        uniqueness=(f1.uniqueness + f2.uniqueness) / 2,
    )


def mean_embedding(e1: Optional[Sequence[float]], e2: Optional[Sequence[float]]) -> Optional[List[float]]:
    """Normalised mean of two embeddings (the non-empty one if only one is usable)."""
    if not e1 or not e2 or len(e1) != len(e2):
        chosen = e1 or e2
        return list(chosen) if chosen else None

    mean = (np.asarray(e1, dtype=np.float64) + np.asarray(e2, dtype=np.float64)) / 2
    norm = np.linalg.norm(mean)
    if norm > 0:
        mean = mean / norm
    return mean.tolist()


def _union(first: Iterable[str], second: Iterable[str]) -> List[str]:
    return list(OrderedDict.fromkeys([*first, *second]))


class ConsolidationExecutor:
    """
    Executes delete_duplicate / merge actions and their undo.

    Examples:
        >>> executor = ConsolidationExecutor(store)
        >>> merged = executor.merge(m1, m2, content="...")
        >>> executor.undo_consolidation(merged.id).restored
        ['m1', 'm2']
    """

    def __init__(self, store: MemoryStore, merged_source: str = MERGED_MEMORY_SOURCE):
        """
        Args:
            store: Memory storage backend
            merged_source: Source marker identifying synthetic merge products
        """
        self.store = store
        self.merged_source = merged_source

        logger.info(f"ConsolidationExecutor initialized (merged_source={merged_source})")

    def _require_active(self, memory_id: Optional[str]) -> Memory:
        memory = self.store.get_memory(memory_id) if memory_id else None
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found", context={"memory_id": memory_id})
        if memory.is_tombstone:
            raise ValidationError(
                f"Memory {memory_id} is already superseded by {memory.invalidated_by}",
                context={"memory_id": memory_id, "invalidated_by": memory.invalidated_by},
            )
        return memory

    def _transfer_links(self, from_id: str, to_id: str, aliases: Iterable[str] = ()) -> int:
        """
        Copy ``from_id``'s links onto ``to_id``.

        The retired memory keeps its own links so an undo restores it intact.
        Links that would end on ``to_id`` or on another memory being retired in
        the same action are dropped, as are ``supersedes`` links, which belong
        to the retired memory's own history.
        """
        skip = {to_id, from_id, *aliases}
        links = self.store.get_memory_links(from_id)
        created = 0

        for link in links.outgoing:
            if link.relation == "supersedes" or link.target_id in skip:
                continue
            created += self.store.create_memory_link(
                to_id,
                link.target_id,
                relation=link.relation,
                weight=link.weight,
                llm_enriched=link.llm_enriched,
                valid_from=link.valid_from,
                valid_until=link.valid_until,
                transferred_from=from_id,
            )

        for link in links.incoming:
            if link.relation == "supersedes" or link.source_id in skip:
                continue
            created += self.store.create_memory_link(
                link.source_id,
                to_id,
                relation=link.relation,
                weight=link.weight,
                llm_enriched=link.llm_enriched,
                valid_from=link.valid_from,
                valid_until=link.valid_until,
                transferred_from=from_id,
            )

        return created

    def _remove_transferred_links(self, memory_id: str, origins: Iterable[str]) -> int:
        """Delete links on ``memory_id`` that were copied from any of ``origins``."""
        origins = set(origins)
        links = self.store.get_memory_links(memory_id)
        removed = 0
        for link in [*links.outgoing, *links.incoming]:
            if link.transferred_from in origins:
                removed += self.store.delete_memory_link(
                    link.source_id, link.target_id, relation=link.relation
                )
        return removed

    def delete_duplicate(self, keep: Memory, drop: Memory, at: Optional[datetime] = None) -> None:
        """
        Tombstone ``drop`` in favour of ``keep``.

        One transaction: copy links, add ``keep --supersedes--> drop``, then
        invalidate ``drop``.
        """
        at = at or utcnow()

        def _apply() -> None:
            survivor = self._require_active(keep.id)
            retired = self._require_active(drop.id)
            if survivor.id == retired.id:
                raise ValidationError("Cannot deduplicate a memory against itself")

            transferred = self._transfer_links(retired.id, survivor.id)
            self.store.create_memory_link(survivor.id, retired.id, relation="supersedes")
            self.store.invalidate_memory(retired.id, survivor.id, at)
            logger.debug(
                f"Deduplicated {retired.id} into {survivor.id} ({transferred} links transferred)"
            )

        self.store.transaction(_apply)
        logger.info(f"Memory {drop.id} superseded by duplicate {keep.id}")

    def build_merged_memory(
        self, m1: Memory, m2: Memory, content: Optional[str] = None, at: Optional[datetime] = None
    ) -> Memory:
        """Synthetic memory combining two originals (not saved)."""
        return Memory(
            content=content if content else combine_contents(m1.content, m2.content),
            tags=_union(m1.tags, m2.tags),
            source=self.merged_source,
            type=m1.type if m1.type == m2.type else None,
            embedding=mean_embedding(m1.embedding, m2.embedding),
            quality_score=average_quality(m1.quality_score, m2.quality_score),
            quality_factors=_average_factors(m1.quality_factors, m2.quality_factors),
            access_count=max(m1.access_count, m2.access_count),
            created_at=at or utcnow(),
        )

    def merge(
        self,
        m1: Memory,
        m2: Memory,
        content: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Memory:
        """
        Replace two memories with one synthetic memory.

        One transaction: save the merged memory, copy links from both
        originals, add ``merged --supersedes--> m1`` and ``--> m2``, and
        invalidate both originals.

        Args:
            m1, m2: Memories to merge
            content: Merged text (LLM output); defaults to a deterministic combination
            at: Timestamp for the merge

        Returns:
            The saved merged memory
        """
        at = at or utcnow()

        def _apply() -> Memory:
            first = self._require_active(m1.id)
            second = self._require_active(m2.id)
            if first.id == second.id:
                raise ValidationError("Cannot merge a memory with itself")

            merged = self.build_merged_memory(first, second, content, at)
            merged.id = self.store.save_memory(merged)

            aliases = (first.id, second.id)
            self._transfer_links(first.id, merged.id, aliases)
            self._transfer_links(second.id, merged.id, aliases)

            self.store.create_memory_link(merged.id, first.id, relation="supersedes")
            self.store.create_memory_link(merged.id, second.id, relation="supersedes")
            self.store.invalidate_memory(first.id, merged.id, at)
            self.store.invalidate_memory(second.id, merged.id, at)
            return merged

        merged = self.store.transaction(_apply)
        logger.info(f"Merged {m1.id} + {m2.id} into {merged.id}")
        return merged

    def undo_consolidation(self, merged_id: str) -> UndoResult:
        """
        Reverse a merge or deduplication.

        Restores every memory that ``merged_id`` supersedes (only if it is
        still invalidated by ``merged_id``), removes the supersedes edges and
        the links copied onto ``merged_id`` from the restored memories, and
        deletes ``merged_id`` itself if it is a synthetic merge product. With
        no supersedes edges this is a no-op.
        """
        result = UndoResult(merged_id=merged_id)
        if not self.store.get_links_by_relation("supersedes", source_id=merged_id):
            logger.info(f"Nothing to undo for {merged_id}: no supersedes links")
            return result

        def _apply() -> None:
            for edge in self.store.get_links_by_relation("supersedes", source_id=merged_id):
                target = self.store.get_memory(edge.target_id)
                if target is None:
                    result.errors.append(f"Superseded memory {edge.target_id} no longer exists")
                elif target.invalidated_by == merged_id:
                    self.store.restore_invalidated_memory(target.id)
                    result.restored.append(target.id)
                else:
                    result.errors.append(
                        f"Memory {target.id} is not superseded by {merged_id} "
                        f"(invalidated_by={target.invalidated_by})"
                    )
                self.store.delete_memory_link(merged_id, edge.target_id, relation="supersedes")

            result.removed_links = self._remove_transferred_links(merged_id, result.restored)

            merged = self.store.get_memory(merged_id)
            if merged is not None and merged.source == self.merged_source and not merged.is_tombstone:
                self.store.delete_memory(merged_id)
                result.deleted_merge = True

        self.store.transaction(_apply)
        logger.info(
            f"Undid consolidation {merged_id}: restored={result.restored}, "
            f"removed_links={result.removed_links}, deleted_merge={result.deleted_merge}"
        )
        return result

    def get_consolidation_history(self, limit: int = 20) -> List[ConsolidationHistoryEntry]:
        """Recent consolidations, newest first, grouped by superseding memory."""
        edges = sorted(
            self.store.get_links_by_relation("supersedes"),
            key=lambda link: link.created_at,
            reverse=True,
        )

        grouped: "OrderedDict[str, list]" = OrderedDict()
        for edge in edges:
            grouped.setdefault(edge.source_id, []).append(edge)

        history = []
        for source_id, group in list(grouped.items())[:limit]:
            memory = self.store.get_memory(source_id)
            original_ids = [edge.target_id for edge in group]
            links = self.store.get_memory_links(source_id)
            history.append(
                ConsolidationHistoryEntry(
                    merged_memory_id=source_id,
                    merged_content=memory.content if memory else None,
                    original_ids=original_ids,
                    merged_at=max(edge.created_at for edge in group),
                    synthetic=bool(memory and memory.source == self.merged_source),
                    transferred_link_ids=sorted(
                        link.id
                        for link in [*links.outgoing, *links.incoming]
                        if link.transferred_from in original_ids and link.id is not None
                    ),
                )
            )
        return history
