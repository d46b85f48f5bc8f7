"""
Consolidation engine.

Orchestrates one consolidation run over a corpus:

1. take the corpus run lock (overlapping runs are rejected or wait)
2. generate candidate pairs from the active memories
3. execute each pair as its own transaction, recording failures
4. stop early, between pairs, when the cancel event is set

Candidate generation and store writes run in worker threads so the event
loop stays responsive; merge text comes from the LLM synthesizer, awaited on
the loop, when one is configured. The run lock is renewed before each pair.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from memory_keeper.config import ConsolidationConfig
from memory_keeper.consolidation.candidates import find_consolidation_candidates
from memory_keeper.consolidation.executor import ConsolidationExecutor
from memory_keeper.consolidation.models import (
    ConsolidationCandidate,
    ConsolidationHistoryEntry,
    ConsolidationResult,
    ConsolidationStats,
    UndoResult,
)
from memory_keeper.consolidation.synthesizer import MergeSynthesizer
from memory_keeper.errors import LockError
from memory_keeper.locks import InProcessRunLock, RunLock, consolidation_lock_name
from memory_keeper.storage.protocols import MemoryStore, SimilarityIndex

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

STATS_MAX_CANDIDATES = 1000


class ConsolidationEngine:
    """
    Runs consolidation for one corpus.

    Example:
        >>> engine = ConsolidationEngine(store, config, synthesizer=MergeSynthesizer(llm, "qwen2.5"))
        >>> result = await engine.run()
        >>> result.is_reconciled
        True
    """

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[ConsolidationConfig] = None,
        lock: Optional[RunLock] = None,
        synthesizer: Optional[MergeSynthesizer] = None,
        similarity_index: Optional[SimilarityIndex] = None,
        corpus_id: str = "default",
    ):
        """
        Args:
            store: Memory storage backend
            config: Consolidation config (thresholds, guards, limits)
            lock: Run lock shared by everything that may consolidate this corpus
            synthesizer: LLM merge synthesizer (None disables LLM merges)
            similarity_index: Nearest-neighbour pre-filter for large corpora
            corpus_id: Corpus/project identity used in the lock name
        """
        self.store = store
        self.config = config or ConsolidationConfig()
        self.lock = lock or InProcessRunLock(consolidation_lock_name(corpus_id))
        self.synthesizer = synthesizer
        self.similarity_index = similarity_index
        self.corpus_id = corpus_id
        self.executor = ConsolidationExecutor(store, self.config.merged_source)

        logger.info(
            f"ConsolidationEngine initialized: corpus={corpus_id}, "
            f"lock={type(self.lock).__name__}, "
            f"llm_merge={'on' if synthesizer else 'off'}, "
            f"prefilter={'index' if similarity_index else 'matrix'}"
        )

    async def _acquire(self, wait: bool, timeout: Optional[float]) -> None:
        acquired = await asyncio.to_thread(self.lock.acquire, wait, timeout)
        if not acquired:
            raise LockError(
                f"Consolidation already running for corpus {self.corpus_id}",
                context={"lock": self.lock.name},
            )

    def find_candidates(
        self,
        threshold: Optional[float] = None,
        max_candidates: Optional[int] = None,
        created_before: Optional[datetime] = None,
    ) -> List[ConsolidationCandidate]:
        """Candidate pairs for the current corpus, without executing anything."""
        thresholds = self.config.thresholds
        if threshold is not None:
            thresholds = thresholds.model_copy(update={"min_similarity": threshold})

        memories = self.store.get_active_memories_with_embeddings()

        index = self.similarity_index
        prefilter_above = self.config.store_prefilter_above
        if index is None and prefilter_above is not None and len(memories) > prefilter_above:
            logger.debug(
                f"{len(memories)} active memories > {prefilter_above}, pre-filtering via store search"
            )
            index = self.store

        return find_consolidation_candidates(
            memories,
            thresholds=thresholds,
            max_candidates=max_candidates or self.config.max_candidates,
            block_size=self.config.block_size,
            similarity_index=index,
            prefilter_limit=self.config.prefilter_limit,
            created_before=created_before,
        )

    async def run(
        self,
        dry_run: bool = False,
        threshold: Optional[float] = None,
        max_candidates: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
        wait_for_lock: bool = False,
        lock_timeout: Optional[float] = None,
        created_before: Optional[datetime] = None,
    ) -> ConsolidationResult:
        """
        Run consolidation once.

        Args:
            dry_run: Count what would happen without writing anything
            threshold: Override for the candidate similarity floor
            max_candidates: Override for the number of pairs processed
            cancel_event: Checked before each pair; set it to stop after the current pair
            on_progress: Called with (current, total, action) before each pair
            wait_for_lock: Wait for a running consolidation instead of failing
            lock_timeout: Maximum seconds to wait for the lock
            created_before: Only consider memories created at or before this time

        Returns:
            ConsolidationResult whose totals always reconcile

        Raises:
            LockError: If another run holds the corpus lock, or the lock is
                lost (e.g. its TTL expired) before all pairs were processed
        """
        await self._acquire(wait_for_lock, lock_timeout)
        try:
            candidates = await asyncio.to_thread(
                self.find_candidates, threshold, max_candidates, created_before
            )
            result = ConsolidationResult(candidates_found=len(candidates), dry_run=dry_run)
            total = len(candidates)

            for index, candidate in enumerate(candidates):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    result.candidates_found = index
                    result.remaining = total - index
                    logger.info(
                        f"Consolidation cancelled after {index}/{total} pairs "
                        f"({result.remaining} left)"
                    )
                    break

                if not await asyncio.to_thread(self.lock.renew):
                    logger.error(
                        f"Lost consolidation lock {self.lock.name} after {index}/{total} pairs"
                    )
                    raise LockError(
                        f"Consolidation lock for corpus {self.corpus_id} was lost mid-run",
                        context={
                            "lock": self.lock.name,
                            "processed": index,
                            "remaining": total - index,
                            "merged": result.merged,
                            "deleted": result.deleted,
                            "kept": result.kept,
                        },
                    )

                if on_progress is not None:
                    on_progress(index + 1, total, candidate.action)

                if dry_run:
                    self._count(candidate.action, result)
                else:
                    await self._process(candidate, result)

            logger.info(
                f"Consolidation {'dry run ' if dry_run else ''}complete for {self.corpus_id}: "
                f"candidates={result.candidates_found}, merged={result.merged}, "
                f"deleted={result.deleted}, kept={result.kept}, errors={len(result.errors)}"
            )
            return result
        finally:
            self.lock.release()

    @staticmethod
    def _count(action: str, result: ConsolidationResult) -> None:
        if action == "merge":
            result.merged += 1
        elif action == "delete_duplicate":
            result.deleted += 1
        else:
            result.kept += 1

    async def _merge_content(self, candidate: ConsolidationCandidate) -> Tuple[bool, Optional[str]]:
        """
        Content for a merge.

        Returns:
            (proceed, content); content None means the deterministic combination
        """
        older, newer = sorted((candidate.memory1, candidate.memory2), key=lambda m: m.created_at)
        require_llm = self.config.guards.require_llm_merge

        if self.synthesizer is None:
            if require_llm:
                logger.info(
                    f"Keeping {candidate.pair_key}: merge requires an LLM and none is configured"
                )
                return False, None
            return True, None

        try:
            return True, await self.synthesizer.synthesize(older.content, newer.content)
        except Exception as e:
            if require_llm:
                raise
            logger.warning(f"LLM merge failed for {candidate.pair_key}, combining text instead: {e}")
            return True, None

    async def _process(self, candidate: ConsolidationCandidate, result: ConsolidationResult) -> None:
        m1, m2 = candidate.memory1, candidate.memory2
        logger.debug(
            f"[{candidate.action}] {m1.id} <-> {m2.id} "
            f"(similarity {candidate.similarity:.3f}): {candidate.reason}"
        )

        try:
            if candidate.action == "delete_duplicate":
                keep, drop = (m1, m2) if candidate.keep_id == m1.id else (m2, m1)
                await asyncio.to_thread(self.executor.delete_duplicate, keep, drop)
                result.deleted += 1

            elif candidate.action == "merge":
                proceed, content = await self._merge_content(candidate)
                if not proceed:
                    result.kept += 1
                    return
                await asyncio.to_thread(self.executor.merge, m1, m2, content)
                result.merged += 1

            else:
                if self.config.link_kept_pairs:
                    await asyncio.to_thread(
                        self.store.create_memory_link,
                        m1.id,
                        m2.id,
                        relation="similar_to",
                        weight=min(1.0, candidate.similarity),
                    )
                result.kept += 1

        except Exception as e:
            logger.error(
                f"Consolidation failed for {candidate.pair_key} ({candidate.action}): {e}",
                exc_info=True,
            )
            result.errors.append(f"{candidate.pair_key} {candidate.action}: {e}")

    def get_stats(self, threshold: Optional[float] = None) -> ConsolidationStats:
        candidates = self.find_candidates(
            threshold, max_candidates=max(self.config.max_candidates, STATS_MAX_CANDIDATES)
        )
        return ConsolidationStats(
            total_memories=len(self.store.get_active_memories_with_embeddings()),
            duplicate_pairs=sum(1 for c in candidates if c.action == "delete_duplicate"),
            merge_candidates=sum(1 for c in candidates if c.action == "merge"),
            keep_pairs=sum(1 for c in candidates if c.action == "keep_both"),
        )

    async def undo(
        self, merged_id: str, wait_for_lock: bool = False, lock_timeout: Optional[float] = None
    ) -> UndoResult:
        """Undo one consolidation while holding the corpus lock."""
        await self._acquire(wait_for_lock, lock_timeout)
        try:
            return await asyncio.to_thread(self.executor.undo_consolidation, merged_id)
        finally:
            self.lock.release()

    def get_history(self, limit: int = 20) -> List[ConsolidationHistoryEntry]:
        return self.executor.get_consolidation_history(limit)
