"""Durable run progress tracking."""

from __future__ import annotations

import logging

from viralyze.models.analysis import AnalysisResult, SourceTag
from viralyze.models.progress import ItemOutcome, OutcomeStatus, ProgressCheckpoint
from viralyze.services.interfaces import IResultStore
from viralyze.services.rate_budget import RateBudget

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Owns the run's ProgressCheckpoint.

    ``advance`` is the only place items are counted; later corrections only
    move an item between success and error, so the
    ``processed == success + error + skipped`` invariant holds at every
    flush. Results that never reach the store by the end of a run are
    counted as errors and carried in the checkpoint until a later flush
    stores them. Cost and pause figures are the resumed baseline plus
    whatever the shared RateBudget has booked in this process.
    """

    def __init__(
        self,
        store: IResultStore,
        budget: RateBudget,
        checkpoint: ProgressCheckpoint | None = None,
        checkpoint_every: int = 10,
    ) -> None:
        self.store = store
        self.budget = budget
        self.checkpoint_every = checkpoint_every
        checkpoint = checkpoint or ProgressCheckpoint()
        self._unpersisted: list[AnalysisResult] = list(checkpoint.unpersisted_results)
        self._checkpoint = checkpoint.model_copy(update={"unpersisted_results": []}, deep=True)
        self._base_cost = self._checkpoint.estimated_cost
        self._base_pauses = self._checkpoint.rate_limit_pauses
        self._pending_results: list[AnalysisResult] = []
        self._since_flush = 0

    @classmethod
    async def resume_from(
        cls,
        store: IResultStore,
        budget: RateBudget,
        target_count: int = 0,
        checkpoint_every: int = 10,
    ) -> ProgressTracker:
        """Continue from the store's latest checkpoint, or start fresh."""
        checkpoint = await store.load_latest_checkpoint()
        if checkpoint is None:
            logger.info("No previous checkpoint, starting fresh")
            checkpoint = ProgressCheckpoint(target_count=target_count)
        else:
            logger.info(
                "Resuming run %s after %s (%d processed, $%.4f spent)",
                checkpoint.run_id,
                checkpoint.last_processed_id,
                checkpoint.processed_count,
                checkpoint.estimated_cost,
            )
            checkpoint = checkpoint.model_copy(
                update={"target_count": checkpoint.processed_count + target_count}
            )
        return cls(store, budget, checkpoint=checkpoint, checkpoint_every=checkpoint_every)

    @property
    def last_processed_id(self) -> str | None:
        return self._checkpoint.last_processed_id

    @property
    def pending_results(self) -> int:
        return len(self._pending_results)

    @property
    def unpersisted_ids(self) -> list[str]:
        return [r.external_id for r in self._unpersisted]

    def advance(self, outcome: ItemOutcome) -> ProgressCheckpoint:
        """Record one finished item."""
        cp = self._checkpoint
        if outcome.status is OutcomeStatus.SUCCESS:
            cp.success_count += 1
            self._count_source(outcome.primary_source, 1)
        elif outcome.status is OutcomeStatus.ERROR:
            cp.error_count += 1
        else:
            cp.skipped_count += 1

        cp.processed_count += 1
        cp.last_processed_id = outcome.external_id
        cp.estimated_cost = round(self._base_cost + self.budget.cumulative_cost, 6)
        cp.rate_limit_pauses = self._base_pauses + self.budget.pause_count
        self._since_flush += 1
        return self.snapshot()

    def snapshot(self) -> ProgressCheckpoint:
        return self._checkpoint.model_copy(
            update={"unpersisted_results": list(self._unpersisted)}, deep=True
        )

    def _count_source(self, source: SourceTag | None, delta: int) -> None:
        if source is None:
            return
        breakdown = self._checkpoint.source_breakdown
        count = breakdown.get(source.value, 0) + delta
        if count > 0:
            breakdown[source.value] = count
        else:
            breakdown.pop(source.value, None)

    def queue_result(self, result: AnalysisResult) -> None:
        """Park a result whose insert failed; it is retried on the next flush."""
        self._pending_results.append(result)

    def fail_pending(self) -> list[AnalysisResult]:
        """Recount still-queued results as persist failures.

        Each moves from success to error and stays in the checkpoint, so a
        later flush (possibly in another run) can still store it.
        """
        failed, self._pending_results = self._pending_results, []
        cp = self._checkpoint
        for result in failed:
            cp.success_count -= 1
            cp.error_count += 1
            self._count_source(result.primary_source, -1)
        self._unpersisted.extend(failed)
        return failed

    async def maybe_flush(self) -> bool:
        if self._since_flush < self.checkpoint_every:
            return False
        return await self.flush()

    async def flush(self) -> bool:
        """Write queued results, then the checkpoint.

        Returns:
            True when the checkpoint was persisted. Failures are logged and
            retried on the next flush.
        """
        self._pending_results = await self._retry_inserts(self._pending_results)

        carried = self._unpersisted
        self._unpersisted = await self._retry_inserts(carried)
        for result in carried:
            if result in self._unpersisted:
                continue
            # Counted as a persist failure earlier; it is a success after all.
            self._checkpoint.error_count -= 1
            self._checkpoint.success_count += 1
            self._count_source(result.primary_source, 1)
            logger.info("Stored carried-over result for %s", result.external_id)

        return await self.save_checkpoint()

    async def _retry_inserts(self, results: list[AnalysisResult]) -> list[AnalysisResult]:
        """Insert each result; returns the ones that still failed."""
        failed: list[AnalysisResult] = []
        for result in results:
            try:
                await self.store.insert(result)
            except Exception:
                logger.exception("Retrying insert for %s failed", result.external_id)
                failed.append(result)
        return failed

    async def save_checkpoint(self) -> bool:
        """Write the checkpoint only."""
        snapshot = self.snapshot()
        try:
            await self.store.insert_checkpoint(snapshot)
        except Exception:
            logger.exception("Failed to save checkpoint")
            return False

        self._since_flush = 0
        logger.info(
            "Checkpoint saved: %d processed (%d ok, %d errors, %d skipped), $%.4f",
            snapshot.processed_count,
            snapshot.success_count,
            snapshot.error_count,
            snapshot.skipped_count,
            snapshot.estimated_cost,
        )
        return True
