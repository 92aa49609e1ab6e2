"""Bulk enrichment control loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from viralyze.config import RunConfig
from viralyze.errors import (
    CostCeilingExceededError,
    FatalRunError,
    HealthCheckFailedError,
    PermanentFailureError,
    RetriesExhaustedError,
    RunAbortedError,
)
from viralyze.models.analysis import AnalysisResult
from viralyze.models.progress import (
    ErrorKind,
    ItemError,
    ItemOutcome,
    ProgressCheckpoint,
    RunReport,
    RunState,
)
from viralyze.models.work_item import WorkItem
from viralyze.services.checkpoint import ProgressTracker
from viralyze.services.health import HealthGate
from viralyze.services.interfaces import IResultStore, IWorkSource
from viralyze.services.prompt import build_analysis_prompt, estimate_tokens
from viralyze.services.rate_budget import RateBudget
from viralyze.services.retry import InferenceRequest, RetryEngine
from viralyze.services.source_resolver import SourceResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressCheckpoint], None]


class Orchestrator:
    """Drives a backlog through resolve → gate → invoke → persist → advance.

    Items are fetched in pages of ``batch_size`` after the checkpoint cursor,
    skipping anything that already has a stored analysis. Pages run
    concurrently but their outcomes are applied in fetch order, so the
    cursor never moves past an item that has not been accounted for.

    Only fatal conditions escape ``run``: an unhealthy endpoint at start-up
    (``HealthCheckFailedError``) and the cost ceiling (``RunAbortedError``
    carrying the partial report). Everything else becomes an item outcome.
    Progress is flushed however the loop ends.
    """

    def __init__(
        self,
        work_source: IWorkSource,
        resolver: SourceResolver,
        retry_engine: RetryEngine,
        budget: RateBudget,
        store: IResultStore,
        health_gate: HealthGate | None = None,
        config: RunConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        stop_event: asyncio.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.work_source = work_source
        self.resolver = resolver
        self.retry_engine = retry_engine
        self.budget = budget
        self.store = store
        self.health_gate = health_gate
        self.config = config or RunConfig()
        self._sleep = sleep or asyncio.sleep
        self._stop_event = stop_event or asyncio.Event()
        self._on_progress = on_progress

        self._state = RunState.IDLE
        self._tracker: ProgressTracker | None = None
        self._excluded: set[str] = set()
        self._errors: list[ItemError] = []

    @property
    def state(self) -> RunState:
        return self._state

    def request_stop(self) -> None:
        """Finish in-flight work, flush and return early."""
        logger.info("Stop requested, finishing current batch")
        self._stop_event.set()

    def _set_state(self, state: RunState) -> None:
        if state != self._state:
            logger.debug("State %s -> %s", self._state.value, state.value)
            self._state = state

    async def run(self) -> RunReport:
        """Process up to ``target_item_count`` items.

        Raises:
            HealthCheckFailedError: Inference endpoint unreachable; nothing consumed
            RunAbortedError: Cost ceiling reached; ``report`` holds the partial run
            Exception: A collaborator failed outside item processing (e.g. the
                work source); re-raised after progress is flushed
        """
        started_at = datetime.now(timezone.utc)
        config = self.config
        self._errors = []

        if self.health_gate is not None:
            self._set_state(RunState.HEALTH_CHECKING)
            status = await self.health_gate.check()
            if not status.healthy:
                self._set_state(RunState.ABORTED)
                raise HealthCheckFailedError(status.reason or "Health check failed")

        tracker = await ProgressTracker.resume_from(
            self.store,
            self.budget,
            target_count=config.target_item_count,
            checkpoint_every=config.checkpoint_every,
        )
        self._tracker = tracker
        self._excluded = set(await self.work_source.list_already_analyzed_ids())
        self._excluded.update(tracker.unpersisted_ids)
        logger.info(
            "Starting run: target %d items, %d already analyzed",
            config.target_item_count,
            len(self._excluded),
        )

        baseline = tracker.snapshot().processed_count
        processed = 0
        stopped_early = False
        try:
            while processed < config.target_item_count:
                if self._stop_event.is_set():
                    stopped_early = True
                    break

                self._set_state(RunState.FETCHING)
                limit = min(config.batch_size, config.target_item_count - processed)
                items = await self.work_source.fetch_backlog(
                    tracker.last_processed_id, limit, self._excluded
                )
                if not items:
                    logger.info("Backlog drained")
                    break

                await self._run_batch(items)
                processed = tracker.snapshot().processed_count - baseline

                if processed < config.target_item_count and config.inter_item_delay_seconds > 0:
                    await self._sleep(config.inter_item_delay_seconds)

        except CostCeilingExceededError as e:
            reason = str(e)
            logger.error("Aborting run: %s", reason)
            await self._final_flush(tracker)
            processed = tracker.snapshot().processed_count - baseline
            self._set_state(RunState.ABORTED)
            report = self._build_report(
                RunState.ABORTED, processed, started_at, abort_reason=reason
            )
            raise RunAbortedError(reason, report) from e
        except Exception:
            logger.exception("Run failed, saving progress")
            await self._final_flush(tracker)
            self._set_state(RunState.ABORTED)
            raise

        self._set_state(RunState.DRAINING)
        await self._final_flush(tracker)
        self._set_state(RunState.DONE)
        report = self._build_report(
            RunState.DONE, processed, started_at, stopped_early=stopped_early
        )
        cp = report.checkpoint
        logger.info(
            "Run complete: %d processed this run (%d ok, %d errors, %d skipped total), "
            "$%.4f estimated",
            processed,
            cp.success_count,
            cp.error_count,
            cp.skipped_count,
            cp.estimated_cost,
        )
        return report

    async def _run_batch(self, items: list[WorkItem]) -> int:
        """Process one page and advance in fetch order.

        Returns:
            Number of items advanced.

        Raises:
            FatalRunError: After advancing the items that finished before it
        """
        results = await asyncio.gather(
            *(self._process_item(item) for item in items), return_exceptions=True
        )

        self._set_state(RunState.CHECKPOINT_ADVANCING)
        advanced = 0
        for result in results:
            if isinstance(result, BaseException):
                # The cursor stops here; later items in the page are fetched again
                # next run unless their result was already stored.
                raise result
            outcome, error = result
            if error is not None:
                await self._record_error(error)
            snapshot = self._tracker.advance(outcome)
            advanced += 1
            if self._on_progress is not None:
                self._on_progress(snapshot)
        await self._tracker.maybe_flush()
        return advanced

    async def _final_flush(self, tracker: ProgressTracker) -> None:
        """Flush, then report results that still could not be stored."""
        await tracker.flush()
        failed = tracker.fail_pending()
        if not failed:
            return
        for result in failed:
            await self._record_error(
                ItemError(
                    external_id=result.external_id,
                    kind=ErrorKind.PERSIST_FAILED,
                    message="Result could not be stored; kept in the checkpoint for the next run",
                )
            )
        await tracker.save_checkpoint()

    async def _process_item(self, item: WorkItem) -> tuple[ItemOutcome, ItemError | None]:
        try:
            return await self._analyze_item(item)
        except FatalRunError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure on %s", item.external_id)
            return self._failure(item, ErrorKind.PERMANENT, f"{type(e).__name__}: {e}", 0)

    async def _analyze_item(self, item: WorkItem) -> tuple[ItemOutcome, ItemError | None]:
        config = self.config

        self._set_state(RunState.RESOLVING)
        composite = await self.resolver.resolve(item)
        if not composite.is_viable:
            logger.info("Skipping %s: no usable content source", item.external_id)
            return ItemOutcome.skipped(item.external_id, "No usable content source"), None

        prompt = build_analysis_prompt(item, composite, config.max_input_chars)
        input_tokens, output_tokens = estimate_tokens(prompt, config.max_output_tokens)
        request = InferenceRequest(
            prompt=prompt,
            model_id=config.model_id,
            max_output_tokens=config.max_output_tokens,
            estimated_tokens=input_tokens + output_tokens,
            estimated_cost=self.budget.estimate_cost(input_tokens, output_tokens),
            source_text=composite.render(),
        )

        self._set_state(RunState.RATE_GATING)
        await self.budget.reserve(request.estimated_tokens, request.estimated_cost)

        self._set_state(RunState.INVOKING)
        try:
            invocation = await self.retry_engine.invoke(request, on_phase=self._set_state)
        except RetriesExhaustedError as e:
            return self._failure(item, ErrorKind.RETRIES_EXHAUSTED, str(e), e.attempts)
        except PermanentFailureError as e:
            kind = (
                ErrorKind.INVALID_PAYLOAD if e.kind == "invalid_payload" else ErrorKind.PERMANENT
            )
            return self._failure(item, kind, str(e), 0)

        self._set_state(RunState.PERSISTING)
        result = AnalysisResult(
            work_item_id=item.id,
            external_id=item.external_id,
            primary_source=composite.primary_source,
            payload=invocation.payload,
            raw_input=request.source_text,
            raw_response=invocation.raw_response,
            model_id=request.model_id,
            synthesized=invocation.synthesized,
        )
        try:
            await self.store.insert(result)
        except Exception:
            logger.exception("Failed to store result for %s, queued for next flush", item.external_id)
            self._tracker.queue_result(result)
        self._excluded.add(item.external_id)

        logger.info(
            "Analyzed %s via %s (%s, %d attempt(s))",
            item.external_id,
            composite.primary_source.value,
            invocation.payload.classification,
            invocation.attempts,
        )
        return ItemOutcome.success(item.external_id, composite.primary_source, invocation.attempts), None

    def _failure(
        self, item: WorkItem, kind: ErrorKind, message: str, attempts: int
    ) -> tuple[ItemOutcome, ItemError]:
        logger.warning("Item %s failed (%s): %s", item.external_id, kind.value, message)
        outcome = ItemOutcome.error(item.external_id, kind, message, attempts)
        error = ItemError(
            external_id=item.external_id, kind=kind, message=message, attempts=attempts
        )
        return outcome, error

    async def _record_error(self, error: ItemError) -> None:
        self._errors.append(error)
        try:
            await self.store.insert_error(error)
        except Exception:
            logger.exception("Failed to write error log entry for %s", error.external_id)

    def _build_report(
        self,
        state: RunState,
        processed: int,
        started_at: datetime,
        abort_reason: str | None = None,
        stopped_early: bool = False,
    ) -> RunReport:
        return RunReport(
            state=state,
            checkpoint=self._tracker.snapshot(),
            processed_this_run=processed,
            errors=list(self._errors),
            abort_reason=abort_reason,
            stopped_early=stopped_early,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )

