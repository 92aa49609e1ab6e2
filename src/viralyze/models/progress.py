"""Run progress models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from viralyze.models.analysis import AnalysisResult, SourceTag


class OutcomeStatus(str, Enum):
    """How a single item ended."""

    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ErrorKind(str, Enum):
    """Why an item did not produce a result."""

    NOT_VIABLE = "not_viable"
    RETRIES_EXHAUSTED = "retries_exhausted"
    PERMANENT = "permanent"
    INVALID_PAYLOAD = "invalid_payload"
    PERSIST_FAILED = "persist_failed"


class RunState(str, Enum):
    """Orchestrator control-loop states."""

    IDLE = "idle"
    HEALTH_CHECKING = "health_checking"
    FETCHING = "fetching"
    RESOLVING = "resolving"
    RATE_GATING = "rate_gating"
    INVOKING = "invoking"
    PARSING = "parsing"
    PERSISTING = "persisting"
    CHECKPOINT_ADVANCING = "checkpoint_advancing"
    DRAINING = "draining"
    DONE = "done"
    ABORTED = "aborted"


class ItemOutcome(BaseModel):
    """Result of processing one work item."""

    external_id: str
    status: OutcomeStatus
    primary_source: SourceTag | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    attempts: int = 0

    @classmethod
    def success(cls, external_id: str, primary_source: SourceTag, attempts: int = 1) -> ItemOutcome:
        return cls(
            external_id=external_id,
            status=OutcomeStatus.SUCCESS,
            primary_source=primary_source,
            attempts=attempts,
        )

    @classmethod
    def error(
        cls, external_id: str, kind: ErrorKind, message: str, attempts: int = 0
    ) -> ItemOutcome:
        return cls(
            external_id=external_id,
            status=OutcomeStatus.ERROR,
            error_kind=kind,
            message=message,
            attempts=attempts,
        )

    @classmethod
    def skipped(cls, external_id: str, message: str | None = None) -> ItemOutcome:
        return cls(
            external_id=external_id,
            status=OutcomeStatus.SKIPPED,
            error_kind=ErrorKind.NOT_VIABLE,
            message=message,
        )


class ItemError(BaseModel):
    """Per-item failure reported at run end and written to the error log."""

    external_id: str
    kind: ErrorKind
    message: str
    attempts: int = 0
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressCheckpoint(BaseModel):
    """Durable cursor and counters describing run progress."""

    run_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    target_count: int = 0
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    estimated_cost: float = 0.0
    last_processed_id: str | None = None
    rate_limit_pauses: int = 0
    source_breakdown: dict[str, int] = Field(default_factory=dict)
    # Counted as persist failures until a later flush stores them.
    unpersisted_results: list[AnalysisResult] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_consistent(self) -> bool:
        """processed == success + error + skipped."""
        return self.processed_count == (
            self.success_count + self.error_count + self.skipped_count
        )


class RunReport(BaseModel):
    """What a finished (or aborted) run hands back to its caller."""

    state: RunState
    checkpoint: ProgressCheckpoint
    processed_this_run: int = 0
    errors: list[ItemError] = Field(default_factory=list)
    abort_reason: str | None = None
    stopped_early: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
