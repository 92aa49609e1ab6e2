"""Data models for viralyze."""

from viralyze.models.analysis import (
    SOURCE_PRIORITY,
    AnalysisResult,
    CompositeInput,
    SourceBlock,
    SourceTag,
    StructuredPayload,
)
from viralyze.models.progress import (
    ErrorKind,
    ItemError,
    ItemOutcome,
    OutcomeStatus,
    ProgressCheckpoint,
    RunReport,
    RunState,
)
from viralyze.models.work_item import EngagementStats, WorkItem

__all__ = [
    # Work items
    "EngagementStats",
    "WorkItem",
    # Analysis
    "SOURCE_PRIORITY",
    "AnalysisResult",
    "CompositeInput",
    "SourceBlock",
    "SourceTag",
    "StructuredPayload",
    # Progress
    "ErrorKind",
    "ItemError",
    "ItemOutcome",
    "OutcomeStatus",
    "ProgressCheckpoint",
    "RunReport",
    "RunState",
]
