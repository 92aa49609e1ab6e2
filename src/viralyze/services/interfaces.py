"""Collaborator interfaces (Protocols) for viralyze.

These protocols define the contracts the orchestrator relies on. Concrete
implementations live in ``viralyze.services.providers`` and
``viralyze.services.stores``; tests plug in in-memory fakes.
"""

from collections.abc import Iterable
from typing import Protocol

from viralyze.models.analysis import AnalysisResult
from viralyze.models.progress import ItemError, ProgressCheckpoint
from viralyze.models.work_item import WorkItem


class IWorkSource(Protocol):
    """Backlog of items waiting to be enriched."""

    async def fetch_backlog(
        self,
        after_id: str | None,
        limit: int,
        exclude_ids: Iterable[str],
    ) -> list[WorkItem]:
        """Fetch the next unprocessed items.

        Args:
            after_id: Only return items whose external id sorts after this cursor
            limit: Maximum number of items to return
            exclude_ids: External ids that must not be returned

        Returns:
            Up to ``limit`` items ordered by external id
        """
        ...

    async def list_already_analyzed_ids(self) -> list[str]:
        """External ids that already have a persisted analysis."""
        ...


class IMediaAnalyzer(Protocol):
    """Turns media references into text summaries."""

    async def summarize_video(self, media_ref: str, max_duration_seconds: int) -> str:
        """Describe the first ``max_duration_seconds`` of a video.

        Raises:
            MediaAnalysisError: If the video cannot be fetched or analyzed
        """
        ...

    async def summarize_image(self, image_ref: str) -> str:
        """Describe a thumbnail / cover image.

        Raises:
            MediaAnalysisError: If the image cannot be fetched or analyzed
        """
        ...


class IInferenceClient(Protocol):
    """Single costed text-completion call."""

    async def complete(self, prompt: str, model_id: str, max_output_tokens: int) -> str:
        """Return the model's free-form text.

        Raises:
            ProviderError: With ``is_rate_limited`` set when the provider throttled us
        """
        ...


class IResultStore(Protocol):
    """Durable sink for analyses, checkpoints and per-item errors."""

    async def insert(self, result: AnalysisResult) -> None:
        ...

    async def insert_checkpoint(self, checkpoint: ProgressCheckpoint) -> None:
        ...

    async def load_latest_checkpoint(self) -> ProgressCheckpoint | None:
        ...

    async def insert_error(self, error: ItemError) -> None:
        ...
