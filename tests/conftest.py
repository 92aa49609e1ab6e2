"""Shared fakes and fixtures for viralyze tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable

import pytest

from viralyze.config import RunConfig
from viralyze.errors import MediaAnalysisError
from viralyze.models.analysis import AnalysisResult
from viralyze.models.progress import ItemError, ProgressCheckpoint
from viralyze.models.work_item import EngagementStats, WorkItem

VALID_PAYLOAD = {
    "classification": "comedy",
    "primary_factors": ["relatable setup", "fast punchline"],
    "emotional_factors": ["surprise"],
    "opening_strategy": "Starts mid-action",
    "confidence": 0.8,
}
VALID_JSON = json.dumps(VALID_PAYLOAD)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class ScriptedInferenceClient:
    """Returns (or raises) scripted responses in order, then ``default``."""

    def __init__(self, responses: Iterable[str | Exception] = (), default: str = VALID_JSON) -> None:
        self.responses = list(responses)
        self.default = default
        self.calls: list[tuple[str, str, int]] = []

    async def complete(self, prompt: str, model_id: str, max_output_tokens: int) -> str:
        self.calls.append((prompt, model_id, max_output_tokens))
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response


class FakeMediaAnalyzer:
    """Maps media refs to summaries; refs missing from the map fail."""

    def __init__(
        self,
        videos: dict[str, str | Exception] | None = None,
        images: dict[str, str | Exception] | None = None,
    ) -> None:
        self.videos = videos or {}
        self.images = images or {}
        self.video_calls: list[tuple[str, int]] = []
        self.image_calls: list[str] = []

    async def summarize_video(self, media_ref: str, max_duration_seconds: int) -> str:
        self.video_calls.append((media_ref, max_duration_seconds))
        return self._lookup(self.videos, media_ref)

    async def summarize_image(self, image_ref: str) -> str:
        self.image_calls.append(image_ref)
        return self._lookup(self.images, image_ref)

    @staticmethod
    def _lookup(table: dict[str, str | Exception], ref: str) -> str:
        if ref not in table:
            raise MediaAnalysisError(f"unknown media {ref}")
        value = table[ref]
        if isinstance(value, Exception):
            raise value
        return value


class InMemoryStore:
    """Result store keeping everything in lists."""

    def __init__(self) -> None:
        self.results: list[AnalysisResult] = []
        self.checkpoints: list[ProgressCheckpoint] = []
        self.errors: list[ItemError] = []
        self.fail_inserts = 0
        self.fail_checkpoints = 0
        self.fail_errors = False

    async def insert(self, result: AnalysisResult) -> None:
        if self.fail_inserts > 0:
            self.fail_inserts -= 1
            raise OSError("database unavailable")
        self.results.append(result)

    async def insert_checkpoint(self, checkpoint: ProgressCheckpoint) -> None:
        if self.fail_checkpoints > 0:
            self.fail_checkpoints -= 1
            raise OSError("database unavailable")
        self.checkpoints.append(checkpoint.model_copy(deep=True))

    async def load_latest_checkpoint(self) -> ProgressCheckpoint | None:
        return self.checkpoints[-1].model_copy(deep=True) if self.checkpoints else None

    async def insert_error(self, error: ItemError) -> None:
        if self.fail_errors:
            raise OSError("database unavailable")
        self.errors.append(error)


class InMemoryWorkSource:
    """Backlog ordered by external id; analyzed ids come from the store."""

    def __init__(self, items: Iterable[WorkItem], store: InMemoryStore) -> None:
        self.items = sorted(items, key=lambda i: i.external_id)
        self.store = store
        self.fetches: list[tuple[str | None, int]] = []

    async def fetch_backlog(self, after_id, limit, exclude_ids) -> list[WorkItem]:
        self.fetches.append((after_id, limit))
        excluded = set(exclude_ids)
        batch = [
            item
            for item in self.items
            if (after_id is None or item.external_id > after_id)
            and item.external_id not in excluded
        ]
        return batch[:limit]

    async def list_already_analyzed_ids(self) -> list[str]:
        return [r.external_id for r in self.store.results]


def make_item(n: int, **overrides) -> WorkItem:
    """Work item with a usable transcript unless overridden."""
    values = {
        "id": f"item-{n}",
        "external_id": f"vid{n:04d}",
        "title": f"Video {n}",
        "description": f"Caption for video {n}",
        "transcript": f"This is the spoken transcript of video number {n}.",
        "stats": EngagementStats(views=10_000, likes=900, comments=50, shares=50),
    }
    values.update(overrides)
    return WorkItem(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def run_config() -> RunConfig:
    """Fast defaults: no inter-item pause, short retry delay."""
    return RunConfig(
        target_item_count=100,
        inter_item_delay_seconds=0.0,
        retry_delay_seconds=1.0,
    )


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def fakes():
    """Fake classes, for tests that need more than one instance."""

    class _Fakes:
        Clock = FakeClock
        Client = ScriptedInferenceClient
        Media = FakeMediaAnalyzer
        Store = InMemoryStore
        WorkSource = InMemoryWorkSource

    return _Fakes


@pytest.fixture
def valid_json() -> str:
    return VALID_JSON
