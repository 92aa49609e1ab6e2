"""Append-only JSON Lines persistence."""

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from viralyze.errors import StoreError
from viralyze.models.analysis import AnalysisResult
from viralyze.models.progress import ItemError, ProgressCheckpoint
from viralyze.models.work_item import WorkItem

logger = logging.getLogger(__name__)


class JsonlStore:
    """Result store backed by three JSONL files in ``data_dir``.

    - results.jsonl: one AnalysisResult per line
    - checkpoints.jsonl: every flushed ProgressCheckpoint, newest last
    - errors.jsonl: per-item ItemError log
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.results_path = self.data_dir / "results.jsonl"
        self.checkpoints_path = self.data_dir / "checkpoints.jsonl"
        self.errors_path = self.data_dir / "errors.jsonl"

    def _append(self, path: Path, line: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e

    def _read_lines(self, path: Path) -> list[str]:
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                return [line for line in (l.strip() for l in f) if line]
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}") from e

    async def insert(self, result: AnalysisResult) -> None:
        self._append(self.results_path, result.model_dump_json())

    async def insert_checkpoint(self, checkpoint: ProgressCheckpoint) -> None:
        self._append(self.checkpoints_path, checkpoint.model_dump_json())

    async def insert_error(self, error: ItemError) -> None:
        self._append(self.errors_path, error.model_dump_json())

    async def load_latest_checkpoint(self) -> ProgressCheckpoint | None:
        lines = self._read_lines(self.checkpoints_path)
        # A crash mid-write can leave a truncated last line.
        for line in reversed(lines):
            try:
                return ProgressCheckpoint.model_validate_json(line)
            except ValidationError:
                logger.warning("Skipping unreadable checkpoint line in %s", self.checkpoints_path)
        return None

    async def load_results(self) -> list[AnalysisResult]:
        results = []
        for line in self._read_lines(self.results_path):
            try:
                results.append(AnalysisResult.model_validate_json(line))
            except ValidationError:
                logger.warning("Skipping unreadable result line in %s", self.results_path)
        return results

    async def load_errors(self) -> list[ItemError]:
        return [ItemError.model_validate_json(line) for line in self._read_lines(self.errors_path)]

    async def analyzed_ids(self) -> set[str]:
        ids: set[str] = set()
        for line in self._read_lines(self.results_path):
            try:
                ids.add(json.loads(line)["external_id"])
            except (json.JSONDecodeError, KeyError, TypeError):
                continue
        return ids


class JsonlWorkSource:
    """Backlog read from a JSONL file of WorkItems, ordered by external id."""

    def __init__(self, backlog_path: Path, store: JsonlStore) -> None:
        self.backlog_path = Path(backlog_path)
        self.store = store
        self._items: list[WorkItem] | None = None

    def _load(self) -> list[WorkItem]:
        if self._items is None:
            if not self.backlog_path.exists():
                raise StoreError(f"Backlog file not found: {self.backlog_path}")
            items = []
            with open(self.backlog_path, encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        items.append(WorkItem.model_validate_json(line))
                    except ValidationError as e:
                        logger.warning("Skipping invalid backlog line %d: %s", lineno, e)
            self._items = sorted(items, key=lambda item: item.external_id)
            logger.info("Loaded %d backlog items from %s", len(items), self.backlog_path)
        return self._items

    async def fetch_backlog(
        self,
        after_id: str | None,
        limit: int,
        exclude_ids: Iterable[str],
    ) -> list[WorkItem]:
        excluded = set(exclude_ids)
        batch: list[WorkItem] = []
        for item in self._load():
            if after_id is not None and item.external_id <= after_id:
                continue
            if item.external_id in excluded:
                continue
            batch.append(item)
            if len(batch) >= limit:
                break
        return batch

    async def list_already_analyzed_ids(self) -> list[str]:
        return sorted(await self.store.analyzed_ids())

    async def count_remaining(self, exclude_ids: Iterable[str]) -> int:
        excluded = set(exclude_ids)
        return sum(1 for item in self._load() if item.external_id not in excluded)
