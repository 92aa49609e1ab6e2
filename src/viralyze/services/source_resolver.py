"""Ordered content-source resolution with fallback."""

import logging
import re
from collections.abc import Awaitable, Callable

from viralyze.models.analysis import SOURCE_PRIORITY, CompositeInput, SourceBlock, SourceTag
from viralyze.models.work_item import WorkItem
from viralyze.services.interfaces import IMediaAnalyzer

logger = logging.getLogger(__name__)

_HEIC_SUFFIXES = (".heic", ".heif")
_NO_TEXT_MARKERS = ("no visible text", "no text visible", "no readable text")
_NON_WORD = re.compile(r"[\W_]+")

Resolver = Callable[[WorkItem], Awaitable[SourceBlock | None]]


def is_heic(url: str) -> bool:
    """HEIC/HEIF covers cannot be sent to the vision model."""
    lowered = url.lower()
    return lowered.split("?", 1)[0].endswith(_HEIC_SUFFIXES) or ".heic" in lowered


def _is_empty_summary(text: str | None) -> bool:
    if not text or not text.strip():
        return True
    remainder = text.lower()
    for marker in _NO_TEXT_MARKERS:
        remainder = remainder.replace(marker, " ")
    # Only a bare "no text" answer counts as absent.
    return not _NON_WORD.sub("", remainder)


class SourceResolver:
    """Builds a CompositeInput for a work item from every available source.

    Sources are tried in priority order (transcript, video summary, thumbnail
    summary, description). A failing source is logged and recorded but never
    stops resolution. An item whose only content is its description is not
    worth a paid call and resolves to an empty input.
    """

    def __init__(
        self,
        media_analyzer: IMediaAnalyzer | None = None,
        min_transcript_chars: int = 10,
        video_max_duration_seconds: int = 30,
    ) -> None:
        self.media_analyzer = media_analyzer
        self.min_transcript_chars = min_transcript_chars
        self.video_max_duration_seconds = video_max_duration_seconds
        by_tag: dict[SourceTag, Resolver] = {
            SourceTag.TRANSCRIPT: self._resolve_transcript,
            SourceTag.DERIVED_VIDEO_SUMMARY: self._resolve_video,
            SourceTag.DERIVED_THUMBNAIL_SUMMARY: self._resolve_thumbnail,
            SourceTag.DESCRIPTION: self._resolve_description,
        }
        self._resolvers: list[tuple[SourceTag, Resolver]] = [
            (tag, by_tag[tag]) for tag in SOURCE_PRIORITY
        ]

    async def resolve(self, item: WorkItem) -> CompositeInput:
        blocks: list[SourceBlock] = []
        attempted: list[SourceTag] = []
        failures: dict[SourceTag, str] = {}

        for tag, resolver in self._resolvers:
            attempted.append(tag)
            try:
                block = await resolver(item)
            except Exception as e:
                logger.warning(
                    "Source %s failed for %s: %s", tag.value, item.external_id, e
                )
                failures[tag] = str(e) or type(e).__name__
                continue
            if block is not None:
                blocks.append(block)

        if all(b.tag == SourceTag.DESCRIPTION for b in blocks):
            if blocks:
                logger.info("Item %s has only a description, not viable", item.external_id)
            return CompositeInput(attempted=attempted, failures=failures)

        return CompositeInput(
            blocks=blocks,
            primary_source=blocks[0].tag,
            attempted=attempted,
            failures=failures,
        )

    async def _resolve_transcript(self, item: WorkItem) -> SourceBlock | None:
        text = (item.transcript or "").strip()
        if len(text) <= self.min_transcript_chars:
            return None
        return SourceBlock(tag=SourceTag.TRANSCRIPT, text=text)

    async def _resolve_video(self, item: WorkItem) -> SourceBlock | None:
        if not item.video_url or self.media_analyzer is None:
            return None
        summary = await self.media_analyzer.summarize_video(
            item.video_url, self.video_max_duration_seconds
        )
        if not summary or not summary.strip():
            return None
        return SourceBlock(tag=SourceTag.DERIVED_VIDEO_SUMMARY, text=summary.strip())

    async def _resolve_thumbnail(self, item: WorkItem) -> SourceBlock | None:
        if self.media_analyzer is None:
            return None
        candidates = item.thumbnail_candidates
        url = next((u for u in candidates if not is_heic(u)), None)
        if url is None:
            if candidates:
                logger.debug("Only HEIC covers for %s, skipping thumbnail", item.external_id)
            return None
        summary = await self.media_analyzer.summarize_image(url)
        if _is_empty_summary(summary):
            return None
        return SourceBlock(tag=SourceTag.DERIVED_THUMBNAIL_SUMMARY, text=summary.strip())

    async def _resolve_description(self, item: WorkItem) -> SourceBlock | None:
        text = (item.description or "").strip()
        if not text:
            return None
        return SourceBlock(tag=SourceTag.DESCRIPTION, text=text)
