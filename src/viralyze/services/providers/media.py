"""Claude vision-based media summaries."""

import asyncio
import base64
import logging
import os
import subprocess
import tempfile
from pathlib import Path

import anthropic
import httpx

from viralyze.errors import MediaAnalysisError
from viralyze.services.providers.claude import _response_text

logger = logging.getLogger(__name__)

_VIDEO_PROMPT = """\
These frames were sampled from the first {seconds} seconds of a short-form video, in order.
Describe what happens: setting, people, actions, on-screen text and how the opening grabs attention.
Answer in plain prose, at most 150 words."""

_IMAGE_PROMPT = """\
This is the cover image of a short-form video.
Describe what it shows and transcribe any visible text."""


class ClaudeMediaAnalyzer:
    """Summarizes videos and thumbnails with Claude vision.

    Images are passed by URL. Videos are downloaded with httpx, sampled into
    JPEG frames with ffmpeg and sent inline as base64.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-20250514",
        max_frames: int = 6,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._model = model
        self.max_frames = max_frames
        self.timeout = timeout
        self._client = (
            anthropic.AsyncAnthropic(api_key=self._api_key) if self._api_key else None
        )

    async def summarize_image(self, image_ref: str) -> str:
        content = [
            {"type": "image", "source": {"type": "url", "url": image_ref}},
            {"type": "text", "text": _IMAGE_PROMPT},
        ]
        return await self._ask(content, max_tokens=400)

    async def summarize_video(self, media_ref: str, max_duration_seconds: int) -> str:
        with tempfile.TemporaryDirectory(prefix="viralyze_") as tmp:
            workdir = Path(tmp)
            video_path = await self._download(media_ref, workdir / "video.mp4")
            frames = await self._extract_frames(video_path, workdir, max_duration_seconds)
            if not frames:
                raise MediaAnalysisError(f"No frames extracted from {media_ref}")

            content: list[dict] = []
            for frame in frames:
                content.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": "image/jpeg",
                            "data": base64.b64encode(frame.read_bytes()).decode("ascii"),
                        },
                    }
                )
            content.append(
                {"type": "text", "text": _VIDEO_PROMPT.format(seconds=max_duration_seconds)}
            )
            return await self._ask(content, max_tokens=500)

    async def _ask(self, content: list[dict], max_tokens: int) -> str:
        if self._client is None:
            raise MediaAnalysisError("Claude vision is not available (no API key)")
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as exc:
            raise MediaAnalysisError(f"Claude vision error: {exc}") from exc
        return _response_text(response).strip()

    async def _download(self, url: str, dest: Path) -> Path:
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise MediaAnalysisError(f"Video download failed: {e}") from e
        dest.write_bytes(response.content)
        logger.debug("Downloaded %d bytes from %s", len(response.content), url)
        return dest

    async def _extract_frames(
        self, video_path: Path, output_dir: Path, max_duration_seconds: int
    ) -> list[Path]:
        interval = max(max_duration_seconds / self.max_frames, 1)
        cmd = [
            "ffmpeg",
            "-y",
            "-t", str(max_duration_seconds),
            "-i", str(video_path),
            "-vf", f"fps=1/{interval:g},scale=512:-2",
            "-frames:v", str(self.max_frames),
            str(output_dir / "frame_%02d.jpg"),
        ]

        try:
            result = await asyncio.to_thread(
                subprocess.run, cmd, capture_output=True, text=True
            )
        except FileNotFoundError as e:
            raise MediaAnalysisError("ffmpeg not found") from e

        if result.returncode != 0:
            raise MediaAnalysisError(f"ffmpeg failed: {result.stderr[-500:]}")

        return sorted(output_dir.glob("frame_*.jpg"))
