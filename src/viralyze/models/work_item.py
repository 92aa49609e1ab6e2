"""Backlog work item models."""

from pydantic import BaseModel, ConfigDict, Field


class EngagementStats(BaseModel):
    """Public engagement counters for a video."""

    model_config = ConfigDict(frozen=True)

    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0.0, ge=0)

    @property
    def engagement_rate(self) -> float:
        """(likes + comments + shares) / views, 0 when there are no views."""
        if self.views <= 0:
            return 0.0
        return (self.likes + self.comments + self.shares) / self.views

    @property
    def like_rate(self) -> float:
        if self.views <= 0:
            return 0.0
        return self.likes / self.views


class WorkItem(BaseModel):
    """One backlog record to enrich. Read-only once fetched."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Internal record id")
    external_id: str = Field(..., description="Platform video id, used as the resume cursor")
    title: str = Field(default="", description="Video title")
    description: str = Field(default="", description="Caption / description text")
    transcript: str | None = Field(default=None, description="Spoken transcript if already known")
    video_url: str | None = Field(default=None, description="Direct media URL")
    thumbnail_url: str | None = Field(default=None, description="Primary cover image URL")
    alt_thumbnail_urls: list[str] = Field(
        default_factory=list, description="Fallback cover image URLs"
    )
    author_name: str | None = Field(default=None)
    stats: EngagementStats = Field(default_factory=EngagementStats)

    @property
    def thumbnail_candidates(self) -> list[str]:
        """Primary thumbnail first, then alternates, without duplicates."""
        seen: set[str] = set()
        urls: list[str] = []
        for url in [self.thumbnail_url, *self.alt_thumbnail_urls]:
            if url and url not in seen:
                seen.add(url)
                urls.append(url)
        return urls
