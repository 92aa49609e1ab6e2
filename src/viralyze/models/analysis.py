"""Analysis input and result models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_PRIMARY_FACTORS = 5


class SourceTag(str, Enum):
    """Content sources, highest priority first."""

    TRANSCRIPT = "transcript"
    DERIVED_VIDEO_SUMMARY = "derived_video_summary"
    DERIVED_THUMBNAIL_SUMMARY = "derived_thumbnail_summary"
    DESCRIPTION = "description"


SOURCE_PRIORITY: list[SourceTag] = [
    SourceTag.TRANSCRIPT,
    SourceTag.DERIVED_VIDEO_SUMMARY,
    SourceTag.DERIVED_THUMBNAIL_SUMMARY,
    SourceTag.DESCRIPTION,
]

SOURCE_LABELS: dict[SourceTag, str] = {
    SourceTag.TRANSCRIPT: "TRANSCRIPT (Spoken Content)",
    SourceTag.DERIVED_VIDEO_SUMMARY: "VIDEO ANALYSIS (Visual Content)",
    SourceTag.DERIVED_THUMBNAIL_SUMMARY: "THUMBNAIL ANALYSIS (Visual Hook)",
    SourceTag.DESCRIPTION: "DESCRIPTION (Caption)",
}


class SourceBlock(BaseModel):
    """One labeled text block of a composite input."""

    model_config = ConfigDict(frozen=True)

    tag: SourceTag
    text: str

    def render(self) -> str:
        return f"{SOURCE_LABELS[self.tag]}:\n{self.text.strip()}"


class CompositeInput(BaseModel):
    """All content gathered for one work item, in priority order."""

    blocks: list[SourceBlock] = Field(default_factory=list)
    primary_source: SourceTag | None = Field(
        default=None, description="Highest-priority source that succeeded"
    )
    attempted: list[SourceTag] = Field(default_factory=list)
    failures: dict[SourceTag, str] = Field(
        default_factory=dict, description="Sources whose collaborator raised"
    )

    @property
    def is_viable(self) -> bool:
        """Worth an expensive call."""
        return bool(self.blocks)

    @property
    def tags(self) -> list[SourceTag]:
        return [b.tag for b in self.blocks]

    def render(self) -> str:
        """Concatenate every block with its label."""
        return "\n\n".join(b.render() for b in self.blocks)


class StructuredPayload(BaseModel):
    """Structured annotation extracted from an inference response.

    Unknown keys returned by the model are kept as extra fields.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    classification: str = Field(
        default="",
        validation_alias=AliasChoices("classification", "content_type"),
        description="Content category",
    )
    primary_factors: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("primary_factors", "viral_factors"),
        description="Ordered causal factors (1-5)",
    )
    emotional_factors: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("emotional_factors", "emotional_core"),
        description="Ordered emotional factors",
    )
    opening_strategy: str = Field(
        default="",
        validation_alias=AliasChoices("opening_strategy", "hook_strategy", "hook"),
        description="How the first seconds grab attention",
    )
    confidence: float = Field(
        default=0.0,
        validation_alias=AliasChoices("confidence", "confidence_score"),
    )

    @field_validator("classification", "opening_strategy", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("primary_factors", "emotional_factors", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    @field_validator("primary_factors")
    @classmethod
    def _cap_factors(cls, value: list[str]) -> list[str]:
        return value[:MAX_PRIMARY_FACTORS]

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        if number != number:  # NaN
            return 0.0
        return min(max(number, 0.0), 1.0)

    @property
    def missing_fields(self) -> list[str]:
        """Required fields that are empty."""
        missing = []
        if not self.classification:
            missing.append("classification")
        if not self.primary_factors:
            missing.append("primary_factors")
        return missing


class AnalysisResult(BaseModel):
    """Persisted annotation for one work item. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    work_item_id: str
    external_id: str
    primary_source: SourceTag
    payload: StructuredPayload
    raw_input: str = Field(..., description="Composite input text kept for audit")
    raw_response: str = Field(default="")
    model_id: str = Field(default="")
    synthesized: bool = Field(
        default=False, description="Payload was synthesized from a minimal response"
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
