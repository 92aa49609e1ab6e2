"""Configuration management for viralyze."""

from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunConfig(BaseModel):
    """Options for one enrichment run."""

    model_config = ConfigDict(frozen=True)

    target_item_count: int = Field(default=100, ge=0, description="Max items processed this run")

    # Rate window
    requests_per_window: int = Field(default=40, ge=1)
    tokens_per_window: int = Field(default=30_000, ge=1)
    window_length_seconds: float = Field(default=60.0, gt=0)

    # Cost governor (USD)
    cost_ceiling: float = Field(default=10.0, ge=0)
    input_cost_per_1k: float = Field(default=0.003, ge=0)
    output_cost_per_1k: float = Field(default=0.015, ge=0)

    # Retry policy
    max_retries: int = Field(default=3, ge=1, description="Total attempts per item")
    retry_delay_seconds: float = Field(default=3.0, ge=0)
    rate_limit_retry_delay_seconds: float = Field(default=65.0, ge=0)

    # Pacing
    inter_item_delay_seconds: float = Field(default=1.5, ge=0)
    batch_size: int = Field(default=1, ge=1, le=20, description="Items in flight at once")
    checkpoint_every: int = Field(default=10, ge=1)

    # Inference
    model_id: str = "claude-sonnet-4-20250514"
    max_output_tokens: int = Field(default=1024, ge=1)
    max_input_chars: int = Field(default=6000, ge=100)
    health_check_timeout_seconds: float = Field(default=30.0, gt=0)

    # Source resolution / parsing
    min_transcript_chars: int = Field(default=10, ge=0)
    video_max_duration_seconds: int = Field(default=30, ge=1)
    min_content_chars: int = Field(default=100, ge=0)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="VIRALYZE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Credentials
    anthropic_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("VIRALYZE_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
    )

    # Storage
    data_dir: Path = Path("./data")
    backlog_path: Path = Path("./data/backlog.jsonl")

    # Logging
    log_level: str = "INFO"

    # Run defaults (overridable per CLI invocation)
    target_item_count: int = 100
    requests_per_window: int = 40
    tokens_per_window: int = 30_000
    window_length_seconds: float = 60.0
    cost_ceiling: float = 10.0
    max_retries: int = 3
    retry_delay_seconds: float = 3.0
    rate_limit_retry_delay_seconds: float = 65.0
    inter_item_delay_seconds: float = 1.5
    batch_size: int = 1
    model_id: str = "claude-sonnet-4-20250514"
    vision_model_id: str = "claude-sonnet-4-20250514"

    def to_run_config(self, **overrides) -> RunConfig:
        """Build a RunConfig from settings, letting CLI flags win."""
        values = {
            "target_item_count": self.target_item_count,
            "requests_per_window": self.requests_per_window,
            "tokens_per_window": self.tokens_per_window,
            "window_length_seconds": self.window_length_seconds,
            "cost_ceiling": self.cost_ceiling,
            "max_retries": self.max_retries,
            "retry_delay_seconds": self.retry_delay_seconds,
            "rate_limit_retry_delay_seconds": self.rate_limit_retry_delay_seconds,
            "inter_item_delay_seconds": self.inter_item_delay_seconds,
            "batch_size": self.batch_size,
            "model_id": self.model_id,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return RunConfig(**values)

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
