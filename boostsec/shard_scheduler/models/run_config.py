"""Configuration models for a test batch."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from boostsec.shard_scheduler.models.shard import Category

ExecutionMode = Literal["development", "production"]


class RunConfig(BaseModel):
    """Settings for one batch invocation. Read-only once created."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        default="default", description="Unique identifier used for uploaded assets"
    )
    execution_mode: ExecutionMode = Field(
        ..., description="Mode the application under test runs in"
    )
    total_shards_broad: int = Field(
        default=6, ge=1, description="Matrix size for broad tests"
    )
    total_shards_legacy: int = Field(
        default=6, ge=1, description="Matrix size for legacy tests"
    )
    retry_budget: int = Field(
        default=2, ge=0, description="Retries allowed per shard after the first run"
    )
    per_shard_timeout: float = Field(
        default=1800.0, gt=0, description="Shard timeout in seconds"
    )
    legacy_shard_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Timeout override in seconds for legacy shards",
    )
    poll_interval: float = Field(
        default=30.0, gt=0, description="Seconds between runner status polls"
    )
    continue_on_error: bool = Field(
        default=True,
        description="Treat failed shards as non-fatal for report publication",
    )
    max_workers: int | None = Field(
        default=None, ge=1, description="Maximum shards executing at once"
    )

    def timeout_for(self, category: Category) -> float:
        """Return the timeout in seconds that applies to a category."""
        if category == "legacy" and self.legacy_shard_timeout is not None:
            return self.legacy_shard_timeout
        return self.per_shard_timeout

    def total_for(self, category: Category) -> int:
        """Return the matrix size for a category."""
        if category == "legacy":
            return self.total_shards_legacy
        return self.total_shards_broad
