"""Models for shard identities and shard execution attempts."""

from datetime import datetime
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)

Category = Literal["broad", "legacy"]
AttemptOutcome = Literal["success", "failure", "timed_out"]

CATEGORY_ORDER: dict[str, int] = {"broad": 0, "legacy": 1}


class ShardSpec(BaseModel):
    """One partition of the test corpus within a category."""

    model_config = ConfigDict(frozen=True)

    category: Category = Field(..., description="Test category being partitioned")
    index: int = Field(..., ge=1, description="1-based shard index")
    total: int = Field(..., ge=1, description="Number of shards in the category")

    @model_validator(mode="after")
    def _check_index(self) -> "ShardSpec":
        if self.index > self.total:
            raise ValueError(
                f"Shard index {self.index} exceeds total shard count {self.total}"
            )
        return self

    @property
    def label(self) -> str:
        """Human readable identifier, e.g. ``broad 2/6``."""
        return f"{self.category} {self.index}/{self.total}"

    def sort_key(self) -> tuple[int, int]:
        """Ordering key: broad before legacy, then by index."""
        return (CATEGORY_ORDER[self.category], self.index)


class ShardRunOutput(BaseModel):
    """Structured output reported by the external runner for one shard."""

    exit_code: int | None = Field(
        default=None, description="Runner exit status, None while still running"
    )
    passed: list[str] = Field(default_factory=list, description="Passed test ids")
    failed: list[str] = Field(default_factory=list, description="Failed test ids")


class ShardAttempt(BaseModel):
    """Result of one execution attempt of a shard."""

    model_config = ConfigDict(frozen=True)

    spec: ShardSpec
    attempt_number: int = Field(..., ge=1, description="1-based attempt counter")
    outcome: AttemptOutcome = Field(..., description="Attempt outcome")
    passed: frozenset[str] = Field(default_factory=frozenset)
    failed: frozenset[str] = Field(default_factory=frozenset)
    exit_code: int | None = Field(default=None, description="Runner exit status")
    note: str | None = Field(default=None, description="Diagnostic details")
    started_at: datetime
    finished_at: datetime

    @field_serializer("passed", "failed")
    def _serialize_ids(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    @property
    def duration(self) -> float:
        """Attempt wall time in seconds."""
        return max(0.0, (self.finished_at - self.started_at).total_seconds())
