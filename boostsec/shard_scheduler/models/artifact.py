"""Models for build artifacts handed to shard executors."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BuildTarget = Literal["application", "native"]

BUILD_TARGETS: tuple[BuildTarget, ...] = ("application", "native")


class BuildArtifactHandle(BaseModel):
    """Opaque reference to one prebuilt artifact."""

    model_config = ConfigDict(frozen=True)

    target: BuildTarget = Field(..., description="Build target that produced it")
    location: str = Field(..., description="Where executors can find the artifact")
    built_at: datetime | None = Field(default=None, description="Completion time")


class BuildArtifacts(BaseModel):
    """Both artifacts required before shards can fan out."""

    model_config = ConfigDict(frozen=True)

    application: BuildArtifactHandle
    native: BuildArtifactHandle
