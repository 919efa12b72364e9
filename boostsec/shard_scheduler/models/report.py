"""Models for the consolidated batch report and batch outcome."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from boostsec.shard_scheduler.models.run_config import ExecutionMode
from boostsec.shard_scheduler.models.shard import ShardAttempt, ShardSpec

ShardOutcome = Literal["success", "failure", "timed_out", "missing"]
BatchStatus = Literal["success", "failure"]
BatchStateName = Literal[
    "pending",
    "building",
    "fanning_out",
    "awaiting_results",
    "aggregating",
    "published",
    "failed",
]


class ShardStatus(BaseModel):
    """Terminal status of one shard in a batch."""

    model_config = ConfigDict(frozen=True)

    spec: ShardSpec
    outcome: ShardOutcome = Field(..., description="Terminal outcome of the shard")
    attempts: int = Field(default=0, ge=0, description="Attempts that were made")
    fatal: bool = Field(
        default=False, description="Whether this shard blocks batch publication"
    )


class ConsistencyAnomaly(BaseModel):
    """A test id reported both passed and failed by terminal attempts."""

    model_config = ConfigDict(frozen=True)

    test_id: str
    passed_in: list[ShardSpec] = Field(default_factory=list)
    failed_in: list[ShardSpec] = Field(default_factory=list)


class ConsolidatedReport(BaseModel):
    """Single report folded from every terminal shard attempt of a batch."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="default", description="Batch identifier")
    execution_mode: ExecutionMode = Field(default="development")
    status: BatchStatus = Field(..., description="success only if all shards passed")
    passed: list[str] = Field(default_factory=list, description="Passed test ids")
    failed: list[str] = Field(default_factory=list, description="Failed test ids")
    flaky: list[str] = Field(
        default_factory=list,
        description="Tests that failed in an earlier attempt but passed in the last",
    )
    anomalies: list[ConsistencyAnomaly] = Field(default_factory=list)
    shard_statuses: list[ShardStatus] = Field(default_factory=list)

    def status_for(self, spec: ShardSpec) -> ShardStatus | None:
        """Return the recorded status of a shard, if any."""
        for status in self.shard_statuses:
            if status.spec == spec:
                return status
        return None

    @property
    def has_fatal_shards(self) -> bool:
        """Return True if any shard is fatal to the batch."""
        return any(status.fatal for status in self.shard_statuses)

    @property
    def non_success_shards(self) -> list[ShardStatus]:
        """Shards whose terminal outcome was not success."""
        return [s for s in self.shard_statuses if s.outcome != "success"]


class BatchResult(BaseModel):
    """Outcome of one batch invocation."""

    name: str
    status: BatchStatus
    state: BatchStateName
    report: ConsolidatedReport | None = None
    report_location: str | None = Field(
        default=None, description="Location of the published report"
    )
    attempts: list[ShardAttempt] = Field(
        default_factory=list, description="Every attempt collected during the batch"
    )
    message: str | None = Field(default=None, description="Failure details")
