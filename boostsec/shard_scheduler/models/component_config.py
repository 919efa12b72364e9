"""Configuration models for builders, executors and artifact sinks."""

from pydantic import BaseModel, Field

from boostsec.shard_scheduler.models.artifact import BuildTarget


class CommandBuilderConfig(BaseModel):
    """Configuration for building artifacts with local commands."""

    commands: dict[BuildTarget, list[str]] = Field(
        ..., description="Command argv per build target"
    )
    artifacts: dict[BuildTarget, str] = Field(
        ..., description="Artifact location produced by each command"
    )
    cwd: str | None = Field(default=None, description="Working directory")
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment for build commands"
    )


class PrebuiltBuilderConfig(BaseModel):
    """Configuration for artifacts that were built ahead of the batch."""

    artifacts: dict[BuildTarget, str] = Field(
        ..., description="Existing artifact location per build target"
    )


class SubprocessExecutorConfig(BaseModel):
    """Configuration for running shards as local processes."""

    command: list[str] = Field(
        default_factory=lambda: [
            "node",
            "run-tests.js",
            "--group",
            "{index}/{total}",
            "--type",
            "{test_type}",
        ],
        description="Runner argv; supports {category}, {index}, {total}, "
        "{test_type}, {mode}, {results_file} placeholders",
    )
    results_dir: str = Field(
        default=".shard-results", description="Directory for per-run result files"
    )
    cwd: str | None = Field(default=None, description="Working directory")
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment set before running the shard",
    )


class HttpExecutorConfig(BaseModel):
    """Configuration for a remote shard runner service."""

    base_url: str = Field(..., description="Runner service base URL")
    token: str | None = Field(default=None, description="Bearer token")


class DirectorySinkConfig(BaseModel):
    """Configuration for storing artifacts in a local directory."""

    root: str = Field(..., description="Directory receiving published artifacts")


class HttpSinkConfig(BaseModel):
    """Configuration for uploading artifacts to an HTTP store."""

    base_url: str = Field(..., description="Artifact store base URL")
    token: str | None = Field(default=None, description="Bearer token")
