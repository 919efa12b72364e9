"""Data models for shards, attempts, configuration and reports."""

from boostsec.shard_scheduler.models.artifact import (
    BuildArtifactHandle,
    BuildArtifacts,
)
from boostsec.shard_scheduler.models.batch_config import BatchConfig, ComponentConfig
from boostsec.shard_scheduler.models.component_config import (
    CommandBuilderConfig,
    DirectorySinkConfig,
    HttpExecutorConfig,
    HttpSinkConfig,
    PrebuiltBuilderConfig,
    SubprocessExecutorConfig,
)
from boostsec.shard_scheduler.models.report import (
    BatchResult,
    ConsistencyAnomaly,
    ConsolidatedReport,
    ShardStatus,
)
from boostsec.shard_scheduler.models.run_config import RunConfig
from boostsec.shard_scheduler.models.shard import (
    ShardAttempt,
    ShardRunOutput,
    ShardSpec,
)

__all__ = [
    "BatchConfig",
    "BatchResult",
    "BuildArtifactHandle",
    "BuildArtifacts",
    "CommandBuilderConfig",
    "ComponentConfig",
    "ConsistencyAnomaly",
    "ConsolidatedReport",
    "DirectorySinkConfig",
    "HttpExecutorConfig",
    "HttpSinkConfig",
    "PrebuiltBuilderConfig",
    "RunConfig",
    "ShardAttempt",
    "ShardRunOutput",
    "ShardSpec",
    "ShardStatus",
    "SubprocessExecutorConfig",
]
