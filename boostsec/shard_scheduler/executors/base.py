"""Abstract base class for external shard executors."""

from abc import ABC, abstractmethod
from collections.abc import Mapping

from boostsec.shard_scheduler.models.artifact import BuildArtifacts
from boostsec.shard_scheduler.models.run_config import ExecutionMode
from boostsec.shard_scheduler.models.shard import ShardSpec


def runner_test_type(spec: ShardSpec, mode: ExecutionMode) -> str:
    """Return the runner test type for a shard.

    Broad shards run in the batch's execution mode, legacy shards always run
    the integration suite.
    """
    if spec.category == "legacy":
        return "integration"
    return mode


class ShardExecutor(ABC):
    """Abstract base for runners that execute a shard of the test corpus."""

    @abstractmethod
    async def dispatch_shard(
        self,
        spec: ShardSpec,
        artifacts: BuildArtifacts,
        mode: ExecutionMode,
    ) -> str:
        """Start executing a shard and return a run identifier.

        Args:
            spec: Shard to execute; the runner selects its tests from
                ``(category, index, total)``
            artifacts: Prebuilt artifacts to test against
            mode: Execution mode of the application under test

        Returns:
            Run identifier for polling status

        """

    @abstractmethod
    async def poll_status(self, run_id: str) -> tuple[bool, Mapping[str, object]]:
        """Check whether a run is complete and return its structured output.

        Args:
            run_id: Run identifier from dispatch_shard

        Returns:
            Tuple of (is_complete, payload). While running, the payload holds
            whatever partial results are observable.

        Raises:
            ShardExecutionError: If the runner output cannot be read

        """

    async def cancel(self, run_id: str) -> None:  # noqa: B027
        """Stop a run that is no longer needed. No-op by default."""
