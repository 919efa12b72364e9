"""Remote shard runner service executor."""

import logging
from collections.abc import Mapping

import aiohttp

from boostsec.shard_scheduler.errors import ShardExecutionError
from boostsec.shard_scheduler.executors.base import ShardExecutor, runner_test_type
from boostsec.shard_scheduler.models.artifact import BuildArtifacts
from boostsec.shard_scheduler.models.component_config import HttpExecutorConfig
from boostsec.shard_scheduler.models.run_config import ExecutionMode
from boostsec.shard_scheduler.models.shard import ShardSpec

logger = logging.getLogger(__name__)


class HttpExecutor(ShardExecutor):
    """Dispatches shards to a runner service over HTTP.

    The service accepts ``POST /shards`` and answers ``GET /shards/{id}`` with
    ``{"status": ..., "exit_code": ..., "passed": [...], "failed": [...]}``.
    """

    def __init__(self, config: HttpExecutorConfig) -> None:
        """Initialize HTTP executor with configuration."""
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def dispatch_shard(
        self,
        spec: ShardSpec,
        artifacts: BuildArtifacts,
        mode: ExecutionMode,
    ) -> str:
        """Create a shard run and return its ID."""
        payload = {
            "category": spec.category,
            "index": spec.index,
            "total": spec.total,
            "test_type": runner_test_type(spec, mode),
            "mode": mode,
            "artifacts": {
                "application": artifacts.application.location,
                "native": artifacts.native.location,
            },
        }

        async with aiohttp.ClientSession() as session:
            url = f"{self.base_url}/shards"
            async with session.post(
                url, headers=self._headers(), json=payload
            ) as response:
                if response.status not in {200, 201, 202}:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to dispatch shard: {response.status} {text}"
                    )

                data: Mapping[str, object] = await response.json()

        run_id = data.get("id")
        if not isinstance(run_id, (int, str)) or isinstance(run_id, bool):
            raise RuntimeError("Run ID not found in response")

        return str(run_id)

    async def poll_status(self, run_id: str) -> tuple[bool, Mapping[str, object]]:
        """Fetch the run state and its results so far."""
        try:
            async with aiohttp.ClientSession() as session:
                url = f"{self.base_url}/shards/{run_id}"
                async with session.get(url, headers=self._headers()) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise ShardExecutionError(
                            f"Failed to get shard run: {response.status} {text}"
                        )

                    data: Mapping[str, object] = await response.json()
        except (aiohttp.ClientError, ValueError) as e:
            raise ShardExecutionError(f"Failed to get shard run {run_id}: {e}") from e

        if not isinstance(data, Mapping):
            raise ShardExecutionError(f"Unexpected response for run {run_id}")

        is_complete = data.get("status") == "completed"
        results = {k: v for k, v in data.items() if k != "status"}
        return (is_complete, results)

    async def cancel(self, run_id: str) -> None:
        """Ask the service to stop a run."""
        async with aiohttp.ClientSession() as session:
            url = f"{self.base_url}/shards/{run_id}"
            async with session.delete(url, headers=self._headers()) as response:
                if response.status not in {200, 202, 204, 404}:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to cancel shard run: {response.status} {text}"
                    )
