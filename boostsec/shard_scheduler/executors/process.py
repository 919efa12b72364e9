"""Local process shard executor."""

import asyncio
import json
import logging
import os
import re
import uuid
from collections.abc import Mapping
from pathlib import Path

from boostsec.shard_scheduler.errors import ShardExecutionError
from boostsec.shard_scheduler.executors.base import ShardExecutor, runner_test_type
from boostsec.shard_scheduler.models.artifact import BuildArtifacts
from boostsec.shard_scheduler.models.component_config import SubprocessExecutorConfig
from boostsec.shard_scheduler.models.run_config import ExecutionMode
from boostsec.shard_scheduler.models.shard import ShardSpec

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _expand(part: str, values: Mapping[str, object]) -> str:
    """Substitute known {placeholders}, leaving any other braces untouched."""
    return _PLACEHOLDER.sub(
        lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
        part,
    )


class SubprocessExecutor(ShardExecutor):
    """Runs each shard as a local command that writes a JSON results file.

    The results file holds ``{"passed": [...], "failed": [...]}``. It may be
    rewritten while the command runs; its latest content is reported as the
    partial result.
    """

    def __init__(self, config: SubprocessExecutorConfig) -> None:
        """Initialize executor with configuration."""
        self.config = config
        self._runs: dict[str, tuple[asyncio.subprocess.Process, Path]] = {}

    async def dispatch_shard(
        self,
        spec: ShardSpec,
        artifacts: BuildArtifacts,
        mode: ExecutionMode,
    ) -> str:
        """Start the runner command and return a run ID."""
        run_id = f"{spec.category}-{spec.index}-{uuid.uuid4().hex[:8]}"
        results_dir = Path(self.config.results_dir)
        results_dir.mkdir(parents=True, exist_ok=True)
        results_file = (results_dir / f"{run_id}.json").resolve()

        values = {
            "category": spec.category,
            "index": spec.index,
            "total": spec.total,
            "test_type": runner_test_type(spec, mode),
            "mode": mode,
            "results_file": str(results_file),
        }
        argv = [_expand(part, values) for part in self.config.command]

        env = dict(os.environ)
        env.update(
            {
                "SHARD_CATEGORY": spec.category,
                "SHARD_INDEX": str(spec.index),
                "SHARD_TOTAL": str(spec.total),
                "SHARD_TEST_TYPE": str(values["test_type"]),
                "SHARD_RESULTS_FILE": str(results_file),
                "EXECUTION_MODE": mode,
                "APPLICATION_ARTIFACT": artifacts.application.location,
                "NATIVE_ARTIFACT": artifacts.native.location,
                "TEST_CONTINUE_ON_ERROR": "TRUE",
            }
        )
        env.update(self.config.env)

        logger.info(f"Running: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv, cwd=self.config.cwd, env=env
            )
        except OSError as e:
            raise RuntimeError(f"Failed to start shard runner: {e}") from e

        self._runs[run_id] = (process, results_file)
        return run_id

    async def poll_status(self, run_id: str) -> tuple[bool, Mapping[str, object]]:
        """Check whether the runner process exited and read its results.

        A run is forgotten, and its results file removed, once it is reported
        complete or fails to produce results.
        """
        process, results_file = self._get_run(run_id)

        if process.returncode is None:
            return (False, self._read_partial(results_file))

        try:
            if not results_file.exists():
                raise ShardExecutionError(
                    f"Runner exited with code {process.returncode} "
                    f"without writing {results_file}"
                )

            data = self._read_results(results_file)
        finally:
            self._release(run_id)
        return (True, {**data, "exit_code": process.returncode})

    async def cancel(self, run_id: str) -> None:
        """Kill the runner process if it is still running."""
        run = self._runs.get(run_id)
        if run is None:
            return

        process, _ = run
        if process.returncode is None:
            logger.info(f"Killing runner process for {run_id}")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        self._release(run_id)

    def _get_run(self, run_id: str) -> tuple[asyncio.subprocess.Process, Path]:
        try:
            return self._runs[run_id]
        except KeyError:
            raise ShardExecutionError(f"Unknown run: {run_id}") from None

    def _release(self, run_id: str) -> None:
        run = self._runs.pop(run_id, None)
        if run is not None:
            run[1].unlink(missing_ok=True)

    def _read_results(self, results_file: Path) -> dict[str, object]:
        """Read a complete results file."""
        try:
            data = json.loads(results_file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ShardExecutionError(
                f"Unreadable results in {results_file}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise ShardExecutionError(
                f"Results in {results_file} must be a JSON object"
            )
        return data

    def _read_partial(self, results_file: Path) -> dict[str, object]:
        """Read results written so far; an unreadable file means none yet."""
        if not results_file.exists():
            return {}
        try:
            return self._read_results(results_file)
        except ShardExecutionError:
            return {}
