"""Execute a single shard attempt against prebuilt artifacts."""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from pydantic import ValidationError

from boostsec.shard_scheduler.errors import ShardExecutionError
from boostsec.shard_scheduler.executors.base import ShardExecutor
from boostsec.shard_scheduler.models.artifact import BuildArtifacts
from boostsec.shard_scheduler.models.run_config import RunConfig
from boostsec.shard_scheduler.models.shard import (
    AttemptOutcome,
    ShardAttempt,
    ShardRunOutput,
    ShardSpec,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ShardRunner:
    """Runs one shard attempt on an executor and turns it into a ShardAttempt."""

    def __init__(self, executor: ShardExecutor) -> None:
        """Initialize runner with the executor shards are dispatched to."""
        self.executor = executor

    async def run(
        self,
        spec: ShardSpec,
        config: RunConfig,
        artifacts: BuildArtifacts,
        attempt_number: int = 1,
    ) -> ShardAttempt:
        """Execute one attempt of a shard.

        Dispatch errors propagate, since the shard never started. Everything
        that happens after dispatch is reported through the attempt outcome.
        """
        started_at = _now()
        logger.info(f"Dispatching shard {spec.label} (attempt {attempt_number})")
        run_id = await self.executor.dispatch_shard(
            spec, artifacts, config.execution_mode
        )
        logger.info(f"Shard {spec.label} dispatched with run_id: {run_id}")

        timeout = config.timeout_for(spec.category)
        loop = asyncio.get_running_loop()
        end_time = loop.time() + timeout
        partial: Mapping[str, object] = {}

        try:
            while True:
                remaining = end_time - loop.time()
                if remaining <= 0:
                    raise TimeoutError
                is_complete, payload = await asyncio.wait_for(
                    self.executor.poll_status(run_id), remaining
                )
                if is_complete:
                    return self._completed_attempt(
                        spec, attempt_number, payload, started_at
                    )
                partial = payload

                remaining = end_time - loop.time()
                if remaining <= 0:
                    raise TimeoutError
                await asyncio.sleep(min(config.poll_interval, remaining))
        except TimeoutError:
            logger.warning(
                f"Shard {spec.label} did not complete within {timeout} seconds"
            )
            await self._cancel_quietly(run_id)
            return self._timed_out_attempt(spec, attempt_number, partial, started_at)
        except asyncio.CancelledError:
            await self._cancel_quietly(run_id)
            raise
        except ShardExecutionError as e:
            logger.error(f"Shard {spec.label} execution error: {e}")
            return self._failed_attempt(spec, attempt_number, str(e), started_at)
        except Exception as e:
            logger.exception(f"Shard {spec.label} polling failed")
            await self._cancel_quietly(run_id)
            return self._failed_attempt(
                spec, attempt_number, f"{type(e).__name__}: {e}", started_at
            )

    def _completed_attempt(
        self,
        spec: ShardSpec,
        attempt_number: int,
        payload: Mapping[str, object],
        started_at: datetime,
    ) -> ShardAttempt:
        """Build the attempt for a run that finished."""
        try:
            output = ShardRunOutput.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Shard {spec.label} returned malformed results: {e}")
            return self._failed_attempt(
                spec, attempt_number, f"Malformed runner output: {e}", started_at
            )

        if output.exit_code is None:
            return self._failed_attempt(
                spec, attempt_number, "Runner reported no exit status", started_at
            )

        outcome: AttemptOutcome = (
            "success" if output.exit_code == 0 and not output.failed else "failure"
        )
        logger.info(
            f"Shard {spec.label} attempt {attempt_number} = {outcome} "
            f"({len(output.passed)} passed, {len(output.failed)} failed)"
        )
        return ShardAttempt(
            spec=spec,
            attempt_number=attempt_number,
            outcome=outcome,
            passed=frozenset(output.passed),
            failed=frozenset(output.failed),
            exit_code=output.exit_code,
            started_at=started_at,
            finished_at=_now(),
        )

    def _timed_out_attempt(
        self,
        spec: ShardSpec,
        attempt_number: int,
        partial: Mapping[str, object],
        started_at: datetime,
    ) -> ShardAttempt:
        """Build a timed out attempt keeping the partial results observed."""
        try:
            output = ShardRunOutput.model_validate(partial)
        except ValidationError:
            output = ShardRunOutput()

        return ShardAttempt(
            spec=spec,
            attempt_number=attempt_number,
            outcome="timed_out",
            passed=frozenset(output.passed),
            failed=frozenset(output.failed),
            note="Shard exceeded its timeout",
            started_at=started_at,
            finished_at=_now(),
        )

    def _failed_attempt(
        self, spec: ShardSpec, attempt_number: int, note: str, started_at: datetime
    ) -> ShardAttempt:
        return ShardAttempt(
            spec=spec,
            attempt_number=attempt_number,
            outcome="failure",
            note=note,
            started_at=started_at,
            finished_at=_now(),
        )

    async def _cancel_quietly(self, run_id: str) -> None:
        """Ask the executor to stop a run, logging instead of raising."""
        try:
            await self.executor.cancel(run_id)
        except Exception:
            logger.exception(f"Failed to cancel run {run_id}")
