"""Batch controller coordinating builds, shard fan-out and reporting."""

import asyncio
import logging
from enum import Enum

from boostsec.shard_scheduler.aggregator import aggregate
from boostsec.shard_scheduler.builders.base import ArtifactBuilder
from boostsec.shard_scheduler.errors import BuildError, SinkError
from boostsec.shard_scheduler.executors.base import ShardExecutor
from boostsec.shard_scheduler.matrix import generate_matrices
from boostsec.shard_scheduler.models.artifact import (
    BUILD_TARGETS,
    BuildArtifactHandle,
    BuildArtifacts,
)
from boostsec.shard_scheduler.models.report import BatchResult, ConsolidatedReport
from boostsec.shard_scheduler.models.run_config import RunConfig
from boostsec.shard_scheduler.models.shard import ShardAttempt, ShardSpec
from boostsec.shard_scheduler.publisher import ReportPublisher
from boostsec.shard_scheduler.retry import execute_with_retry
from boostsec.shard_scheduler.shard_runner import ShardRunner
from boostsec.shard_scheduler.sinks.base import ArtifactSink

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    """Lifecycle states of a batch."""

    PENDING = "pending"
    BUILDING = "building"
    FANNING_OUT = "fanning_out"
    AWAITING_RESULTS = "awaiting_results"
    AGGREGATING = "aggregating"
    PUBLISHED = "published"
    FAILED = "failed"


_TRANSITIONS: dict[BatchState, set[BatchState]] = {
    BatchState.PENDING: {BatchState.BUILDING},
    BatchState.BUILDING: {BatchState.FANNING_OUT, BatchState.FAILED},
    BatchState.FANNING_OUT: {BatchState.AWAITING_RESULTS, BatchState.FAILED},
    BatchState.AWAITING_RESULTS: {BatchState.AGGREGATING, BatchState.FAILED},
    BatchState.AGGREGATING: {BatchState.PUBLISHED, BatchState.FAILED},
    BatchState.PUBLISHED: set(),
    BatchState.FAILED: set(),
}


class ResultCollector:
    """Append-only store of shard attempts, readable once sealed."""

    def __init__(self) -> None:
        """Initialize an empty collector."""
        self._attempts: list[ShardAttempt] = []
        self._sealed = False

    def record(self, attempt: ShardAttempt) -> None:
        """Store one attempt."""
        if self._sealed:
            raise RuntimeError("Cannot record attempts after the collector is sealed")
        self._attempts.append(attempt)

    def seal(self) -> None:
        """Mark every shard as joined; no further writes are accepted."""
        self._sealed = True

    @property
    def attempts(self) -> tuple[ShardAttempt, ...]:
        """All recorded attempts. Only readable after seal()."""
        if not self._sealed:
            raise RuntimeError("Attempts are only readable after all shards joined")
        return tuple(self._attempts)

    def snapshot(self) -> list[ShardAttempt]:
        """Copy of the attempts recorded so far, for diagnostics."""
        return list(self._attempts)


class BatchController:
    """Runs one batch: build, fan out shards, join, aggregate and publish."""

    def __init__(
        self,
        builder: ArtifactBuilder,
        executor: ShardExecutor,
        sink: ArtifactSink,
        publish_retries: int = 2,
        publish_backoff: float = 1.0,
    ) -> None:
        """Initialize controller with its external collaborators."""
        self.builder = builder
        self.runner = ShardRunner(executor)
        self.publisher = ReportPublisher(
            sink, retries=publish_retries, backoff=publish_backoff
        )
        self.state = BatchState.PENDING
        self.history: list[BatchState] = [BatchState.PENDING]
        self._cancel_requested = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation of every running shard.

        Builds are not interrupted: a request made while building takes
        effect once both artifacts are ready, before any shard is dispatched.
        """
        logger.warning("Batch cancellation requested")
        self._cancel_requested.set()

    async def run(self, config: RunConfig) -> BatchResult:
        """Run a complete batch and return its outcome.

        Raises:
            InvalidConfigurationError: If the shard matrix cannot be generated
            asyncio.CancelledError: If the task running the batch is cancelled

        """
        if self.state is not BatchState.PENDING:
            raise RuntimeError("A BatchController runs a single batch")

        specs = generate_matrices(config)
        logger.info(
            f"Batch {config.name}: {config.total_shards_broad} broad and "
            f"{config.total_shards_legacy} legacy shards, "
            f"mode={config.execution_mode}, retries={config.retry_budget}"
        )

        self._transition(BatchState.BUILDING)
        try:
            artifacts = await self._build_artifacts()
        except BuildError as e:
            logger.error(f"Build failed: {e}")
            self._transition(BatchState.FAILED)
            return self._result(config, message=f"Build failed: {e}")
        except asyncio.CancelledError:
            self._transition(BatchState.FAILED)
            raise

        if self._cancel_requested.is_set():
            self._transition(BatchState.FAILED)
            return self._result(config, message="Batch cancelled")

        self._transition(BatchState.FANNING_OUT)
        collector = ResultCollector()
        semaphore = asyncio.Semaphore(config.max_workers or len(specs))
        tasks = [
            asyncio.create_task(
                self._run_shard(spec, config, artifacts, collector, semaphore),
                name=f"shard-{spec.category}-{spec.index}",
            )
            for spec in specs
        ]
        self._transition(BatchState.AWAITING_RESULTS)

        try:
            results = await self._join(tasks)
        except asyncio.CancelledError:
            await self._abort(tasks)
            raise

        if results is None:
            await self._abort(tasks)
            return self._result(
                config, attempts=collector.snapshot(), message="Batch cancelled"
            )

        for spec, result in zip(specs, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Shard {spec.label} did not complete: "
                    f"{type(result).__name__}: {result}",
                    exc_info=result,
                )
        collector.seal()

        self._transition(BatchState.AGGREGATING)
        report = aggregate(
            collector.attempts,
            expected=specs,
            continue_on_error=config.continue_on_error,
            name=config.name,
            execution_mode=config.execution_mode,
        )
        logger.info(
            f"Aggregated {len(report.passed)} passed and "
            f"{len(report.failed)} failed tests"
        )

        return await self._publish(config, report, list(collector.attempts))

    async def _build_artifacts(self) -> BuildArtifacts:
        """Build every target once, concurrently."""
        results = await asyncio.gather(
            *(self.builder.build(target) for target in BUILD_TARGETS),
            return_exceptions=True,
        )

        handles: dict[str, BuildArtifactHandle] = {}
        errors: list[str] = []
        for target, result in zip(BUILD_TARGETS, results):
            if isinstance(result, BuildArtifactHandle):
                logger.info(f"Artifact {target} ready at {result.location}")
                handles[target] = result
            elif isinstance(result, Exception):
                logger.error(f"Build {target} failed: {result}", exc_info=result)
                errors.append(f"{target}: {result}")
            else:
                raise result

        if errors:
            raise BuildError("; ".join(errors))

        return BuildArtifacts(**handles)

    async def _run_shard(
        self,
        spec: ShardSpec,
        config: RunConfig,
        artifacts: BuildArtifacts,
        collector: ResultCollector,
        semaphore: asyncio.Semaphore,
    ) -> ShardAttempt:
        """Run a shard with retries, recording every attempt."""

        async def attempt(shard: ShardSpec, attempt_number: int) -> ShardAttempt:
            result = await self.runner.run(shard, config, artifacts, attempt_number)
            collector.record(result)
            return result

        async with semaphore:
            return await execute_with_retry(spec, config.retry_budget, attempt)

    async def _join(
        self, tasks: list["asyncio.Task[ShardAttempt]"]
    ) -> list[ShardAttempt | BaseException] | None:
        """Wait for every shard task, or return None if cancelled first."""
        gathered = asyncio.gather(*tasks, return_exceptions=True)
        cancel_waiter = asyncio.create_task(self._cancel_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {gathered, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_waiter.cancel()

        if gathered in done:
            return list(gathered.result())
        return None

    async def _abort(self, tasks: list["asyncio.Task[ShardAttempt]"]) -> None:
        """Cancel running shard tasks and move the batch to failed."""
        running = [task for task in tasks if not task.done()]
        logger.warning(f"Cancelling {len(running)} running shards")
        for task in running:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._transition(BatchState.FAILED)

    async def _publish(
        self,
        config: RunConfig,
        report: ConsolidatedReport,
        attempts: list[ShardAttempt],
    ) -> BatchResult:
        """Publish the report and settle the final batch state."""
        try:
            location = await self.publisher.publish(report)
        except SinkError as e:
            logger.error(f"Report could not be published: {e}")
            self._transition(BatchState.FAILED)
            return self._result(
                config,
                report=report,
                attempts=attempts,
                message=f"Report could not be published: {e}",
            )

        logger.info(f"Report published at {location}")
        message = None
        if report.has_fatal_shards:
            self._transition(BatchState.FAILED)
        else:
            self._transition(BatchState.PUBLISHED)

        if report.non_success_shards:
            labels = ", ".join(
                f"{s.spec.label} ({s.outcome})" for s in report.non_success_shards
            )
            message = f"Shards without success: {labels}"

        return BatchResult(
            name=config.name,
            status=report.status,
            state=self.state.value,
            report=report,
            report_location=location,
            attempts=attempts,
            message=message,
        )

    def _result(
        self,
        config: RunConfig,
        report: ConsolidatedReport | None = None,
        attempts: list[ShardAttempt] | None = None,
        message: str | None = None,
    ) -> BatchResult:
        """Failure result for a batch that ended early."""
        return BatchResult(
            name=config.name,
            status="failure",
            state=self.state.value,
            report=report,
            attempts=attempts or [],
            message=message,
        )

    def _transition(self, new_state: BatchState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid batch transition: {self.state.value} -> {new_state.value}"
            )
        logger.info(f"Batch state: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
