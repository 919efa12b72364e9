"""Tests for the batch controller."""

import asyncio
from collections.abc import Mapping
from unittest.mock import AsyncMock

import pytest

from boostsec.shard_scheduler.builders.base import ArtifactBuilder
from boostsec.shard_scheduler.errors import BuildError, SinkError
from boostsec.shard_scheduler.executors.base import ShardExecutor
from boostsec.shard_scheduler.models.artifact import (
    BuildArtifactHandle,
    BuildArtifacts,
    BuildTarget,
)
from boostsec.shard_scheduler.models.run_config import ExecutionMode, RunConfig
from boostsec.shard_scheduler.models.shard import ShardSpec
from boostsec.shard_scheduler.orchestrator import (
    BatchController,
    BatchState,
    ResultCollector,
)
from boostsec.shard_scheduler.sinks.base import ArtifactSink

HANG = "hang"

Behavior = Mapping[str, object] | Exception | str

BROAD_1 = ShardSpec(category="broad", index=1, total=2)
BROAD_2 = ShardSpec(category="broad", index=2, total=2)
LEGACY_1 = ShardSpec(category="legacy", index=1, total=1)


def passed(*test_ids: str) -> dict[str, object]:
    """Completed payload with passing tests."""
    return {"exit_code": 0, "passed": list(test_ids), "failed": []}


def failed(*test_ids: str) -> dict[str, object]:
    """Completed payload with failing tests."""
    return {"exit_code": 1, "passed": [], "failed": list(test_ids)}


class FakeBuilder(ArtifactBuilder):
    """Builder returning handles for every target."""

    def __init__(self) -> None:
        """Initialize builder with a build mock."""
        self.build_mock = AsyncMock(
            side_effect=lambda target: BuildArtifactHandle(
                target=target, location=f"/build/{target}"
            )
        )

    async def build(self, target: BuildTarget) -> BuildArtifactHandle:
        """Mock build."""
        result: BuildArtifactHandle = await self.build_mock(target)
        return result


class FakeExecutor(ShardExecutor):
    """Executor replaying one behavior per dispatch of each shard.

    The last behavior of a shard repeats for further dispatches.
    """

    def __init__(self, behaviors: dict[ShardSpec, list[Behavior]]) -> None:
        """Initialize executor with per-shard behaviors."""
        self.behaviors = behaviors
        self.runs: dict[str, Behavior] = {}
        self.dispatched: list[ShardSpec] = []
        self.cancel_mock = AsyncMock()
        self.running = 0
        self.max_running = 0

    async def dispatch_shard(
        self, spec: ShardSpec, artifacts: BuildArtifacts, mode: ExecutionMode
    ) -> str:
        """Start a fake run."""
        script = self.behaviors.get(spec, [passed()])
        behavior = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(behavior, Exception):
            raise behavior

        self.dispatched.append(spec)
        run_id = f"{spec.category}-{spec.index}-{len(self.dispatched)}"
        self.runs[run_id] = behavior
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        return run_id

    async def poll_status(self, run_id: str) -> tuple[bool, Mapping[str, object]]:
        """Report the fake run state."""
        await asyncio.sleep(0)
        behavior = self.runs[run_id]
        if behavior == HANG:
            return (False, {})
        self.running -= 1
        assert isinstance(behavior, Mapping)
        return (True, behavior)

    async def cancel(self, run_id: str) -> None:
        """Mock cancel."""
        self.running -= 1
        await self.cancel_mock(run_id)


class MemorySink(ArtifactSink):
    """Sink storing payloads in memory."""

    def __init__(self) -> None:
        """Initialize sink."""
        self.payloads: dict[str, bytes] = {}
        self.publish_mock = AsyncMock(return_value=None)

    async def publish(self, name: str, payload: bytes) -> str:
        """Store payload."""
        await self.publish_mock(name, payload)
        self.payloads[name] = payload
        return f"mem://{name}"


def make_config(**overrides: object) -> RunConfig:
    """Create a fast run config."""
    values: dict[str, object] = {
        "name": "unit",
        "execution_mode": "development",
        "total_shards_broad": 2,
        "total_shards_legacy": 1,
        "retry_budget": 1,
        "per_shard_timeout": 5,
        "poll_interval": 0.01,
        "continue_on_error": True,
    }
    values.update(overrides)
    return RunConfig.model_validate(values)


def make_controller(
    executor: FakeExecutor,
    builder: FakeBuilder | None = None,
    sink: MemorySink | None = None,
) -> BatchController:
    """Create a controller with fast publish retries."""
    return BatchController(
        builder or FakeBuilder(),
        executor,
        sink or MemorySink(),
        publish_retries=1,
        publish_backoff=0,
    )


async def test_run_all_shards_succeed() -> None:
    """run publishes a successful report when every shard passes."""
    builder = FakeBuilder()
    sink = MemorySink()
    executor = FakeExecutor(
        {
            BROAD_1: [passed("a")],
            BROAD_2: [passed("b")],
            LEGACY_1: [passed("c")],
        }
    )
    controller = make_controller(executor, builder, sink)

    result = await controller.run(make_config())

    assert result.status == "success"
    assert result.state == "published"
    assert result.report is not None
    assert result.report.passed == ["a", "b", "c"]
    assert result.report_location == "mem://test-results-unit/test-results.json"
    assert "test-results-unit/passed-test-path-list.json" in sink.payloads
    assert controller.history == [
        BatchState.PENDING,
        BatchState.BUILDING,
        BatchState.FANNING_OUT,
        BatchState.AWAITING_RESULTS,
        BatchState.AGGREGATING,
        BatchState.PUBLISHED,
    ]
    assert sorted(c.args[0] for c in builder.build_mock.await_args_list) == [
        "application",
        "native",
    ]


async def test_run_retry_scenario_with_continue_on_error() -> None:
    """A retried shard succeeds, an exhausted one fails the batch."""
    executor = FakeExecutor(
        {
            BROAD_1: [failed("a"), passed("a", "b")],
            BROAD_2: [failed("c"), failed("c")],
            LEGACY_1: [passed("d")],
        }
    )
    controller = make_controller(executor)

    result = await controller.run(make_config(continue_on_error=True))

    assert result.status == "failure"
    assert result.state == "published"
    report = result.report
    assert report is not None
    shard_1 = report.status_for(BROAD_1)
    shard_2 = report.status_for(BROAD_2)
    assert shard_1 is not None
    assert shard_2 is not None
    assert (shard_1.outcome, shard_1.attempts) == ("success", 2)
    assert (shard_2.outcome, shard_2.attempts) == ("failure", 2)
    assert not shard_2.fatal
    assert report.passed == ["a", "b", "d"]
    assert report.failed == ["c"]
    assert report.flaky == ["a"]
    assert len(result.attempts) == 5
    assert result.message is not None
    assert "broad 2/2 (failure)" in result.message


async def test_run_failed_shard_without_continue_on_error() -> None:
    """A failed shard is fatal without continue-on-error."""
    executor = FakeExecutor({BROAD_2: [failed("c")]})
    controller = make_controller(executor)

    result = await controller.run(make_config(continue_on_error=False))

    assert result.status == "failure"
    assert result.state == "failed"
    assert controller.history[-2:] == [BatchState.AGGREGATING, BatchState.FAILED]
    assert result.report is not None
    assert result.report.failed == ["c"]


async def test_run_missing_shard_fails_batch() -> None:
    """A shard that never starts is missing and fails the batch."""
    executor = FakeExecutor(
        {
            BROAD_1: [passed("a")],
            BROAD_2: [RuntimeError("infrastructure outage")],
            LEGACY_1: [passed("c")],
        }
    )
    controller = make_controller(executor)

    result = await controller.run(make_config(continue_on_error=False))

    assert result.status == "failure"
    assert result.state == "failed"
    assert result.report is not None
    missing = result.report.status_for(BROAD_2)
    assert missing is not None
    assert missing.outcome == "missing"
    assert result.report.passed == ["a", "c"]


async def test_run_poll_error_is_retried_failure() -> None:
    """A shard whose polling breaks is retried and reported as failed."""

    class BrokenPollExecutor(FakeExecutor):
        async def poll_status(
            self, run_id: str
        ) -> tuple[bool, Mapping[str, object]]:
            if run_id.startswith("broad-2"):
                raise OSError("connection reset")
            return await super().poll_status(run_id)

    executor = BrokenPollExecutor({})
    controller = make_controller(executor)

    result = await controller.run(make_config(continue_on_error=True))

    assert result.state == "published"
    assert result.status == "failure"
    assert result.report is not None
    status = result.report.status_for(BROAD_2)
    assert status is not None
    assert (status.outcome, status.attempts, status.fatal) == ("failure", 2, False)
    assert executor.cancel_mock.await_count == 2


async def test_run_timeout_scenario() -> None:
    """A shard exceeding its timeout twice ends timed out."""
    executor = FakeExecutor({LEGACY_1: [HANG]})
    controller = make_controller(executor)

    result = await controller.run(
        make_config(legacy_shard_timeout=0.05, retry_budget=1)
    )

    assert result.report is not None
    status = result.report.status_for(LEGACY_1)
    assert status is not None
    assert status.outcome == "timed_out"
    assert status.attempts == 2
    assert executor.cancel_mock.await_count == 2
    assert result.status == "failure"


async def test_run_build_failure_aborts_before_fan_out() -> None:
    """A build error fails the batch before any shard runs."""
    builder = FakeBuilder()
    builder.build_mock.side_effect = BuildError("native toolchain missing")
    executor = FakeExecutor({})
    controller = make_controller(executor, builder)

    result = await controller.run(make_config())

    assert result.status == "failure"
    assert result.state == "failed"
    assert "native toolchain missing" in (result.message or "")
    assert controller.history == [
        BatchState.PENDING,
        BatchState.BUILDING,
        BatchState.FAILED,
    ]
    assert executor.dispatched == []
    assert builder.build_mock.await_count == 2


async def test_run_sink_failure_fails_batch() -> None:
    """A report that cannot be published fails an otherwise green batch."""
    sink = MemorySink()
    sink.publish_mock.side_effect = SinkError("bucket unavailable")
    controller = make_controller(FakeExecutor({}), sink=sink)

    result = await controller.run(make_config())

    assert result.status == "failure"
    assert result.state == "failed"
    assert result.report is not None
    assert result.report.status == "success"
    assert result.report_location is None
    assert sink.publish_mock.await_count == 2


async def test_cancel_while_building_skips_fan_out() -> None:
    """A cancel requested during the build stops the batch before dispatch."""
    release = asyncio.Event()
    builder = FakeBuilder()

    async def slow_build(target: BuildTarget) -> BuildArtifactHandle:
        await release.wait()
        return BuildArtifactHandle(target=target, location=f"/build/{target}")

    builder.build_mock.side_effect = slow_build
    executor = FakeExecutor({})
    controller = make_controller(executor, builder)

    task = asyncio.create_task(controller.run(make_config()))
    while controller.state is not BatchState.BUILDING:
        await asyncio.sleep(0)
    controller.cancel()
    release.set()
    result = await task

    assert result.state == "failed"
    assert result.message == "Batch cancelled"
    assert builder.build_mock.await_count == 2
    assert executor.dispatched == []
    assert controller.history == [
        BatchState.PENDING,
        BatchState.BUILDING,
        BatchState.FAILED,
    ]


async def test_cancel_stops_running_shards() -> None:
    """cancel fails the batch, stops shards and skips aggregation."""
    executor = FakeExecutor({BROAD_1: [passed("a")], BROAD_2: [HANG], LEGACY_1: [HANG]})
    controller = make_controller(executor)

    async def cancel_soon() -> None:
        while not executor.cancel_mock.called and len(executor.dispatched) < 3:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        controller.cancel()

    canceller = asyncio.create_task(cancel_soon())
    result = await controller.run(make_config(per_shard_timeout=30))
    await canceller

    assert result.status == "failure"
    assert result.state == "failed"
    assert result.report is None
    assert result.message == "Batch cancelled"
    assert [a.spec for a in result.attempts] == [BROAD_1]
    assert executor.cancel_mock.await_count == 2
    assert BatchState.AGGREGATING not in controller.history


async def test_external_cancellation_propagates() -> None:
    """Cancelling the batch task cancels shards and re-raises."""
    executor = FakeExecutor({BROAD_1: [HANG], BROAD_2: [HANG], LEGACY_1: [HANG]})
    controller = make_controller(executor)

    task = asyncio.create_task(controller.run(make_config(per_shard_timeout=30)))
    while len(executor.dispatched) < 3:
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert controller.state is BatchState.FAILED
    assert executor.cancel_mock.await_count == 3


async def test_max_workers_bounds_concurrency() -> None:
    """max_workers limits how many shards run at once."""
    executor = FakeExecutor({})
    controller = make_controller(executor)

    result = await controller.run(
        make_config(total_shards_broad=4, total_shards_legacy=3, max_workers=2)
    )

    assert result.status == "success"
    assert len(executor.dispatched) == 7
    assert executor.max_running <= 2


async def test_controller_runs_single_batch() -> None:
    """A controller refuses to run a second batch."""
    controller = make_controller(FakeExecutor({}))
    await controller.run(make_config())

    with pytest.raises(RuntimeError, match="single batch"):
        await controller.run(make_config())


def test_result_collector_reads_only_after_seal() -> None:
    """ResultCollector refuses reads before and writes after sealing."""
    collector = ResultCollector()

    with pytest.raises(RuntimeError, match="after all shards joined"):
        _ = collector.attempts

    collector.seal()
    assert collector.attempts == ()
