"""CLI entry point for the shard scheduler."""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import typer

from boostsec.shard_scheduler.builders.base import ArtifactBuilder
from boostsec.shard_scheduler.builders.command import CommandBuilder, PrebuiltBuilder
from boostsec.shard_scheduler.config_loader import load_batch_config
from boostsec.shard_scheduler.executors.base import ShardExecutor
from boostsec.shard_scheduler.executors.http import HttpExecutor
from boostsec.shard_scheduler.executors.process import SubprocessExecutor
from boostsec.shard_scheduler.models.batch_config import ComponentConfig
from boostsec.shard_scheduler.models.component_config import (
    CommandBuilderConfig,
    DirectorySinkConfig,
    HttpExecutorConfig,
    HttpSinkConfig,
    PrebuiltBuilderConfig,
    SubprocessExecutorConfig,
)
from boostsec.shard_scheduler.models.report import BatchResult
from boostsec.shard_scheduler.orchestrator import BatchController
from boostsec.shard_scheduler.sinks.base import ArtifactSink
from boostsec.shard_scheduler.sinks.directory import DirectorySink
from boostsec.shard_scheduler.sinks.http import HttpSink

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,  # Force reconfiguration even if already set up
)
logger = logging.getLogger(__name__)

app = typer.Typer()


@app.command()
def main(  # noqa: PLR0913
    config_file: Path = typer.Option(..., help="Batch configuration YAML file"),  # noqa: B008
    execution_mode: str | None = typer.Option(
        None, help='"development" or "production"'
    ),
    broad_shards: int | None = typer.Option(
        None, help="Size of the broad test matrix (controls parallelism)"
    ),
    legacy_shards: int | None = typer.Option(
        None, help="Size of the legacy test matrix (controls parallelism)"
    ),
    retries: int | None = typer.Option(None, help="Retries per shard"),
    timeout_minutes: float | None = typer.Option(
        None, help="Timeout per shard in minutes"
    ),
    legacy_timeout_minutes: float | None = typer.Option(
        None, help="Timeout per legacy shard in minutes"
    ),
    continue_on_error: bool | None = typer.Option(
        None,
        "--continue-on-error/--no-continue-on-error",
        help="Publish the report even when shards fail",
    ),
    max_workers: int | None = typer.Option(
        None, help="Maximum number of shards running at once"
    ),
    name: str | None = typer.Option(
        None, help="Unique identifier used for uploaded assets"
    ),
) -> None:
    """Run a sharded test batch and publish its consolidated report."""
    logger.info("=" * 80)
    logger.info("Shard Scheduler - Starting")
    logger.info("=" * 80)
    logger.info(f"Config file: {config_file}")
    logger.info(f"Working directory: {Path.cwd()}")

    try:
        batch_config = load_batch_config(config_file)
        run_config = batch_config.run_config(
            name=name,
            execution_mode=execution_mode,
            total_shards_broad=broad_shards,
            total_shards_legacy=legacy_shards,
            retry_budget=retries,
            per_shard_timeout=_minutes(timeout_minutes),
            legacy_shard_timeout=_minutes(legacy_timeout_minutes),
            continue_on_error=continue_on_error,
            max_workers=max_workers,
        )
        builder = _create_builder(batch_config.builder)
        executor = _create_executor(batch_config.executor)
        sink = _create_sink(batch_config.sink)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    controller = BatchController(
        builder, executor, sink, publish_retries=batch_config.publish_retries
    )

    try:
        logger.info("Starting batch...")
        result = asyncio.run(controller.run(run_config))
        logger.info(f"Batch finished in state {result.state}")
    except Exception as e:
        logger.exception("Batch execution failed")
        typer.echo(f"Error running batch: {e}", err=True)
        raise typer.Exit(code=1)

    _log_summary(result)
    typer.echo(json.dumps(_summary(result), indent=2))

    if result.status != "success":
        logger.error(f"Batch failed: {result.message or result.state}")
        raise typer.Exit(code=1)


def _minutes(value: float | None) -> float | None:
    return None if value is None else value * 60


def _log_summary(result: BatchResult) -> None:
    """Log per-shard outcomes of a finished batch."""
    logger.info("=" * 80)
    logger.info("Shard Results Summary:")
    logger.info("=" * 80)
    if result.report is None:
        logger.error(f"✗ No report: {result.message}")
        return

    for status in result.report.shard_statuses:
        line = f"{status.spec.label}: {status.outcome} ({status.attempts} attempts)"
        if status.outcome == "success":
            logger.info(f"✓ {line}")
        else:
            logger.error(f"✗ {line}")
    for anomaly in result.report.anomalies:
        logger.warning(f"! Conflicting results for {anomaly.test_id}")
    if result.report_location:
        logger.info(f"Report: {result.report_location}")


def _summary(result: BatchResult) -> dict[str, object]:
    """Build the JSON summary printed on stdout."""
    report = result.report
    return {
        "name": result.name,
        "status": result.status,
        "state": result.state,
        "report_location": result.report_location,
        "message": result.message,
        "passed": len(report.passed) if report else 0,
        "failed": len(report.failed) if report else 0,
        "flaky": len(report.flaky) if report else 0,
        "anomalies": [a.test_id for a in report.anomalies] if report else [],
        "shards": [
            {
                "category": s.spec.category,
                "index": s.spec.index,
                "total": s.spec.total,
                "outcome": s.outcome,
                "attempts": s.attempts,
                "fatal": s.fatal,
            }
            for s in (report.non_success_shards if report else [])
        ],
    }


def _create_builder(component: ComponentConfig) -> ArtifactBuilder:
    """Create build collaborator based on type and configuration."""
    builder_type = component.type.lower()
    if builder_type == "command":
        return CommandBuilder(CommandBuilderConfig(**component.config))
    elif builder_type == "prebuilt":
        return PrebuiltBuilder(PrebuiltBuilderConfig(**component.config))
    else:
        raise ValueError(
            f"Unknown builder type: {component.type}. Must be one of: command, prebuilt"
        )


def _create_executor(component: ComponentConfig) -> ShardExecutor:
    """Create shard executor based on type and configuration."""
    executor_type = component.type.lower()
    if executor_type == "subprocess":
        return SubprocessExecutor(SubprocessExecutorConfig(**component.config))
    elif executor_type == "http":
        config = HttpExecutorConfig(**_with_env_url(component, "SHARD_RUNNER_URL"))
        return HttpExecutor(config)
    else:
        raise ValueError(
            f"Unknown executor type: {component.type}. Must be one of: subprocess, http"
        )


def _create_sink(component: ComponentConfig) -> ArtifactSink:
    """Create artifact sink based on type and configuration."""
    sink_type = component.type.lower()
    if sink_type == "directory":
        return DirectorySink(DirectorySinkConfig(**component.config))
    elif sink_type == "http":
        config = HttpSinkConfig(**_with_env_url(component, "ARTIFACT_SINK_URL"))
        return HttpSink(config)
    else:
        raise ValueError(
            f"Unknown sink type: {component.type}. Must be one of: directory, http"
        )


def _with_env_url(component: ComponentConfig, env_var: str) -> dict[str, object]:
    """Return component settings with base_url taken from env_var when set."""
    values: dict[str, object] = dict(component.config)
    if env_var in os.environ:
        values["base_url"] = os.environ[env_var]
    return values


if __name__ == "__main__":  # pragma: no cover
    app()
