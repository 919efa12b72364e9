"""Publish consolidated reports to an artifact sink."""

import asyncio
import json
import logging

from boostsec.shard_scheduler.errors import SinkError
from boostsec.shard_scheduler.models.report import ConsolidatedReport
from boostsec.shard_scheduler.sinks.base import ArtifactSink

logger = logging.getLogger(__name__)

REPORT_FILE = "test-results.json"
FAILED_LIST_FILE = "failed-test-path-list.json"
PASSED_LIST_FILE = "passed-test-path-list.json"


def artifact_prefix(name: str) -> str:
    """Return the directory all artifacts of a batch are stored under."""
    return f"test-results-{name}"


def serialize_report(report: ConsolidatedReport) -> dict[str, bytes]:
    """Serialize a report into the payloads uploaded for a batch."""
    prefix = artifact_prefix(report.name)
    return {
        f"{prefix}/{REPORT_FILE}": report.model_dump_json(indent=2).encode(),
        f"{prefix}/{FAILED_LIST_FILE}": json.dumps(report.failed, indent=2).encode(),
        f"{prefix}/{PASSED_LIST_FILE}": json.dumps(report.passed, indent=2).encode(),
    }


class ReportPublisher:
    """Hands serialized reports to a sink, retrying failed uploads."""

    def __init__(
        self, sink: ArtifactSink, retries: int = 2, backoff: float = 1.0
    ) -> None:
        """Initialize publisher with a sink and its retry policy."""
        self.sink = sink
        self.retries = retries
        self.backoff = backoff

    async def publish(self, report: ConsolidatedReport) -> str:
        """Publish a report and its raw test id lists.

        Returns:
            Location of the published report

        Raises:
            SinkError: If any payload still fails after all retries

        """
        locations: dict[str, str] = {}
        for name, payload in serialize_report(report).items():
            locations[name] = await self._publish_with_retry(name, payload)

        return locations[f"{artifact_prefix(report.name)}/{REPORT_FILE}"]

    async def _publish_with_retry(self, name: str, payload: bytes) -> str:
        max_attempts = self.retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.sink.publish(name, payload)
            except SinkError as e:
                if attempt >= max_attempts:
                    logger.error(
                        f"Giving up on {name} after {max_attempts} attempts: {e}"
                    )
                    raise
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning(
                    f"Publishing {name} failed (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

        raise SinkError(f"Failed to publish {name}")  # pragma: no cover
