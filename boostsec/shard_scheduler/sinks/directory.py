"""Artifact sink writing to a local directory."""

import logging
from pathlib import Path, PurePosixPath

from boostsec.shard_scheduler.errors import SinkError
from boostsec.shard_scheduler.models.component_config import DirectorySinkConfig
from boostsec.shard_scheduler.sinks.base import ArtifactSink

logger = logging.getLogger(__name__)


class DirectorySink(ArtifactSink):
    """Stores artifacts as files below a root directory."""

    def __init__(self, config: DirectorySinkConfig) -> None:
        """Initialize sink with configuration."""
        self.config = config
        self.root = Path(config.root)

    async def publish(self, name: str, payload: bytes) -> str:
        """Write the payload to ``<root>/<name>``."""
        relative = PurePosixPath(name)
        if relative.is_absolute() or ".." in relative.parts:
            raise SinkError(f"Invalid artifact name: {name}")

        target = self.root.joinpath(*relative.parts)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as e:
            raise SinkError(f"Failed to write {target}: {e}") from e

        logger.info(f"Stored artifact {name} at {target}")
        return str(target.resolve())
