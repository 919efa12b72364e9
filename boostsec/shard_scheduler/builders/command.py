"""Build artifacts by running local commands."""

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from boostsec.shard_scheduler.builders.base import ArtifactBuilder
from boostsec.shard_scheduler.errors import BuildError
from boostsec.shard_scheduler.models.artifact import BuildArtifactHandle, BuildTarget
from boostsec.shard_scheduler.models.component_config import (
    CommandBuilderConfig,
    PrebuiltBuilderConfig,
)

logger = logging.getLogger(__name__)


class CommandBuilder(ArtifactBuilder):
    """Runs one build command per target."""

    def __init__(self, config: CommandBuilderConfig) -> None:
        """Initialize builder with configuration."""
        self.config = config

    async def build(self, target: BuildTarget) -> BuildArtifactHandle:
        """Run the target's build command and return its artifact handle."""
        argv = self.config.commands.get(target)
        location = self.config.artifacts.get(target)
        if not argv or location is None:
            raise BuildError(f"No build command configured for target: {target}")

        env = dict(os.environ)
        env.update(self.config.env)

        logger.info(f"Building {target}: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.config.cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BuildError(f"Failed to start build for {target}: {e}") from e

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip()
            logger.error(f"Build {target} failed with exit code {process.returncode}")
            logger.error(f"Build stderr: {error_msg}")
            raise BuildError(
                f"Build for {target} failed with exit code "
                f"{process.returncode}: {error_msg}"
            )

        if stdout:
            logger.debug(stdout.decode(errors="replace").strip())

        return _existing_handle(target, location, self.config.cwd)


class PrebuiltBuilder(ArtifactBuilder):
    """Hands out artifacts that were built before the batch started."""

    def __init__(self, config: PrebuiltBuilderConfig) -> None:
        """Initialize builder with configuration."""
        self.config = config

    async def build(self, target: BuildTarget) -> BuildArtifactHandle:
        """Return the handle of an existing artifact."""
        location = self.config.artifacts.get(target)
        if location is None:
            raise BuildError(f"No prebuilt artifact configured for target: {target}")

        logger.info(f"Using prebuilt {target} artifact: {location}")
        return _existing_handle(target, location, None)


def _existing_handle(
    target: BuildTarget, location: str, cwd: str | None
) -> BuildArtifactHandle:
    """Return a handle for an artifact, checking that it exists on disk."""
    path = Path(location)
    if not path.is_absolute() and cwd is not None:
        path = Path(cwd) / path

    if not path.exists():
        raise BuildError(f"Artifact for {target} not found: {path}")

    return BuildArtifactHandle(
        target=target,
        location=str(path.resolve()),
        built_at=datetime.now(timezone.utc),
    )
