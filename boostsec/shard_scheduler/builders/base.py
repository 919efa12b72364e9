"""Abstract base class for build collaborators."""

from abc import ABC, abstractmethod

from boostsec.shard_scheduler.models.artifact import BuildArtifactHandle, BuildTarget


class ArtifactBuilder(ABC):
    """Produces the artifacts shards are executed against."""

    @abstractmethod
    async def build(self, target: BuildTarget) -> BuildArtifactHandle:
        """Build one target.

        Args:
            target: Build target to produce

        Returns:
            Handle passed unchanged to every shard

        Raises:
            BuildError: If the artifact could not be produced

        """
