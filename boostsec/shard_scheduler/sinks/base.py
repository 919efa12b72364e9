"""Abstract base class for artifact sinks."""

from abc import ABC, abstractmethod


class ArtifactSink(ABC):
    """Stores published batch artifacts."""

    @abstractmethod
    async def publish(self, name: str, payload: bytes) -> str:
        """Store a payload under a name.

        Args:
            name: Artifact name, may contain ``/`` separated path segments
            payload: Serialized artifact content

        Returns:
            Location of the stored artifact

        Raises:
            SinkError: If the payload could not be stored

        """
