"""Artifact sink uploading to an HTTP artifact store."""

import logging

import aiohttp

from boostsec.shard_scheduler.errors import SinkError
from boostsec.shard_scheduler.models.component_config import HttpSinkConfig
from boostsec.shard_scheduler.sinks.base import ArtifactSink

logger = logging.getLogger(__name__)


class HttpSink(ArtifactSink):
    """Uploads each artifact with ``PUT <base_url>/<name>``."""

    def __init__(self, config: HttpSinkConfig) -> None:
        """Initialize HTTP sink with configuration."""
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    async def publish(self, name: str, payload: bytes) -> str:
        """Upload the payload and return its URL."""
        url = f"{self.base_url}/{name.lstrip('/')}"
        headers = {"Content-Type": "application/octet-stream"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.put(url, headers=headers, data=payload) as response:
                    if response.status not in {200, 201, 204}:
                        text = await response.text()
                        raise SinkError(
                            f"Failed to upload {name}: {response.status} {text}"
                        )
        except aiohttp.ClientError as e:
            raise SinkError(f"Failed to upload {name}: {e}") from e

        logger.info(f"Uploaded artifact {name} to {url}")
        return url
