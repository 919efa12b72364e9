"""Model for the batch configuration file."""

from typing import Any

from pydantic import BaseModel, Field, ValidationError

from boostsec.shard_scheduler.errors import InvalidConfigurationError
from boostsec.shard_scheduler.models.run_config import RunConfig


class ComponentConfig(BaseModel):
    """Selects a collaborator implementation and its settings."""

    type: str = Field(..., description="Implementation name")
    config: dict[str, Any] = Field(
        default_factory=dict, description="Implementation specific settings"
    )


class BatchConfig(BaseModel):
    """Complete batch configuration loaded from YAML."""

    run: dict[str, Any] = Field(
        default_factory=dict, description="RunConfig fields, before overrides"
    )
    builder: ComponentConfig
    executor: ComponentConfig
    sink: ComponentConfig
    publish_retries: int = Field(
        default=2, ge=0, description="Retries for each artifact upload"
    )

    def run_config(self, **overrides: object) -> RunConfig:
        """Build the RunConfig, applying overrides that are not None.

        Raises:
            InvalidConfigurationError: If the resulting settings are invalid

        """
        values = dict(self.run)
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return RunConfig.model_validate(values)
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid run settings: {e}") from e
