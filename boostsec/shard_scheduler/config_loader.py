"""Load and parse batch configuration from YAML files."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from boostsec.shard_scheduler.errors import InvalidConfigurationError
from boostsec.shard_scheduler.models.batch_config import BatchConfig


def load_batch_config(config_file: Path) -> BatchConfig:
    """Load the batch configuration file.

    Args:
        config_file: Path to the YAML configuration

    Returns:
        Parsed batch configuration

    Raises:
        InvalidConfigurationError: If the file is missing, is not valid YAML
            or doesn't match the schema

    """
    if not config_file.exists():
        raise InvalidConfigurationError(f"Config file not found: {config_file}")

    try:
        with config_file.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise InvalidConfigurationError(f"Invalid YAML in {config_file}: {e}") from e

    if data is None:
        raise InvalidConfigurationError(f"Empty config file: {config_file}")

    try:
        return BatchConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigurationError(
            f"Invalid batch configuration in {config_file}: {e}"
        ) from e
