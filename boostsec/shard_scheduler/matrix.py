"""Generate shard matrices for each test category."""

from boostsec.shard_scheduler.errors import InvalidConfigurationError
from boostsec.shard_scheduler.models.run_config import RunConfig
from boostsec.shard_scheduler.models.shard import Category, ShardSpec

CATEGORIES: tuple[Category, ...] = ("broad", "legacy")


def generate_matrix(category: Category, total_shards: int) -> list[ShardSpec]:
    """Return the ordered shard specs ``1..total_shards`` for a category.

    Args:
        category: Test category being partitioned
        total_shards: Matrix size, must be at least 1

    Returns:
        Shard specs ordered by index

    Raises:
        InvalidConfigurationError: If total_shards is lower than 1

    """
    if total_shards < 1:
        raise InvalidConfigurationError(
            f"Shard count for {category} must be at least 1, got {total_shards}"
        )

    return [
        ShardSpec(category=category, index=index, total=total_shards)
        for index in range(1, total_shards + 1)
    ]


def generate_matrices(config: RunConfig) -> list[ShardSpec]:
    """Return broad shard specs followed by legacy shard specs."""
    return [
        spec
        for category in CATEGORIES
        for spec in generate_matrix(category, config.total_for(category))
    ]
