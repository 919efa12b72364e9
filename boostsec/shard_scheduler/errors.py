"""Error types raised by the shard scheduler."""


class InvalidConfigurationError(ValueError):
    """Batch configuration is unusable (bad shard counts, budgets, timeouts)."""


class BuildError(RuntimeError):
    """The build collaborator failed to produce an artifact."""


class ShardExecutionError(RuntimeError):
    """The external runner produced output that cannot be interpreted."""


class SinkError(RuntimeError):
    """The artifact sink rejected or failed to store a payload."""
