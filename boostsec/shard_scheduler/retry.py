"""Bounded retry policy for a single shard."""

import logging
from collections.abc import Awaitable, Callable

from boostsec.shard_scheduler.errors import InvalidConfigurationError
from boostsec.shard_scheduler.models.shard import ShardAttempt, ShardSpec

logger = logging.getLogger(__name__)

ShardRun = Callable[[ShardSpec, int], Awaitable[ShardAttempt]]


async def execute_with_retry(
    spec: ShardSpec, retry_budget: int, run: ShardRun
) -> ShardAttempt:
    """Run a shard until it succeeds or the retry budget is exhausted.

    Attempts are sequential. ``failure`` and ``timed_out`` outcomes are
    retried, ``success`` stops immediately. When every attempt fails the last
    attempt is returned unchanged.

    Args:
        spec: Shard to execute
        retry_budget: Retries allowed after the first attempt
        run: Callable performing one attempt, given the spec and attempt number

    Returns:
        The terminal attempt

    Raises:
        InvalidConfigurationError: If retry_budget is negative

    """
    if retry_budget < 0:
        raise InvalidConfigurationError(
            f"Retry budget must not be negative, got {retry_budget}"
        )

    max_attempts = retry_budget + 1
    attempt_number = 1
    while True:
        attempt = await run(spec, attempt_number)
        if attempt.outcome == "success":
            if attempt_number > 1:
                logger.info(f"Shard {spec.label} passed on attempt {attempt_number}")
            return attempt

        if attempt_number >= max_attempts:
            logger.warning(
                f"Shard {spec.label} exhausted {max_attempts} attempts: "
                f"{attempt.outcome}"
            )
            return attempt

        logger.info(
            f"Shard {spec.label} attempt {attempt_number}/{max_attempts} "
            f"ended with {attempt.outcome}, retrying"
        )
        attempt_number += 1
