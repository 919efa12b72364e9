"""Fold shard attempts into a consolidated batch report."""

import logging
from collections import defaultdict
from collections.abc import Iterable

from boostsec.shard_scheduler.models.report import (
    BatchStatus,
    ConsistencyAnomaly,
    ConsolidatedReport,
    ShardOutcome,
    ShardStatus,
)
from boostsec.shard_scheduler.models.run_config import ExecutionMode
from boostsec.shard_scheduler.models.shard import ShardAttempt, ShardSpec

logger = logging.getLogger(__name__)


def _attempt_key(attempt: ShardAttempt) -> tuple[int, str, str]:
    # Later attempts win; ties are broken on content so input order never matters.
    return (
        attempt.attempt_number,
        attempt.finished_at.isoformat(),
        attempt.model_dump_json(),
    )


def _sorted_specs(specs: Iterable[ShardSpec]) -> list[ShardSpec]:
    return sorted(specs, key=ShardSpec.sort_key)


def _is_fatal(outcome: ShardOutcome, continue_on_error: bool) -> bool:
    if outcome == "success":
        return False
    if outcome == "missing":
        return True
    return not continue_on_error


def aggregate(
    attempts: Iterable[ShardAttempt],
    *,
    expected: Iterable[ShardSpec] | None = None,
    continue_on_error: bool = False,
    name: str = "default",
    execution_mode: ExecutionMode = "development",
) -> ConsolidatedReport:
    """Build the consolidated report for a batch.

    The fold is order independent and idempotent: each shard is represented
    by its attempt with the highest attempt number, and repeated attempts are
    harmless.

    Args:
        attempts: Shard attempts, terminal ones and optionally earlier retries
        expected: Every shard that was scheduled; those without attempts are
            reported as missing
        continue_on_error: Whether failed or timed out shards are non-fatal
        name: Batch identifier recorded in the report
        execution_mode: Execution mode recorded in the report

    Returns:
        Consolidated report with sorted test ids and shard statuses

    """
    history: dict[ShardSpec, list[ShardAttempt]] = defaultdict(list)
    for attempt in attempts:
        history[attempt.spec].append(attempt)

    terminals = {
        spec: max(spec_attempts, key=_attempt_key)
        for spec, spec_attempts in history.items()
    }

    passed_in: dict[str, set[ShardSpec]] = defaultdict(set)
    failed_in: dict[str, set[ShardSpec]] = defaultdict(set)
    for spec, terminal in terminals.items():
        for test_id in terminal.passed:
            passed_in[test_id].add(spec)
        for test_id in terminal.failed:
            failed_in[test_id].add(spec)

    failed = set(failed_in)
    passed = set(passed_in) - failed

    anomalies = []
    for test_id in sorted(set(passed_in) & failed):
        anomaly = ConsistencyAnomaly(
            test_id=test_id,
            passed_in=_sorted_specs(passed_in[test_id]),
            failed_in=_sorted_specs(failed_in[test_id]),
        )
        logger.warning(
            f"Consistency anomaly: {test_id} passed in "
            f"{[s.label for s in anomaly.passed_in]} but failed in "
            f"{[s.label for s in anomaly.failed_in]}"
        )
        anomalies.append(anomaly)

    flaky: set[str] = set()
    for spec, terminal in terminals.items():
        for attempt in history[spec]:
            if attempt.attempt_number < terminal.attempt_number:
                flaky.update(attempt.failed & terminal.passed)
    flaky -= failed

    all_specs = set(terminals) | set(expected or ())
    statuses = []
    for spec in _sorted_specs(all_specs):
        terminal_attempt = terminals.get(spec)
        if terminal_attempt is None:
            logger.error(f"Shard {spec.label} produced no result")
            outcome: ShardOutcome = "missing"
            attempt_count = 0
        else:
            outcome = terminal_attempt.outcome
            attempt_count = len({a.attempt_number for a in history[spec]})

        statuses.append(
            ShardStatus(
                spec=spec,
                outcome=outcome,
                attempts=attempt_count,
                fatal=_is_fatal(outcome, continue_on_error),
            )
        )

    status: BatchStatus = (
        "success" if all(s.outcome == "success" for s in statuses) else "failure"
    )

    return ConsolidatedReport(
        name=name,
        execution_mode=execution_mode,
        status=status,
        passed=sorted(passed),
        failed=sorted(failed),
        flaky=sorted(flaky),
        anomalies=anomalies,
        shard_statuses=statuses,
    )
