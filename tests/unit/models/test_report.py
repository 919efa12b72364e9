"""Tests for report models."""

from boostsec.shard_scheduler.models.report import ConsolidatedReport, ShardStatus
from boostsec.shard_scheduler.models.shard import ShardSpec

BROAD = ShardSpec(category="broad", index=1, total=1)
LEGACY = ShardSpec(category="legacy", index=1, total=1)


def test_report_shard_lookup_and_flags() -> None:
    """ConsolidatedReport exposes shard lookups and fatality."""
    report = ConsolidatedReport(
        status="failure",
        shard_statuses=[
            ShardStatus(spec=BROAD, outcome="success", attempts=1),
            ShardStatus(spec=LEGACY, outcome="missing", fatal=True),
        ],
    )

    legacy = report.status_for(LEGACY)
    assert legacy is not None
    assert legacy.outcome == "missing"
    assert report.status_for(ShardSpec(category="broad", index=1, total=2)) is None
    assert report.has_fatal_shards
    assert [s.spec for s in report.non_success_shards] == [LEGACY]


def test_report_json_round_trip() -> None:
    """ConsolidatedReport survives JSON serialization."""
    report = ConsolidatedReport(
        name="x",
        execution_mode="production",
        status="success",
        passed=["a"],
        shard_statuses=[ShardStatus(spec=BROAD, outcome="success", attempts=1)],
    )

    assert ConsolidatedReport.model_validate_json(report.model_dump_json()) == report
