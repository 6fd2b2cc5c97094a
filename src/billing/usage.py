"""
Usage Aggregation

Total billable usage of a reseller and its delta against the last snapshot.
Aggregation is read-only and never filters configs by name: every
non-deleted config of the reseller counts.
"""

from dataclasses import dataclass
from typing import Optional
import structlog

from persistence.database import Database
from persistence.models import ConfigRecord, ResellerRecord, UsageSnapshotRecord
from persistence.repository import ConfigRepository, SnapshotRepository

logger = structlog.get_logger()


class UsageAggregator:
    """Sums usage across a reseller's configs."""

    def __init__(self, db: Optional[Database] = None):
        self.configs = ConfigRepository(db)

    @staticmethod
    def config_usage_bytes(config: ConfigRecord) -> int:
        return max(0, config.total_usage_bytes)

    def calculate_total_usage_bytes(self, reseller: ResellerRecord) -> int:
        """Current usage plus settled usage over all non-deleted configs."""
        return sum(
            self.config_usage_bytes(c)
            for c in self.configs.list_for_reseller(reseller.id)
        )


@dataclass
class UsageDelta:
    """Usage not yet covered by the billing baseline."""
    delta_bytes: int
    baseline_total: int
    current_total: int
    baseline_snapshot: Optional[UsageSnapshotRecord] = None

    @property
    def has_baseline(self) -> bool:
        return self.baseline_snapshot is not None


class DeltaCalculator:
    """
    Compares the current aggregate with the newest snapshot.

    Without a snapshot the baseline is 0. A total that dropped below the
    baseline gives a delta of 0, never a negative one.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        aggregator: Optional[UsageAggregator] = None,
    ):
        self.aggregator = aggregator or UsageAggregator(db)
        self.snapshots = SnapshotRepository(db)

    def delta(self, reseller: ResellerRecord) -> UsageDelta:
        current_total = self.aggregator.calculate_total_usage_bytes(reseller)
        snapshot = self.snapshots.latest(reseller.id)
        baseline_total = snapshot.total_bytes if snapshot else 0
        raw_delta = current_total - baseline_total

        if raw_delta < 0:
            logger.warning(
                "usage_below_baseline",
                reseller_id=reseller.id,
                current_total=current_total,
                baseline_total=baseline_total,
            )

        return UsageDelta(
            delta_bytes=max(0, raw_delta),
            baseline_total=baseline_total,
            current_total=current_total,
            baseline_snapshot=snapshot,
        )
