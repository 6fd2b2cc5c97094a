"""
Idempotency Guard

Keeps each unit of consumption billed once:
- a per-reseller lease serializes charges,
- a recently applied charge snapshot blocks a second charge in the window,
- an expiring marker blocks a repeated settlement of the same config action.
"""

from datetime import timedelta
from typing import Optional
import structlog

from core.config import BillingConfig, get_config
from core.cycle import Clock, parse_iso, utc_now
from persistence.database import Database
from persistence.locks import Lease, LeaseLockStore
from persistence.repository import SnapshotRepository

logger = structlog.get_logger()


class IdempotencyGuard:
    """Lock and window checks shared by charging and settlement."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        clock: Optional[Clock] = None,
        locks: Optional[LeaseLockStore] = None,
    ):
        self.config = config or get_config()
        self.clock = clock or utc_now
        self.locks = locks or LeaseLockStore(db, clock=lambda: self.clock().timestamp())
        self.snapshots = SnapshotRepository(db)

    def charge_lock_key(self, reseller_id: int) -> str:
        return f"{self.config.charge_lock_key_prefix}:reseller:{reseller_id}"

    @staticmethod
    def settlement_key(config_id: int, action_type: str) -> str:
        return f"final_settlement:{config_id}:{action_type}"

    def acquire_charge_lock(self, reseller_id: int) -> Optional[Lease]:
        """Non-blocking; None when another charge holds the reseller."""
        return self.locks.acquire(
            self.charge_lock_key(reseller_id),
            self.config.charge_lock_ttl_seconds,
        )

    def charge_recently_applied(self, reseller_id: int) -> bool:
        """True when a charge snapshot is younger than the idempotency window."""
        snapshot = self.snapshots.latest(reseller_id, charge_applied_only=True)
        if snapshot is None:
            return False

        measured_at = parse_iso(snapshot.measured_at)
        window = timedelta(seconds=self.config.charge_idempotency_seconds)
        recent = self.clock() - measured_at < window
        if recent:
            logger.info(
                "charge_idempotency_hit",
                reseller_id=reseller_id,
                snapshot_id=snapshot.id,
                measured_at=snapshot.measured_at,
            )
        return recent

    def claim_settlement(self, config_id: int, action_type: str) -> bool:
        """
        Claim the settlement of one config action.

        The marker is never released; it expires after
        `settlement_idempotency_seconds`.
        """
        claimed = self.locks.mark(
            self.settlement_key(config_id, action_type),
            self.config.settlement_idempotency_seconds,
        )
        if not claimed:
            logger.info("settlement_idempotency_hit", config_id=config_id, action_type=action_type)
        return claimed
