"""
Wallet Charge Engine

Turns a reseller's unbilled usage into a wallet debit. Charges are whole
GiB: any started gigabyte is billed in full.

    cost = ceil(delta_bytes / GiB) * price_per_gb

The debit, its ledger entry and the new usage snapshot are written in one
transaction; the snapshot becomes the next baseline.
"""

from datetime import datetime
from typing import Optional
import sqlite3
import structlog

from core.config import GIB, BillingConfig, get_config
from core.cycle import Clock, cycle_key, to_iso, utc_now
from persistence.database import Database, get_database
from persistence.models import LedgerAction, LedgerEntryRecord, ResellerRecord
from persistence.repository import LedgerRepository, ResellerRepository, SnapshotRepository
from provisioning.provisioner import Provisioner

from .guard import IdempotencyGuard
from .results import ChargeResult, ResultStatus, SkipReason
from .suspension import SuspensionController
from .usage import DeltaCalculator, UsageDelta

logger = structlog.get_logger()


def calculate_cost(delta_bytes: int, price_per_gb: int) -> int:
    """Integer cost of `delta_bytes`, rounding up to the next whole GiB."""
    if delta_bytes <= 0:
        return 0
    return -(-delta_bytes // GIB) * price_per_gb


class ChargeEngine:
    """
    Charges wallet resellers for usage since their last snapshot.

    Usage:
        engine = ChargeEngine()
        result = engine.charge_for_reseller(reseller)
        if result.charged:
            print(result.cost, result.new_balance)
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        provisioner: Optional[Provisioner] = None,
        clock: Optional[Clock] = None,
        guard: Optional[IdempotencyGuard] = None,
        suspension: Optional[SuspensionController] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.clock = clock or utc_now
        self.guard = guard or IdempotencyGuard(self.db, self.config, self.clock)
        self.suspension = suspension or SuspensionController(
            self.db, self.config, provisioner, self.clock
        )
        self.deltas = DeltaCalculator(self.db)
        self.resellers = ResellerRepository(self.db)
        self.snapshots = SnapshotRepository(self.db)
        self.ledger = LedgerRepository(self.db)

    def charge_for_reseller(
        self,
        reseller: ResellerRecord,
        source: str = "scheduled",
        force: bool = False,
        dry_run: bool = False,
        reference_time: Optional[datetime] = None,
    ) -> ChargeResult:
        """
        Charge one reseller.

        Args:
            reseller: The reseller to bill
            source: Audit tag stored on the snapshot and ledger entry
            force: Ignore the idempotency window
            dry_run: Compute the charge without taking a lock or writing
            reference_time: Cycle reference; defaults to now

        Returns:
            ChargeResult with status charged, skipped, dry_run or error
        """
        if not reseller.is_wallet_based:
            return self._skip(reseller, source, SkipReason.NOT_WALLET_TYPE)

        if not self.config.charge_enabled:
            logger.info("wallet_charge_disabled", reseller_id=reseller.id, source=source)
            return self._skip(reseller, source, SkipReason.FEATURE_DISABLED)

        if dry_run:
            return self._dry_run(reseller, source)

        lease = self.guard.acquire_charge_lock(reseller.id)
        if lease is None:
            logger.warning("wallet_charge_lock_contention", reseller_id=reseller.id, source=source)
            return self._skip(reseller, source, SkipReason.LOCK_CONTENTION)

        try:
            return self._charge_locked(reseller, source, force, reference_time or self.clock())
        finally:
            lease.release()

    def charge_from_panel(self, reseller: ResellerRecord, action: str = "panel_action") -> ChargeResult:
        """Immediate charge triggered by a panel-side action."""
        logger.info("wallet_charge_panel_triggered", reseller_id=reseller.id, action=action)
        result = self.charge_for_reseller(reseller, source=f"panel:{action}")
        if result.charged:
            logger.info(
                "wallet_charge_panel_applied",
                reseller_id=reseller.id,
                action=action,
                delta_bytes=result.delta_bytes,
                cost=result.cost,
                new_balance=result.new_balance,
            )
        return result

    def _charge_locked(
        self,
        reseller: ResellerRecord,
        source: str,
        force: bool,
        reference_time: datetime,
    ) -> ChargeResult:
        current = self.resellers.get(reseller.id) or reseller

        if not force and self.guard.charge_recently_applied(current.id):
            return self._skip(current, source, SkipReason.IDEMPOTENCY_GUARD)

        cycle_started_at = cycle_key(reference_time, self.config.cycle_key_resolution)
        usage = self.deltas.delta(current)

        if not self._is_billable(usage):
            logger.debug(
                "wallet_charge_no_delta",
                reseller_id=current.id,
                delta_bytes=usage.delta_bytes,
                minimum=self.config.minimum_delta_bytes_to_charge,
            )
            result = self._skip(current, source, SkipReason.NO_USAGE_DELTA, usage.delta_bytes)
            # balance may already be exhausted from an earlier charge
            if current.wallet_balance <= self.config.suspension_threshold:
                result.suspension = self.suspension.evaluate(current, cycle_started_at)
            return result

        price_per_gb = current.price_per_gb(self.config.price_per_gb)
        cost = calculate_cost(usage.delta_bytes, price_per_gb)
        measured_at = to_iso(reference_time)

        try:
            with self.db.transaction():
                balance_before, balance_after = self.resellers.adjust_balance(current.id, -cost)
                entry = self.ledger.create(LedgerEntryRecord(
                    reseller_id=current.id,
                    action_type=LedgerAction.HOURLY,
                    charged_bytes=usage.delta_bytes,
                    amount_charged=cost,
                    price_per_gb=price_per_gb,
                    wallet_balance_before=balance_before,
                    wallet_balance_after=balance_after,
                    meta={
                        "source": source,
                        "cycle_started_at": cycle_started_at,
                        "baseline_total": usage.baseline_total,
                        "current_total": usage.current_total,
                    },
                    created_at=measured_at,
                ))
                snapshot = self.snapshots.record(
                    current.id,
                    usage.current_total,
                    {
                        "cycle_charge_applied": True,
                        "delta_bytes": usage.delta_bytes,
                        "delta_gb": round(usage.delta_bytes / GIB, 4),
                        "cost": cost,
                        "price_per_gb": price_per_gb,
                        "cycle_started_at": cycle_started_at,
                        "source": source,
                    },
                    measured_at=measured_at,
                )
        except (sqlite3.Error, LookupError) as e:
            logger.error(
                "wallet_charge_storage_failure",
                reseller_id=current.id,
                source=source,
                delta_bytes=usage.delta_bytes,
                cost=cost,
                error=str(e),
            )
            return ChargeResult(
                reseller_id=current.id,
                status=ResultStatus.ERROR,
                reason=SkipReason.STORAGE_FAILURE,
                source=source,
                delta_bytes=usage.delta_bytes,
                error=str(e),
            )

        current.wallet_balance = balance_after
        reseller.wallet_balance = balance_after

        logger.info(
            "wallet_charged",
            reseller_id=current.id,
            source=source,
            cycle_started_at=cycle_started_at,
            delta_bytes=usage.delta_bytes,
            cost=cost,
            price_per_gb=price_per_gb,
            balance_before=balance_before,
            new_balance=balance_after,
            snapshot_id=snapshot.id,
        )

        suspension = self.suspension.evaluate(current, cycle_started_at)

        return ChargeResult(
            reseller_id=current.id,
            status=ResultStatus.CHARGED,
            source=source,
            cost=cost,
            delta_bytes=usage.delta_bytes,
            new_balance=balance_after,
            snapshot_id=snapshot.id,
            ledger_entry_id=entry.id,
            suspension=suspension,
        )

    def _dry_run(self, reseller: ResellerRecord, source: str) -> ChargeResult:
        current = self.resellers.get(reseller.id) or reseller
        usage = self.deltas.delta(current)

        if not self._is_billable(usage):
            return self._skip(current, source, SkipReason.NO_USAGE_DELTA, usage.delta_bytes)

        cost = calculate_cost(usage.delta_bytes, current.price_per_gb(self.config.price_per_gb))
        logger.info(
            "wallet_charge_dry_run",
            reseller_id=current.id,
            delta_bytes=usage.delta_bytes,
            cost=cost,
            current_balance=current.wallet_balance,
        )
        return ChargeResult(
            reseller_id=current.id,
            status=ResultStatus.DRY_RUN,
            source=source,
            cost=cost,
            delta_bytes=usage.delta_bytes,
            current_balance=current.wallet_balance,
            balance_after_charge=current.wallet_balance - cost,
        )

    def _is_billable(self, usage: UsageDelta) -> bool:
        return (
            usage.delta_bytes > 0
            and usage.delta_bytes >= self.config.minimum_delta_bytes_to_charge
        )

    @staticmethod
    def _skip(
        reseller: ResellerRecord,
        source: str,
        reason: str,
        delta_bytes: int = 0,
    ) -> ChargeResult:
        return ChargeResult(
            reseller_id=reseller.id,
            status=ResultStatus.SKIPPED,
            reason=reason,
            source=source,
            delta_bytes=delta_bytes,
        )
