"""
Final Settlement

Bills a config's outstanding usage before an action that would destroy the
usage figures (traffic reset, deletion). Outstanding usage is the config's
own unbilled usage, bounded by what the reseller's baseline has not yet
absorbed, so usage already covered by an hourly charge is never billed again.
"""

from typing import Optional
import sqlite3
import structlog

from core.config import GIB, BillingConfig, get_config
from core.cycle import Clock, to_iso, utc_now
from core.errors import SettlementError
from persistence.database import Database, get_database
from persistence.models import ConfigRecord, LedgerAction, LedgerEntryRecord
from persistence.repository import (
    ConfigEventRepository,
    ConfigRepository,
    LedgerRepository,
    ResellerRepository,
    SnapshotRepository,
)

from .charging import calculate_cost
from .guard import IdempotencyGuard
from .results import ResultStatus, SettlementResult, SkipReason
from .usage import DeltaCalculator

logger = structlog.get_logger()


class SettlementService:
    """
    Settles a single config ahead of reset_traffic / delete_config.

    Raises SettlementError when the settlement could not be stored; the
    caller must then abort the destructive action.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        clock: Optional[Clock] = None,
        guard: Optional[IdempotencyGuard] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.clock = clock or utc_now
        self.guard = guard or IdempotencyGuard(self.db, self.config, self.clock)
        self.deltas = DeltaCalculator(self.db)
        self.resellers = ResellerRepository(self.db)
        self.configs = ConfigRepository(self.db)
        self.snapshots = SnapshotRepository(self.db)
        self.ledger = LedgerRepository(self.db)
        self.events = ConfigEventRepository(self.db)

    def final_settlement_for_config(self, config: ConfigRecord, action_type: str) -> SettlementResult:
        reseller = self.resellers.get(config.reseller_id)
        if reseller is None or not reseller.is_wallet_based:
            return self._skip(config, action_type, SkipReason.NOT_WALLET_TYPE)

        if not self.config.charge_enabled:
            return self._skip(config, action_type, SkipReason.FEATURE_DISABLED)

        if not self.guard.claim_settlement(config.id, action_type):
            return self._skip(config, action_type, SkipReason.IDEMPOTENCY_GUARD)

        config = self.configs.get(config.id, include_deleted=True) or config
        config_total = config.total_usage_bytes
        unbilled_bytes = max(0, config_total - config.meta.charged_bytes)
        usage = self.deltas.delta(reseller)
        outstanding = min(unbilled_bytes, usage.delta_bytes)
        settled_at = to_iso(self.clock())

        log = logger.bind(
            config_id=config.id,
            reseller_id=reseller.id,
            action_type=action_type,
        )

        try:
            with self.db.transaction():
                if outstanding <= 0:
                    self._record_settlement(config, action_type, 0, 0, settled_at)
                    folded = self._fold_usage(config, action_type, settled_at)
                    self.configs.save_state(config)
                    result = self._skip(config, action_type, SkipReason.NO_OUTSTANDING_USAGE)
                    result.usage_folded = folded
                else:
                    result = self._charge(config, action_type, reseller, outstanding, usage, settled_at)
        except (sqlite3.Error, LookupError) as e:
            log.error("final_settlement_storage_failure", outstanding_bytes=outstanding, error=str(e))
            raise SettlementError(config.id, action_type, e) from e

        if result.charged:
            log.info(
                "final_settlement_charged",
                charged_bytes=result.charged_bytes,
                cost=result.cost,
                new_balance=result.new_balance,
                config_total=config_total,
                reseller_delta=usage.delta_bytes,
            )
        else:
            log.info(
                "final_settlement_no_outstanding",
                unbilled_bytes=unbilled_bytes,
                reseller_delta=usage.delta_bytes,
            )
        return result

    def _charge(self, config, action_type, reseller, outstanding, usage, settled_at) -> SettlementResult:
        price_per_gb = reseller.price_per_gb(self.config.price_per_gb)
        cost = calculate_cost(outstanding, price_per_gb)

        balance_before, balance_after = self.resellers.adjust_balance(reseller.id, -cost)
        entry = self.ledger.create(LedgerEntryRecord(
            reseller_id=reseller.id,
            reseller_config_id=config.id,
            action_type=action_type,
            charged_bytes=outstanding,
            amount_charged=cost,
            price_per_gb=price_per_gb,
            wallet_balance_before=balance_before,
            wallet_balance_after=balance_after,
            meta={
                "source": "final_settlement",
                "config_total_bytes": config.total_usage_bytes,
                "reseller_delta_bytes": usage.delta_bytes,
            },
            created_at=settled_at,
        ))

        config.meta.charged_bytes = 0
        self._record_settlement(config, action_type, outstanding, cost, settled_at)
        self.events.create(config.id, "final_settlement", {
            "action": action_type,
            "charged_bytes": outstanding,
            "cost": cost,
            "ledger_entry_id": entry.id,
        })

        # baseline advances by the settled bytes only; other configs' delta stays billable
        self.snapshots.record(
            reseller.id,
            usage.baseline_total + outstanding,
            {
                "delta_bytes": outstanding,
                "delta_gb": round(outstanding / GIB, 4),
                "cost": cost,
                "price_per_gb": price_per_gb,
                "source": f"final_settlement:{action_type}",
                "config_id": config.id,
            },
            measured_at=settled_at,
        )

        folded = self._fold_usage(config, action_type, settled_at)
        self.configs.save_state(config)

        return SettlementResult(
            config_id=config.id,
            action_type=action_type,
            status=ResultStatus.CHARGED,
            cost=cost,
            charged_bytes=outstanding,
            new_balance=balance_after,
            ledger_entry_id=entry.id,
            usage_folded=folded,
        )

    @staticmethod
    def _record_settlement(config: ConfigRecord, action_type: str, charged_bytes: int, cost: int, settled_at: str) -> None:
        config.meta.last_settlement_at = settled_at
        config.meta.last_settlement_action = action_type
        config.meta.last_settlement_bytes = charged_bytes
        config.meta.last_settlement_cost = cost

    @staticmethod
    def _fold_usage(config: ConfigRecord, action_type: str, settled_at: str) -> bool:
        """Move current usage into settled usage ahead of a traffic reset."""
        if action_type != LedgerAction.RESET_TRAFFIC:
            return False
        config.meta.settled_usage_bytes += max(0, config.usage_bytes)
        config.usage_bytes = 0
        config.meta.last_reset_at = settled_at
        return True

    @staticmethod
    def _skip(config: ConfigRecord, action_type: str, reason: str) -> SettlementResult:
        return SettlementResult(
            config_id=config.id,
            action_type=action_type,
            status=ResultStatus.SKIPPED,
            reason=reason,
        )
