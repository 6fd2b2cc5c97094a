"""
Billing Scheduler

Periodic entry points: the charge cycle over all wallet resellers and the
re-enable sweep. Cadence is owned by whoever calls these (CLI, cron); the
idempotency window is a separate knob on the charge engine.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import structlog

from core.config import BillingConfig, get_config
from persistence.database import Database, get_database
from persistence.models import ResellerStatus
from persistence.repository import ResellerRepository

from .charging import ChargeEngine
from .reenable import ReenablementOrchestrator
from .results import ChargeResult, ResultStatus, SkipReason

logger = structlog.get_logger()


@dataclass
class ChargeCycleSummary:
    """Totals of one charge cycle."""
    source: str
    resellers: int = 0
    charged: int = 0
    skipped: int = 0
    lock_failed: int = 0
    suspended: int = 0
    errors: int = 0
    total_cost: int = 0
    results: List[ChargeResult] = field(default_factory=list)

    def add(self, result: ChargeResult) -> None:
        self.results.append(result)
        if result.status == ResultStatus.CHARGED:
            self.charged += 1
            self.total_cost += result.cost
        elif result.status == ResultStatus.ERROR:
            self.errors += 1
        elif result.reason == SkipReason.LOCK_CONTENTION:
            self.lock_failed += 1
        else:
            self.skipped += 1
        if result.suspended:
            self.suspended += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "resellers": self.resellers,
            "charged": self.charged,
            "skipped": self.skipped,
            "lock_failed": self.lock_failed,
            "suspended": self.suspended,
            "errors": self.errors,
            "total_cost": self.total_cost,
        }


@dataclass
class ReenableSweepSummary:
    resellers: int = 0
    enabled: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"resellers": self.resellers, "enabled": self.enabled, "failed": self.failed}


class BillingScheduler:
    """Runs billing over every wallet reseller."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        engine: Optional[ChargeEngine] = None,
        reenabler: Optional[ReenablementOrchestrator] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.engine = engine or ChargeEngine(self.db, self.config)
        self.reenabler = reenabler or ReenablementOrchestrator(self.db, self.config)
        self.resellers = ResellerRepository(self.db)

    def run_charge_cycle(self, source: str = "scheduled") -> ChargeCycleSummary:
        """
        Charge every wallet reseller that is active or wallet-suspended.

        Resellers are billed in parallel, one task each. A reseller whose
        charge raises is counted as an error and does not stop the cycle.
        """
        resellers = self.resellers.list_wallet_resellers(
            [ResellerStatus.ACTIVE, ResellerStatus.SUSPENDED_WALLET]
        )
        summary = ChargeCycleSummary(source=source, resellers=len(resellers))
        logger.info("charge_cycle_started", source=source, resellers=len(resellers))

        with ThreadPoolExecutor(max_workers=self.config.charge_workers) as pool:
            futures = {
                pool.submit(self.engine.charge_for_reseller, reseller, source): reseller
                for reseller in resellers
            }
            for future in as_completed(futures):
                reseller = futures[future]
                try:
                    summary.add(future.result())
                except Exception as e:
                    logger.error("charge_cycle_reseller_failed", reseller_id=reseller.id, error=str(e))
                    summary.add(ChargeResult(
                        reseller_id=reseller.id,
                        status=ResultStatus.ERROR,
                        source=source,
                        error=str(e),
                    ))

        logger.info("charge_cycle_completed", **summary.to_dict())
        return summary

    def run_reenable_sweep(self) -> ReenableSweepSummary:
        """Re-enable configs of active resellers that are back above the threshold."""
        summary = ReenableSweepSummary()
        for reseller in self.resellers.list_reenable_candidates(self.config.suspension_threshold):
            result = self.reenabler.reenable_wallet_suspended_configs(reseller)
            summary.resellers += 1
            summary.enabled += result.enabled
            summary.failed += result.failed

        logger.info("reenable_sweep_completed", **summary.to_dict())
        return summary
