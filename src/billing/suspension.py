"""
Wallet Suspension

When a wallet falls to or below the suspension threshold the reseller is
moved to `suspended_wallet` and its active configs are disabled, locally
first and then on their panels. Disabling is keyed by billing cycle so a
config is disabled at most once per cycle.
"""

from typing import Dict, Optional
import structlog

from core.config import BillingConfig, get_config
from core.cycle import Clock, cycle_key as make_cycle_key, to_iso, utc_now
from persistence.database import Database, get_database
from persistence.models import ConfigRecord, ConfigStatus, PanelRecord, ResellerRecord, ResellerStatus
from persistence.repository import (
    ConfigEventRepository,
    ConfigRepository,
    PanelRepository,
    ResellerRepository,
)
from provisioning.provisioner import Provisioner, StaticProvisioner, call_provisioner

from .results import SuspensionOutcome

logger = structlog.get_logger()


class SuspensionController:
    """
    Applies the balance threshold to a reseller.

    Reactivation is not handled here; see ReenablementOrchestrator.
    """

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        provisioner: Optional[Provisioner] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.provisioner = provisioner or StaticProvisioner()
        self.clock = clock or utc_now
        self.resellers = ResellerRepository(self.db)
        self.configs = ConfigRepository(self.db)
        self.panels = PanelRepository(self.db)
        self.events = ConfigEventRepository(self.db)

    def current_cycle_key(self) -> str:
        return make_cycle_key(self.clock(), self.config.cycle_key_resolution)

    def evaluate(self, reseller: ResellerRecord, cycle_key: Optional[str] = None) -> SuspensionOutcome:
        """
        Suspend the reseller if its balance is at or below the threshold.

        An already suspended reseller gets its disable sweep re-run, which
        picks up configs that were left active.
        """
        cycle_key = cycle_key or self.current_cycle_key()
        outcome = SuspensionOutcome(cycle_key=cycle_key)

        current = self.resellers.get(reseller.id) or reseller
        if current.wallet_balance > self.config.suspension_threshold:
            return outcome

        if current.status == ResellerStatus.ACTIVE:
            self.resellers.update_status(current.id, ResellerStatus.SUSPENDED_WALLET)
            outcome.status_changed = True
            logger.warning(
                "reseller_wallet_suspended",
                reseller_id=current.id,
                wallet_balance=current.wallet_balance,
                threshold=self.config.suspension_threshold,
                cycle_key=cycle_key,
            )
        elif current.status != ResellerStatus.SUSPENDED_WALLET:
            logger.info("suspension_skipped_status", reseller_id=current.id, status=current.status)
            return outcome

        reseller.status = ResellerStatus.SUSPENDED_WALLET
        outcome.suspended = True
        self._disable_active_configs(current, cycle_key, outcome)
        return outcome

    def _disable_active_configs(
        self,
        reseller: ResellerRecord,
        cycle_key: str,
        outcome: SuspensionOutcome,
    ) -> None:
        panels: Dict[int, Optional[PanelRecord]] = {}

        for config in self.configs.list_for_reseller(reseller.id, status=ConfigStatus.ACTIVE):
            if config.meta.disabled_by_wallet_suspension_cycle_at == cycle_key:
                outcome.skipped_in_cycle += 1
                continue

            self._disable_locally(config, reseller, cycle_key)
            outcome.disabled += 1

            if config.panel_id not in panels:
                panels[config.panel_id] = self.panels.get(config.panel_id)
            remote = call_provisioner(
                self.provisioner, "disable", panels[config.panel_id], config.panel_user_id
            )
            if not remote["success"]:
                outcome.remote_failures += 1
                logger.warning(
                    "config_remote_disable_failed",
                    config_id=config.id,
                    reseller_id=reseller.id,
                    panel_id=config.panel_id,
                    last_error=remote["last_error"],
                )

            self.events.create(config.id, "auto_disabled", {
                "reason": "wallet_balance_exhausted",
                "cycle_at": cycle_key,
                "remote_success": remote["success"],
                "last_error": remote["last_error"],
            })

        logger.info(
            "suspension_sweep_completed",
            reseller_id=reseller.id,
            cycle_key=cycle_key,
            disabled=outcome.disabled,
            remote_failures=outcome.remote_failures,
            skipped_in_cycle=outcome.skipped_in_cycle,
        )

    def _disable_locally(self, config: ConfigRecord, reseller: ResellerRecord, cycle_key: str) -> None:
        config.status = ConfigStatus.DISABLED
        config.disabled_at = to_iso(self.clock())
        config.meta.disabled_by_wallet_suspension = True
        config.meta.disabled_by_wallet_suspension_cycle_at = cycle_key
        config.meta.disabled_by_reseller_id = reseller.id
        self.configs.save_state(config)
