"""
Re-enabling After Wallet Recovery

Brings back configs that were disabled because the wallet ran out, once the
reseller is active again. Only configs carrying the wallet-suspension flag
are touched; configs disabled for any other reason stay disabled.
"""

from collections import defaultdict
from typing import Dict, List, Optional
import structlog

from core.config import BillingConfig, get_config
from persistence.database import Database, get_database
from persistence.models import ConfigRecord, ConfigStatus, ResellerRecord, ResellerStatus
from persistence.repository import ConfigEventRepository, ConfigRepository, PanelRepository, ResellerRepository
from provisioning.provisioner import Provisioner, StaticProvisioner, call_provisioner

from .results import ReenableResult

logger = structlog.get_logger()


class ReenablementOrchestrator:
    """Re-enables wallet-suspended configs panel by panel."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        provisioner: Optional[Provisioner] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.provisioner = provisioner or StaticProvisioner()
        self.resellers = ResellerRepository(self.db)
        self.configs = ConfigRepository(self.db)
        self.panels = PanelRepository(self.db)
        self.events = ConfigEventRepository(self.db)

    def reenable_wallet_suspended_configs(self, reseller: ResellerRecord) -> ReenableResult:
        """
        Enable every wallet-suspended config of an active reseller.

        The panel is asked first; the config is only marked active locally
        when the panel accepted. Failures are counted and the loop goes on.
        """
        result = ReenableResult(reseller_id=reseller.id)
        current = self.resellers.get(reseller.id) or reseller

        if current.status != ResellerStatus.ACTIVE:
            result.reason = "reseller_not_active"
            return result
        if not self.config.auto_reenable_enabled:
            result.reason = "auto_reenable_disabled"
            return result

        by_panel: Dict[Optional[int], List[ConfigRecord]] = defaultdict(list)
        for config in self.configs.list_wallet_suspended(current.id):
            by_panel[config.panel_id].append(config)

        for panel_id, configs in by_panel.items():
            panel = self.panels.get(panel_id)
            if panel is None:
                logger.warning("reenable_panel_missing", reseller_id=current.id, panel_id=panel_id, configs=len(configs))

            for config in configs:
                remote = call_provisioner(self.provisioner, "enable", panel, config.panel_user_id)
                if remote["success"]:
                    self._mark_enabled(config)
                    result.enabled += 1
                else:
                    result.failed += 1
                    result.errors.append({"config_id": config.id, "error": remote["last_error"]})
                    self.events.create(config.id, "auto_enable_failed", {
                        "reason": "wallet_recharged",
                        "last_error": remote["last_error"],
                    })
                    logger.warning(
                        "config_reenable_failed",
                        config_id=config.id,
                        reseller_id=current.id,
                        panel_id=panel_id,
                        last_error=remote["last_error"],
                    )

        if result.enabled or result.failed:
            logger.info(
                "wallet_configs_reenabled",
                reseller_id=current.id,
                enabled=result.enabled,
                failed=result.failed,
            )
        return result

    def _mark_enabled(self, config: ConfigRecord) -> None:
        config.status = ConfigStatus.ACTIVE
        config.disabled_at = None
        config.meta.clear_wallet_suspension()
        with self.db.transaction():
            self.configs.save_state(config)
            self.events.create(config.id, "auto_enabled", {"reason": "wallet_recharged", "remote_success": True})
