"""
Destructive Config Actions

Traffic resets and deletions settle outstanding usage first. If the
settlement cannot be stored, SettlementError propagates and nothing is
changed locally or on the panel.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import structlog

from billing.results import SettlementResult
from billing.settlement import SettlementService
from core.config import BillingConfig, get_config
from core.cycle import Clock, to_iso, utc_now
from core.errors import NotFoundError
from persistence.database import Database, get_database
from persistence.models import ConfigRecord, LedgerAction
from persistence.repository import ConfigEventRepository, ConfigRepository, PanelRepository, SnapshotRepository

from .provisioner import Provisioner, StaticProvisioner, call_provisioner

logger = structlog.get_logger()


@dataclass
class ConfigActionResult:
    """Settlement and panel outcome of a config action."""
    config_id: int
    action: str
    settlement: SettlementResult
    remote_sync: bool
    remote_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config_id": self.config_id,
            "action": self.action,
            "settlement": self.settlement.to_dict(),
            "remote_sync": self.remote_sync,
            "remote_error": self.remote_error,
        }


class ConfigActionService:
    """reset_traffic and delete_config with settlement ahead of the change."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        provisioner: Optional[Provisioner] = None,
        clock: Optional[Clock] = None,
        settlement: Optional[SettlementService] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.provisioner = provisioner or StaticProvisioner()
        self.clock = clock or utc_now
        self.settlement = settlement or SettlementService(self.db, self.config, self.clock)
        self.configs = ConfigRepository(self.db)
        self.panels = PanelRepository(self.db)
        self.events = ConfigEventRepository(self.db)
        self.snapshots = SnapshotRepository(self.db)

    def _get_config(self, config_id: int) -> ConfigRecord:
        config = self.configs.get(config_id)
        if config is None:
            raise NotFoundError("config", config_id)
        return config

    def reset_traffic(self, config_id: int) -> ConfigActionResult:
        """Settle, zero the usage counter locally, then reset it on the panel."""
        config = self._get_config(config_id)
        settlement = self.settlement.final_settlement_for_config(config, LedgerAction.RESET_TRAFFIC)

        config = self._get_config(config_id)
        with self.db.transaction():
            if not settlement.usage_folded:
                config.meta.settled_usage_bytes += max(0, config.usage_bytes)
                config.usage_bytes = 0
                config.meta.last_reset_at = to_iso(self.clock())
                self.configs.save_state(config)
            self.events.create(config.id, "usage_reset", {
                "settlement_status": settlement.status.value,
                "settled_usage_bytes": config.meta.settled_usage_bytes,
            })

        remote = call_provisioner(
            self.provisioner, "reset_usage", self.panels.get(config.panel_id), config.panel_user_id
        )
        logger.info(
            "config_traffic_reset",
            config_id=config.id,
            reseller_id=config.reseller_id,
            settlement_status=settlement.status.value,
            settlement_cost=settlement.cost,
            remote_success=remote["success"],
        )
        return ConfigActionResult(
            config.id, LedgerAction.RESET_TRAFFIC, settlement, remote["success"], remote["last_error"]
        )

    def delete_config(self, config_id: int) -> ConfigActionResult:
        """Settle, tombstone the config, then delete it on the panel."""
        config = self._get_config(config_id)
        settlement = self.settlement.final_settlement_for_config(config, LedgerAction.DELETE_CONFIG)

        deleted_at = to_iso(self.clock())
        with self.db.transaction():
            self.configs.soft_delete(config.id, deleted_at)
            self._rebaseline_without(config, deleted_at)
            self.events.create(config.id, "deleted", {
                "settlement_status": settlement.status.value,
                "total_usage_bytes": config.total_usage_bytes,
            })

        remote = call_provisioner(
            self.provisioner, "delete", self.panels.get(config.panel_id), config.panel_user_id
        )
        logger.info(
            "config_deleted",
            config_id=config.id,
            reseller_id=config.reseller_id,
            settlement_status=settlement.status.value,
            settlement_cost=settlement.cost,
            remote_success=remote["success"],
        )
        return ConfigActionResult(
            config.id, LedgerAction.DELETE_CONFIG, settlement, remote["success"], remote["last_error"]
        )

    def _rebaseline_without(self, config: ConfigRecord, measured_at: str) -> None:
        """Drop a deleted config's usage from the reseller baseline."""
        latest = self.snapshots.latest(config.reseller_id)
        if latest is None:
            return
        self.snapshots.record(
            config.reseller_id,
            max(0, latest.total_bytes - config.total_usage_bytes),
            {
                "source": LedgerAction.DELETE_CONFIG,
                "config_id": config.id,
                "cycle_charge_applied": False,
                "removed_bytes": config.total_usage_bytes,
            },
            measured_at=measured_at,
        )
