"""
Data Models for Persistence Layer

Plain records for resellers, panels, configs, snapshots and ledger entries,
with the row <-> record mapping kept next to each type.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import json

from core.config import GIB


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _load_json(value: Any) -> Dict[str, Any]:
    if isinstance(value, str) and value:
        return json.loads(value)
    if isinstance(value, dict):
        return dict(value)
    return {}


def _dump_json(value: Optional[Dict[str, Any]]) -> Optional[str]:
    return json.dumps(value, sort_keys=True) if value else None


class BillingType:
    WALLET = "wallet"
    TRAFFIC = "traffic"
    PLAN = "plan"


class ResellerStatus:
    ACTIVE = "active"
    SUSPENDED_WALLET = "suspended_wallet"


class ConfigStatus:
    ACTIVE = "active"
    DISABLED = "disabled"


class LedgerAction:
    HOURLY = "hourly"
    RESET_TRAFFIC = "reset_traffic"
    DELETE_CONFIG = "delete_config"


@dataclass
class ResellerRecord:
    """Persisted reseller record."""
    name: str
    billing_type: str = BillingType.WALLET
    status: str = ResellerStatus.ACTIVE
    wallet_balance: int = 0
    wallet_price_per_gb: Optional[int] = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    id: Optional[int] = None

    @property
    def is_wallet_based(self) -> bool:
        return self.billing_type == BillingType.WALLET

    @property
    def is_suspended_wallet(self) -> bool:
        return self.status == ResellerStatus.SUSPENDED_WALLET

    def price_per_gb(self, default: int) -> int:
        """Per-reseller override, or the configured default."""
        if self.wallet_price_per_gb is not None:
            return self.wallet_price_per_gb
        return default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "billing_type": self.billing_type,
            "status": self.status,
            "wallet_balance": self.wallet_balance,
            "wallet_price_per_gb": self.wallet_price_per_gb,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ResellerRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            billing_type=row["billing_type"],
            status=row["status"],
            wallet_balance=row["wallet_balance"],
            wallet_price_per_gb=row.get("wallet_price_per_gb"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class PanelRecord:
    """Persisted panel record."""
    name: str
    panel_type: str
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_token: Optional[str] = None
    created_at: str = field(default_factory=_now)
    id: Optional[int] = None

    def credentials(self) -> Dict[str, Optional[str]]:
        return {
            "url": self.url,
            "username": self.username,
            "password": self.password,
            "api_token": self.api_token,
        }

    def to_dict(self) -> Dict[str, Any]:
        # credentials stay out of serialized output
        return {
            "id": self.id,
            "name": self.name,
            "panel_type": self.panel_type,
            "url": self.url,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PanelRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            panel_type=row["panel_type"],
            url=row.get("url"),
            username=row.get("username"),
            password=row.get("password"),
            api_token=row.get("api_token"),
            created_at=row["created_at"],
        )


@dataclass
class ConfigMeta:
    """
    Billing and suspension bookkeeping stored on a config.

    Keys this engine does not know about are kept in `extra` and written back
    untouched.
    """
    settled_usage_bytes: int = 0
    charged_bytes: int = 0
    disabled_by_wallet_suspension: bool = False
    disabled_by_wallet_suspension_cycle_at: Optional[str] = None
    disabled_by_reseller_id: Optional[int] = None
    last_settlement_at: Optional[str] = None
    last_settlement_action: Optional[str] = None
    last_settlement_bytes: Optional[int] = None
    last_settlement_cost: Optional[int] = None
    last_reset_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def clear_wallet_suspension(self) -> None:
        self.disabled_by_wallet_suspension = False
        self.disabled_by_wallet_suspension_cycle_at = None
        self.disabled_by_reseller_id = None

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is None or value is False:
                continue
            data[f.name] = value
        return data

    def to_json(self) -> Optional[str]:
        return _dump_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConfigMeta":
        data = dict(data or {})
        known = {f.name for f in fields(cls)} - {"extra"}
        meta = cls(extra={k: v for k, v in data.items() if k not in known})

        meta.settled_usage_bytes = int(data.get("settled_usage_bytes") or 0)
        meta.charged_bytes = int(data.get("charged_bytes") or 0)
        # stored flags may be 1 / "1" / "true"
        flag = data.get("disabled_by_wallet_suspension")
        meta.disabled_by_wallet_suspension = flag in (True, 1, "1", "true")
        meta.disabled_by_wallet_suspension_cycle_at = data.get("disabled_by_wallet_suspension_cycle_at")
        meta.disabled_by_reseller_id = data.get("disabled_by_reseller_id")
        meta.last_settlement_at = data.get("last_settlement_at")
        meta.last_settlement_action = data.get("last_settlement_action")
        meta.last_settlement_bytes = data.get("last_settlement_bytes")
        meta.last_settlement_cost = data.get("last_settlement_cost")
        meta.last_reset_at = data.get("last_reset_at")
        return meta


@dataclass
class ConfigRecord:
    """Persisted config record."""
    reseller_id: int
    usage_bytes: int = 0
    status: str = ConfigStatus.ACTIVE
    panel_id: Optional[int] = None
    panel_user_id: Optional[str] = None
    external_username: Optional[str] = None
    disabled_at: Optional[str] = None
    deleted_at: Optional[str] = None
    meta: ConfigMeta = field(default_factory=ConfigMeta)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    id: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def total_usage_bytes(self) -> int:
        """Current usage plus usage folded in by earlier resets."""
        return (self.usage_bytes or 0) + self.meta.settled_usage_bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reseller_id": self.reseller_id,
            "panel_id": self.panel_id,
            "panel_user_id": self.panel_user_id,
            "external_username": self.external_username,
            "usage_bytes": self.usage_bytes,
            "total_usage_bytes": self.total_usage_bytes,
            "status": self.status,
            "disabled_at": self.disabled_at,
            "deleted_at": self.deleted_at,
            "meta": self.meta.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConfigRecord":
        return cls(
            id=row["id"],
            reseller_id=row["reseller_id"],
            panel_id=row.get("panel_id"),
            panel_user_id=row.get("panel_user_id"),
            external_username=row.get("external_username"),
            usage_bytes=row.get("usage_bytes") or 0,
            status=row["status"],
            disabled_at=row.get("disabled_at"),
            deleted_at=row.get("deleted_at"),
            meta=ConfigMeta.from_dict(_load_json(row.get("meta"))),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class UsageSnapshotRecord:
    """Persisted usage snapshot (billing baseline)."""
    reseller_id: int
    total_bytes: int
    measured_at: str
    meta: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    @property
    def charge_applied(self) -> bool:
        return bool(self.meta.get("cycle_charge_applied"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reseller_id": self.reseller_id,
            "total_bytes": self.total_bytes,
            "measured_at": self.measured_at,
            "meta": self.meta,
        }

    def to_db_tuple(self) -> tuple:
        return (
            self.reseller_id,
            self.total_bytes,
            self.measured_at,
            _dump_json(self.meta),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UsageSnapshotRecord":
        return cls(
            id=row["id"],
            reseller_id=row["reseller_id"],
            total_bytes=row["total_bytes"],
            measured_at=row["measured_at"],
            meta=_load_json(row.get("meta")),
        )


@dataclass
class LedgerEntryRecord:
    """Persisted billing ledger entry."""
    reseller_id: int
    action_type: str
    charged_bytes: int
    amount_charged: int
    price_per_gb: int
    wallet_balance_before: int
    wallet_balance_after: int
    reseller_config_id: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_now)
    id: Optional[int] = None

    @property
    def charged_gb(self) -> float:
        return round(self.charged_bytes / GIB, 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reseller_id": self.reseller_id,
            "reseller_config_id": self.reseller_config_id,
            "action_type": self.action_type,
            "charged_bytes": self.charged_bytes,
            "amount_charged": self.amount_charged,
            "price_per_gb": self.price_per_gb,
            "wallet_balance_before": self.wallet_balance_before,
            "wallet_balance_after": self.wallet_balance_after,
            "meta": self.meta,
            "created_at": self.created_at,
        }

    def to_db_tuple(self) -> tuple:
        return (
            self.reseller_id,
            self.reseller_config_id,
            self.action_type,
            self.charged_bytes,
            self.amount_charged,
            self.price_per_gb,
            self.wallet_balance_before,
            self.wallet_balance_after,
            _dump_json(self.meta),
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LedgerEntryRecord":
        return cls(
            id=row["id"],
            reseller_id=row["reseller_id"],
            reseller_config_id=row.get("reseller_config_id"),
            action_type=row["action_type"],
            charged_bytes=row["charged_bytes"],
            amount_charged=row["amount_charged"],
            price_per_gb=row["price_per_gb"],
            wallet_balance_before=row["wallet_balance_before"],
            wallet_balance_after=row["wallet_balance_after"],
            meta=_load_json(row.get("meta")),
            created_at=row["created_at"],
        )


@dataclass
class ConfigEventRecord:
    """Persisted config audit event."""
    reseller_config_id: int
    type: str
    meta: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_now)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reseller_config_id": self.reseller_config_id,
            "type": self.type,
            "meta": self.meta,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ConfigEventRecord":
        return cls(
            id=row["id"],
            reseller_config_id=row["reseller_config_id"],
            type=row["type"],
            meta=_load_json(row.get("meta")),
            created_at=row["created_at"],
        )


@dataclass
class WalletTransactionRecord:
    """Persisted wallet top-up."""
    reseller_id: int
    amount: int
    balance_before: int
    balance_after: int
    reference: Optional[str] = None
    created_at: str = field(default_factory=_now)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reseller_id": self.reseller_id,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "reference": self.reference,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "WalletTransactionRecord":
        return cls(
            id=row["id"],
            reseller_id=row["reseller_id"],
            amount=row["amount"],
            balance_before=row["balance_before"],
            balance_after=row["balance_after"],
            reference=row.get("reference"),
            created_at=row["created_at"],
        )
