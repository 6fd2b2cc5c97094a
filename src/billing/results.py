"""
Billing Result Types

Every billing operation answers with a result object; skip conditions are
statuses here rather than exceptions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ResultStatus(Enum):
    CHARGED = "charged"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    ERROR = "error"


class SkipReason:
    NOT_WALLET_TYPE = "not_wallet_type"
    FEATURE_DISABLED = "feature_disabled"
    LOCK_CONTENTION = "lock_contention"
    IDEMPOTENCY_GUARD = "idempotency_guard"
    NO_USAGE_DELTA = "no_usage_delta"
    NO_OUTSTANDING_USAGE = "no_outstanding_usage"
    STORAGE_FAILURE = "storage_failure"


@dataclass
class SuspensionOutcome:
    """What a suspension evaluation did."""
    suspended: bool = False
    status_changed: bool = False
    disabled: int = 0
    remote_failures: int = 0
    skipped_in_cycle: int = 0
    cycle_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suspended": self.suspended,
            "status_changed": self.status_changed,
            "disabled": self.disabled,
            "remote_failures": self.remote_failures,
            "skipped_in_cycle": self.skipped_in_cycle,
            "cycle_key": self.cycle_key,
        }


@dataclass
class ChargeResult:
    """Outcome of one charge attempt for a reseller."""
    reseller_id: int
    status: ResultStatus
    reason: Optional[str] = None
    source: str = "scheduled"
    cost: int = 0
    delta_bytes: int = 0
    current_balance: Optional[int] = None
    balance_after_charge: Optional[int] = None
    new_balance: Optional[int] = None
    snapshot_id: Optional[int] = None
    ledger_entry_id: Optional[int] = None
    suspension: Optional[SuspensionOutcome] = None
    error: Optional[str] = None

    @property
    def charged(self) -> bool:
        return self.status == ResultStatus.CHARGED

    @property
    def suspended(self) -> bool:
        return bool(self.suspension and self.suspension.suspended)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "reseller_id": self.reseller_id,
            "status": self.status.value,
            "reason": self.reason,
            "source": self.source,
            "cost": self.cost,
            "delta_bytes": self.delta_bytes,
            "suspended": self.suspended,
        }
        if self.status == ResultStatus.DRY_RUN:
            data["current_balance"] = self.current_balance
            data["balance_after_charge"] = self.balance_after_charge
        if self.status == ResultStatus.CHARGED:
            data["new_balance"] = self.new_balance
            data["snapshot_id"] = self.snapshot_id
            data["ledger_entry_id"] = self.ledger_entry_id
        if self.suspension is not None:
            data["suspension"] = self.suspension.to_dict()
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SettlementResult:
    """Outcome of a final settlement before a destructive config action."""
    config_id: int
    action_type: str
    status: ResultStatus
    reason: Optional[str] = None
    cost: int = 0
    charged_bytes: int = 0
    new_balance: Optional[int] = None
    ledger_entry_id: Optional[int] = None
    usage_folded: bool = False

    @property
    def charged(self) -> bool:
        return self.status == ResultStatus.CHARGED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config_id": self.config_id,
            "action_type": self.action_type,
            "status": self.status.value,
            "reason": self.reason,
            "cost": self.cost,
            "charged_bytes": self.charged_bytes,
            "new_balance": self.new_balance,
            "ledger_entry_id": self.ledger_entry_id,
            "usage_folded": self.usage_folded,
        }


@dataclass
class ReenableResult:
    """Counts of configs brought back after a wallet suspension."""
    reseller_id: int
    enabled: int = 0
    failed: int = 0
    reason: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reseller_id": self.reseller_id,
            "enabled": self.enabled,
            "failed": self.failed,
            "reason": self.reason,
            "errors": self.errors,
        }
