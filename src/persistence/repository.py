"""
Repository Layer for Wallet Meter

Read/write operations for every persisted entity. Writes issued inside
`Database.transaction()` commit or roll back together.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import json
import structlog

from .database import Database, get_database
from .models import (
    ConfigEventRecord,
    ConfigRecord,
    LedgerEntryRecord,
    PanelRecord,
    ResellerRecord,
    UsageSnapshotRecord,
    WalletTransactionRecord,
)

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class ResellerRepository:
    """Repository for reseller records."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, reseller: ResellerRecord) -> ResellerRecord:
        """Create a new reseller."""
        reseller.id, _ = self.db.execute_write(
            """INSERT INTO resellers
               (name, billing_type, status, wallet_balance, wallet_price_per_gb,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                reseller.name,
                reseller.billing_type,
                reseller.status,
                reseller.wallet_balance,
                reseller.wallet_price_per_gb,
                reseller.created_at,
                reseller.updated_at,
            )
        )
        logger.info("reseller_created", reseller_id=reseller.id, billing_type=reseller.billing_type)
        return reseller

    def get(self, reseller_id: int) -> Optional[ResellerRecord]:
        """Get a reseller by ID."""
        results = self.db.execute("SELECT * FROM resellers WHERE id = ?", (reseller_id,))
        return ResellerRecord.from_row(results[0]) if results else None

    def list_wallet_resellers(self, statuses: Optional[List[str]] = None) -> List[ResellerRecord]:
        """List wallet resellers, optionally restricted to some statuses."""
        query = "SELECT * FROM resellers WHERE billing_type = 'wallet'"
        params: tuple = ()
        if statuses:
            placeholders = ",".join(["?" for _ in statuses])
            query += f" AND status IN ({placeholders})"
            params = tuple(statuses)
        results = self.db.execute(query + " ORDER BY id ASC", params)
        return [ResellerRecord.from_row(r) for r in results]

    def list_reenable_candidates(self, suspension_threshold: int) -> List[ResellerRecord]:
        """Active wallet resellers above the threshold that still have wallet-disabled configs."""
        results = self.db.execute(
            """SELECT * FROM resellers r
               WHERE r.billing_type = 'wallet'
                 AND r.status = 'active'
                 AND r.wallet_balance > ?
                 AND EXISTS (
                     SELECT 1 FROM reseller_configs c
                     WHERE c.reseller_id = r.id
                       AND c.status = 'disabled'
                       AND c.deleted_at IS NULL
                       AND json_extract(c.meta, '$.disabled_by_wallet_suspension') IN (1, '1', 'true')
                 )
               ORDER BY r.id ASC""",
            (suspension_threshold,)
        )
        return [ResellerRecord.from_row(r) for r in results]

    def adjust_balance(self, reseller_id: int, amount: int) -> tuple:
        """
        Atomically add `amount` (negative to debit) to the wallet.

        Returns (balance_before, balance_after).
        """
        with self.db.transaction():
            _, rowcount = self.db.execute_write(
                "UPDATE resellers SET wallet_balance = wallet_balance + ?, updated_at = ? WHERE id = ?",
                (amount, _now(), reseller_id)
            )
            if rowcount == 0:
                raise LookupError(f"reseller {reseller_id} not found")
            results = self.db.execute(
                "SELECT wallet_balance FROM resellers WHERE id = ?", (reseller_id,)
            )
        balance_after = results[0]["wallet_balance"]
        return balance_after - amount, balance_after

    def update_status(self, reseller_id: int, status: str) -> None:
        """Update reseller status."""
        self.db.execute(
            "UPDATE resellers SET status = ?, updated_at = ? WHERE id = ?",
            (status, _now(), reseller_id)
        )
        logger.info("reseller_status_updated", reseller_id=reseller_id, status=status)


class PanelRepository:
    """Repository for panel records."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, panel: PanelRecord) -> PanelRecord:
        """Register a panel."""
        panel.id, _ = self.db.execute_write(
            """INSERT INTO panels
               (name, panel_type, url, username, password, api_token, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                panel.name,
                panel.panel_type,
                panel.url,
                panel.username,
                panel.password,
                panel.api_token,
                panel.created_at,
            )
        )
        return panel

    def get(self, panel_id: Optional[int]) -> Optional[PanelRecord]:
        """Get a panel by ID."""
        if panel_id is None:
            return None
        results = self.db.execute("SELECT * FROM panels WHERE id = ?", (panel_id,))
        return PanelRecord.from_row(results[0]) if results else None


class ConfigRepository:
    """
    Repository for config records.

    Soft-deleted configs are excluded unless `include_deleted=True` is passed.
    """

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, config: ConfigRecord) -> ConfigRecord:
        """Create a new config."""
        config.id, _ = self.db.execute_write(
            """INSERT INTO reseller_configs
               (reseller_id, panel_id, panel_user_id, external_username, usage_bytes,
                status, disabled_at, deleted_at, meta, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                config.reseller_id,
                config.panel_id,
                config.panel_user_id,
                config.external_username,
                config.usage_bytes,
                config.status,
                config.disabled_at,
                config.deleted_at,
                config.meta.to_json(),
                config.created_at,
                config.updated_at,
            )
        )
        return config

    def get(self, config_id: int, include_deleted: bool = False) -> Optional[ConfigRecord]:
        """Get a config by ID."""
        query = "SELECT * FROM reseller_configs WHERE id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        results = self.db.execute(query, (config_id,))
        return ConfigRecord.from_row(results[0]) if results else None

    def list_for_reseller(
        self,
        reseller_id: int,
        status: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[ConfigRecord]:
        """List a reseller's configs."""
        query = "SELECT * FROM reseller_configs WHERE reseller_id = ?"
        params: List[Any] = [reseller_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        results = self.db.execute(query + " ORDER BY id ASC", tuple(params))
        return [ConfigRecord.from_row(r) for r in results]

    def list_wallet_suspended(self, reseller_id: int) -> List[ConfigRecord]:
        """Disabled configs carrying the wallet-suspension flag."""
        return [
            c for c in self.list_for_reseller(reseller_id, status="disabled")
            if c.meta.disabled_by_wallet_suspension
        ]

    def save_state(self, config: ConfigRecord) -> None:
        """Persist status, usage, timestamps and meta of an existing config."""
        config.updated_at = _now()
        self.db.execute(
            """UPDATE reseller_configs
               SET usage_bytes = ?, status = ?, disabled_at = ?, deleted_at = ?,
                   meta = ?, updated_at = ?
               WHERE id = ?""",
            (
                config.usage_bytes,
                config.status,
                config.disabled_at,
                config.deleted_at,
                config.meta.to_json(),
                config.updated_at,
                config.id,
            )
        )

    def update_usage(self, config_id: int, usage_bytes: int) -> None:
        """Record the latest usage reading reported by the panel."""
        self.db.execute(
            "UPDATE reseller_configs SET usage_bytes = ?, updated_at = ? WHERE id = ?",
            (usage_bytes, _now(), config_id)
        )

    def soft_delete(self, config_id: int, deleted_at: Optional[str] = None) -> None:
        """Tombstone a config. Usage figures stay on the row for audit."""
        self.db.execute(
            "UPDATE reseller_configs SET deleted_at = ?, updated_at = ? WHERE id = ?",
            (deleted_at or _now(), _now(), config_id)
        )
        logger.info("config_soft_deleted", config_id=config_id)


class SnapshotRepository:
    """
    Append-only store of usage snapshots.

    The newest snapshot of a reseller is its billing baseline.
    """

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def record(
        self,
        reseller_id: int,
        total_bytes: int,
        meta: Dict[str, Any],
        measured_at: Optional[str] = None,
    ) -> UsageSnapshotRecord:
        """Append a snapshot."""
        snapshot = UsageSnapshotRecord(
            reseller_id=reseller_id,
            total_bytes=total_bytes,
            measured_at=measured_at or _now(),
            meta=dict(meta),
        )
        snapshot.id, _ = self.db.execute_write(
            """INSERT INTO reseller_usage_snapshots
               (reseller_id, total_bytes, measured_at, meta)
               VALUES (?, ?, ?, ?)""",
            snapshot.to_db_tuple()
        )
        logger.debug("usage_snapshot_recorded", snapshot_id=snapshot.id, reseller_id=reseller_id, total_bytes=total_bytes)
        return snapshot

    def latest(self, reseller_id: int, charge_applied_only: bool = False) -> Optional[UsageSnapshotRecord]:
        """Get the most recent snapshot for a reseller."""
        query = "SELECT * FROM reseller_usage_snapshots WHERE reseller_id = ?"
        if charge_applied_only:
            query += " AND json_extract(meta, '$.cycle_charge_applied') IN (1, 'true')"
        results = self.db.execute(
            query + " ORDER BY measured_at DESC, id DESC LIMIT 1",
            (reseller_id,)
        )
        return UsageSnapshotRecord.from_row(results[0]) if results else None

    def list_for_reseller(self, reseller_id: int, limit: int = 100) -> List[UsageSnapshotRecord]:
        """Most recent snapshots first."""
        results = self.db.execute(
            """SELECT * FROM reseller_usage_snapshots WHERE reseller_id = ?
               ORDER BY measured_at DESC, id DESC LIMIT ?""",
            (reseller_id, limit)
        )
        return [UsageSnapshotRecord.from_row(r) for r in results]

    def count(self, reseller_id: int) -> int:
        results = self.db.execute(
            "SELECT COUNT(*) as cnt FROM reseller_usage_snapshots WHERE reseller_id = ?",
            (reseller_id,)
        )
        return results[0]["cnt"] if results else 0


class LedgerRepository:
    """Repository for billing ledger entries (insert and read only)."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, entry: LedgerEntryRecord) -> LedgerEntryRecord:
        """Append a ledger entry."""
        entry.id, _ = self.db.execute_write(
            """INSERT INTO billing_ledger_entries
               (reseller_id, reseller_config_id, action_type, charged_bytes,
                amount_charged, price_per_gb, wallet_balance_before,
                wallet_balance_after, meta, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            entry.to_db_tuple()
        )
        return entry

    def list_for_reseller(self, reseller_id: int, limit: int = 100) -> List[LedgerEntryRecord]:
        """Ledger entries for a reseller, newest first."""
        results = self.db.execute(
            "SELECT * FROM billing_ledger_entries WHERE reseller_id = ? ORDER BY id DESC LIMIT ?",
            (reseller_id, limit)
        )
        return [LedgerEntryRecord.from_row(r) for r in results]

    def list_for_config(self, config_id: int, action_type: Optional[str] = None) -> List[LedgerEntryRecord]:
        """Ledger entries tied to one config."""
        query = "SELECT * FROM billing_ledger_entries WHERE reseller_config_id = ?"
        params: List[Any] = [config_id]
        if action_type is not None:
            query += " AND action_type = ?"
            params.append(action_type)
        results = self.db.execute(query + " ORDER BY id ASC", tuple(params))
        return [LedgerEntryRecord.from_row(r) for r in results]

    def get_reseller_summary(self, reseller_id: int) -> Dict[str, Any]:
        """Totals charged to a reseller."""
        results = self.db.execute(
            """SELECT
                COUNT(*) as entries,
                SUM(charged_bytes) as total_bytes,
                SUM(amount_charged) as total_charged
               FROM billing_ledger_entries WHERE reseller_id = ?""",
            (reseller_id,)
        )
        row = results[0] if results else {}
        return {
            "reseller_id": reseller_id,
            "entries": row.get("entries", 0) or 0,
            "total_charged_bytes": row.get("total_bytes", 0) or 0,
            "total_amount_charged": row.get("total_charged", 0) or 0,
        }


class ConfigEventRepository:
    """Repository for per-config audit events."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, config_id: int, event_type: str, meta: Optional[Dict[str, Any]] = None) -> ConfigEventRecord:
        """Append an event."""
        event = ConfigEventRecord(reseller_config_id=config_id, type=event_type, meta=meta or {})
        event.id, _ = self.db.execute_write(
            """INSERT INTO reseller_config_events (reseller_config_id, type, meta, created_at)
               VALUES (?, ?, ?, ?)""",
            (config_id, event_type, json.dumps(event.meta, sort_keys=True), event.created_at)
        )
        return event

    def list_for_config(self, config_id: int, event_type: Optional[str] = None) -> List[ConfigEventRecord]:
        """Events for a config, oldest first."""
        query = "SELECT * FROM reseller_config_events WHERE reseller_config_id = ?"
        params: List[Any] = [config_id]
        if event_type is not None:
            query += " AND type = ?"
            params.append(event_type)
        results = self.db.execute(query + " ORDER BY id ASC", tuple(params))
        return [ConfigEventRecord.from_row(r) for r in results]


class WalletTransactionRepository:
    """Repository for wallet top-ups."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    def create(self, tx: WalletTransactionRecord) -> WalletTransactionRecord:
        tx.id, _ = self.db.execute_write(
            """INSERT INTO wallet_transactions
               (reseller_id, amount, balance_before, balance_after, reference, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (tx.reseller_id, tx.amount, tx.balance_before, tx.balance_after, tx.reference, tx.created_at)
        )
        return tx

    def list_for_reseller(self, reseller_id: int, limit: int = 100) -> List[WalletTransactionRecord]:
        results = self.db.execute(
            "SELECT * FROM wallet_transactions WHERE reseller_id = ? ORDER BY id DESC LIMIT ?",
            (reseller_id, limit)
        )
        return [WalletTransactionRecord.from_row(r) for r in results]
