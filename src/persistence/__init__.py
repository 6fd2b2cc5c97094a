"""
Persistence Layer for Wallet Meter

SQLite storage for resellers, configs, snapshots, the billing ledger and
lease locks.
"""

from .database import Database, get_database
from .locks import Lease, LeaseLockStore
from .models import (
    BillingType,
    ConfigEventRecord,
    ConfigMeta,
    ConfigRecord,
    ConfigStatus,
    LedgerAction,
    LedgerEntryRecord,
    PanelRecord,
    ResellerRecord,
    ResellerStatus,
    UsageSnapshotRecord,
    WalletTransactionRecord,
)
from .repository import (
    ConfigEventRepository,
    ConfigRepository,
    LedgerRepository,
    PanelRepository,
    ResellerRepository,
    SnapshotRepository,
    WalletTransactionRepository,
)

__all__ = [
    "Database",
    "get_database",
    "Lease",
    "LeaseLockStore",
    "BillingType",
    "ConfigEventRecord",
    "ConfigMeta",
    "ConfigRecord",
    "ConfigStatus",
    "LedgerAction",
    "LedgerEntryRecord",
    "PanelRecord",
    "ResellerRecord",
    "ResellerStatus",
    "UsageSnapshotRecord",
    "WalletTransactionRecord",
    "ConfigEventRepository",
    "ConfigRepository",
    "LedgerRepository",
    "PanelRepository",
    "ResellerRepository",
    "SnapshotRepository",
    "WalletTransactionRepository",
]
