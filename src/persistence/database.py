"""
Database Connection Layer

SQLite storage for resellers, configs, usage snapshots and the billing ledger,
with explicit transactions for the charge/settlement atomic units.
"""

import os
import sqlite3
from contextlib import contextmanager
from typing import Optional, Generator, Any, Dict, List
from datetime import datetime, timezone
import threading
import structlog

logger = structlog.get_logger()

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Resellers own configs and a prepaid wallet
CREATE TABLE IF NOT EXISTS resellers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    billing_type TEXT NOT NULL DEFAULT 'wallet',
    status TEXT NOT NULL DEFAULT 'active',
    wallet_balance INTEGER NOT NULL DEFAULT 0,
    wallet_price_per_gb INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- External control-plane services hosting configs
CREATE TABLE IF NOT EXISTS panels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    panel_type TEXT NOT NULL,
    url TEXT,
    username TEXT,
    password TEXT,
    api_token TEXT,
    created_at TEXT NOT NULL
);

-- Provisioned, metered accounts
CREATE TABLE IF NOT EXISTS reseller_configs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reseller_id INTEGER NOT NULL,
    panel_id INTEGER,
    panel_user_id TEXT,
    external_username TEXT,
    usage_bytes INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active',
    disabled_at TEXT,
    deleted_at TEXT,
    meta TEXT,  -- JSON object
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (reseller_id) REFERENCES resellers(id),
    FOREIGN KEY (panel_id) REFERENCES panels(id)
);

-- Billing baselines (append-only)
CREATE TABLE IF NOT EXISTS reseller_usage_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reseller_id INTEGER NOT NULL,
    total_bytes INTEGER NOT NULL,
    measured_at TEXT NOT NULL,
    meta TEXT,  -- JSON object
    FOREIGN KEY (reseller_id) REFERENCES resellers(id)
);

-- One row per applied charge (immutable)
CREATE TABLE IF NOT EXISTS billing_ledger_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reseller_id INTEGER NOT NULL,
    reseller_config_id INTEGER,
    action_type TEXT NOT NULL,
    charged_bytes INTEGER NOT NULL,
    amount_charged INTEGER NOT NULL,
    price_per_gb INTEGER NOT NULL,
    wallet_balance_before INTEGER NOT NULL,
    wallet_balance_after INTEGER NOT NULL,
    meta TEXT,  -- JSON object
    created_at TEXT NOT NULL,
    FOREIGN KEY (reseller_id) REFERENCES resellers(id),
    FOREIGN KEY (reseller_config_id) REFERENCES reseller_configs(id)
);

-- Per-config audit trail
CREATE TABLE IF NOT EXISTS reseller_config_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reseller_config_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    meta TEXT,  -- JSON object
    created_at TEXT NOT NULL,
    FOREIGN KEY (reseller_config_id) REFERENCES reseller_configs(id)
);

-- Wallet top-ups
CREATE TABLE IF NOT EXISTS wallet_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reseller_id INTEGER NOT NULL,
    amount INTEGER NOT NULL,
    balance_before INTEGER NOT NULL,
    balance_after INTEGER NOT NULL,
    reference TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (reseller_id) REFERENCES resellers(id)
);

-- Lease locks and idempotency markers
CREATE TABLE IF NOT EXISTS cache_locks (
    key TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    expires_at REAL NOT NULL
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_resellers_type_status ON resellers(billing_type, status);
CREATE INDEX IF NOT EXISTS idx_configs_reseller ON reseller_configs(reseller_id);
CREATE INDEX IF NOT EXISTS idx_configs_status ON reseller_configs(status);
CREATE INDEX IF NOT EXISTS idx_snapshots_reseller_measured ON reseller_usage_snapshots(reseller_id, measured_at);
CREATE INDEX IF NOT EXISTS idx_ledger_reseller ON billing_ledger_entries(reseller_id);
CREATE INDEX IF NOT EXISTS idx_ledger_config ON billing_ledger_entries(reseller_config_id);
CREATE INDEX IF NOT EXISTS idx_events_config ON reseller_config_events(reseller_config_id);
CREATE INDEX IF NOT EXISTS idx_wallet_tx_reseller ON wallet_transactions(reseller_id);
"""


class Database:
    """
    SQLite connection manager.

    Connections are per thread. Statements outside `transaction()` commit
    immediately; statements inside it commit or roll back together.

    Usage:
        db = Database()  # Uses DATABASE_URL env or defaults to wallet_meter.db
        with db.transaction():
            db.execute("UPDATE resellers SET ...")
            db.execute("INSERT INTO billing_ledger_entries ...")
    """

    _instance: Optional["Database"] = None
    _lock = threading.Lock()

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.environ.get(
            "DATABASE_URL",
            "sqlite:///wallet_meter.db"
        )
        if not self.database_url.startswith("sqlite:///"):
            raise ValueError(f"Unsupported DATABASE_URL: {self.database_url}")
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False

    @classmethod
    def get_instance(cls, database_url: Optional[str] = None) -> "Database":
        """Get singleton database instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(database_url)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (used when DATABASE_URL changes)."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = None

    def _get_sqlite_path(self) -> str:
        """Extract SQLite file path from URL."""
        return self.database_url[len("sqlite:///"):] or "wallet_meter.db"

    def _connect(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                self._get_sqlite_path(),
                check_same_thread=False,
                timeout=30.0,
                isolation_level=None,  # transactions are explicit
            )
            conn.row_factory = sqlite3.Row
            # WAL lets readers run alongside the billing writer
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
            self._local.depth = 0
        return conn

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "depth", 0) > 0

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get this thread's connection."""
        yield self._connect()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Run the enclosed statements as one atomic unit.

        BEGIN IMMEDIATE takes the write lock up front, so two writers never
        interleave inside a charge. Nested calls join the outer transaction.
        """
        conn = self._connect()
        if self._local.depth > 0:
            self._local.depth += 1
            try:
                yield conn
            finally:
                self._local.depth -= 1
            return

        conn.execute("BEGIN IMMEDIATE")
        self._local.depth = 1
        try:
            yield conn
        except BaseException:
            self._local.depth = 0
            conn.execute("ROLLBACK")
            raise
        else:
            self._local.depth = 0
            conn.execute("COMMIT")

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._init_lock:
            if self._initialized:
                return

            with self.connection() as conn:
                conn.executescript(SCHEMA_SQL)

                # Record schema version
                now = datetime.now(timezone.utc).isoformat()
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now)
                )

            self._initialized = True
            logger.info("database_initialized", path=self._get_sqlite_path(), schema_version=SCHEMA_VERSION)

    def execute(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Execute a query and return results as list of dicts."""
        with self.connection() as conn:
            cursor = conn.execute(query, params)
            if cursor.description:
                return [dict(row) for row in cursor.fetchall()]
            return []

    def execute_write(self, query: str, params: tuple = ()) -> tuple:
        """Execute a write and return (lastrowid, rowcount)."""
        with self.connection() as conn:
            cursor = conn.execute(query, params)
            return cursor.lastrowid, cursor.rowcount

    def close(self) -> None:
        """Close this thread's connection."""
        if getattr(self._local, "conn", None) is not None:
            self._local.conn.close()
            self._local.conn = None
            self._local.depth = 0


def get_database(database_url: Optional[str] = None) -> Database:
    """Get the database singleton instance."""
    db = Database.get_instance(database_url)
    db.initialize()
    return db
