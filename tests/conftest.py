"""
Pytest Configuration and Fixtures
"""

import os
import sys
import pytest
import tempfile
from datetime import datetime, timedelta, timezone

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

from core.config import BillingConfig
from persistence.database import Database
from persistence.models import (
    BillingType,
    ConfigMeta,
    ConfigRecord,
    ConfigStatus,
    PanelRecord,
    ResellerRecord,
    ResellerStatus,
)
from persistence.repository import ConfigRepository, PanelRepository, ResellerRepository
from provisioning.provisioner import Provisioner


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, minutes: float = 0, hours: float = 0) -> datetime:
        self.current += timedelta(seconds=seconds, minutes=minutes, hours=hours)
        return self.current


class RecordingProvisioner(Provisioner):
    """Provisioner that records calls and fails on request."""

    def __init__(self):
        self.calls = []
        self.failing_users = set()
        self.raising_users = set()
        self.failing_panel_types = set()

    def _handle(self, operation, panel_type, panel_user_id):
        self.calls.append((operation, panel_user_id))
        if panel_user_id in self.raising_users:
            raise ConnectionError(f"panel unreachable for {panel_user_id}")
        if panel_type in self.failing_panel_types:
            return False
        return panel_user_id not in self.failing_users

    def enable(self, panel_type, credentials, panel_user_id):
        return self._handle("enable", panel_type, panel_user_id)

    def disable(self, panel_type, credentials, panel_user_id):
        return self._handle("disable", panel_type, panel_user_id)

    def reset_usage(self, panel_type, credentials, panel_user_id):
        return self._handle("reset_usage", panel_type, panel_user_id)

    def delete(self, panel_type, credentials, panel_user_id):
        return self._handle("delete", panel_type, panel_user_id)

    def calls_for(self, operation):
        return [user for op, user in self.calls if op == operation]


@pytest.fixture
def temp_db():
    """Create a temporary, initialized database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(f"sqlite:///{db_path}")
    db.initialize()

    yield db

    db.close()
    for path in (db_path, db_path + "-wal", db_path + "-shm"):
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 10, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def provisioner():
    return RecordingProvisioner()


@pytest.fixture
def billing_config():
    """Production defaults: 780 per GB, threshold -1000, 5 MiB minimum."""
    return BillingConfig()


@pytest.fixture
def make_reseller(temp_db):
    """Factory for persisted resellers."""
    repo = ResellerRepository(temp_db)

    def _make(balance=10_000, status=ResellerStatus.ACTIVE, billing_type=BillingType.WALLET,
              price_per_gb=None, name="reseller"):
        return repo.create(ResellerRecord(
            name=name,
            billing_type=billing_type,
            status=status,
            wallet_balance=balance,
            wallet_price_per_gb=price_per_gb,
        ))

    return _make


@pytest.fixture
def panel(temp_db):
    return PanelRepository(temp_db).create(PanelRecord(
        name="panel-1",
        panel_type="marzban",
        url="https://panel.example.test",
        username="admin",
        password="secret",
    ))


@pytest.fixture
def make_config(temp_db, panel):
    """Factory for persisted configs, attached to the default panel."""
    repo = ConfigRepository(temp_db)
    counter = {"n": 0}

    def _make(reseller, usage_bytes=0, settled_bytes=0, status=ConfigStatus.ACTIVE,
              panel_id="default", external_username=None, meta=None):
        counter["n"] += 1
        config_meta = meta or ConfigMeta()
        if settled_bytes:
            config_meta.settled_usage_bytes = settled_bytes
        return repo.create(ConfigRecord(
            reseller_id=reseller.id,
            panel_id=panel.id if panel_id == "default" else panel_id,
            panel_user_id=f"user-{counter['n']}",
            external_username=external_username or f"cfg{counter['n']}",
            usage_bytes=usage_bytes,
            status=status,
            meta=config_meta,
        ))

    return _make

