"""
Tests for Lease Locks and the Database Layer
"""

import pytest

from persistence.database import Database
from persistence.locks import LeaseLockStore
from persistence.models import ConfigMeta, ResellerRecord
from persistence.repository import ResellerRepository


class FloatClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now


@pytest.fixture
def float_clock():
    return FloatClock()


@pytest.fixture
def locks(temp_db, float_clock):
    return LeaseLockStore(temp_db, clock=float_clock)


class TestLeaseLockStore:
    """Test key-based leases."""

    def test_acquire_and_release(self, locks):
        """A released key can be taken again."""
        lease = locks.acquire("wallet_charge:reseller:1", 20)
        assert lease is not None
        assert locks.is_held("wallet_charge:reseller:1")

        assert lease.release()
        assert not locks.is_held("wallet_charge:reseller:1")
        assert locks.acquire("wallet_charge:reseller:1", 20) is not None

    def test_held_key_unavailable(self, locks):
        """Acquisition never waits; it reports the key as taken."""
        assert locks.acquire("k", 20) is not None
        assert locks.acquire("k", 20) is None

    def test_expired_lease_can_be_taken(self, locks, float_clock):
        """A crashed holder's lease expires after its TTL."""
        locks.acquire("k", 20)
        float_clock.now += 21

        assert locks.acquire("k", 20) is not None

    def test_only_owner_releases(self, locks):
        locks.acquire("k", 20, owner="a")

        assert not locks.release("k", "b")
        assert locks.is_held("k")

    def test_context_manager_releases(self, locks):
        with locks.acquire("k", 20):
            assert locks.is_held("k")
        assert not locks.is_held("k")

    def test_mark_blocks_until_expiry(self, locks, float_clock):
        """Markers work as expiring idempotency keys."""
        assert locks.mark("final_settlement:1:reset_traffic", 30)
        float_clock.now += 29
        assert not locks.mark("final_settlement:1:reset_traffic", 30)
        float_clock.now += 2
        assert locks.mark("final_settlement:1:reset_traffic", 30)

    def test_purge_expired(self, locks, float_clock):
        locks.acquire("a", 5)
        locks.acquire("b", 50)
        float_clock.now += 10

        assert locks.purge_expired() == 1
        assert locks.is_held("b")

    def test_locks_shared_across_store_instances(self, temp_db, float_clock):
        """Two processes sharing the database see the same holder."""
        first = LeaseLockStore(temp_db, clock=float_clock)
        second = LeaseLockStore(Database(temp_db.database_url), clock=float_clock)

        assert first.acquire("k", 20) is not None
        assert second.acquire("k", 20) is None


class TestDatabaseTransactions:
    """Test the transaction context manager."""

    def test_rollback_on_error(self, temp_db):
        """Writes inside a failed transaction are discarded."""
        repo = ResellerRepository(temp_db)
        reseller = repo.create(ResellerRecord(name="r", wallet_balance=100))

        with pytest.raises(RuntimeError):
            with temp_db.transaction():
                repo.adjust_balance(reseller.id, -50)
                raise RuntimeError("abort")

        assert repo.get(reseller.id).wallet_balance == 100

    def test_nested_transaction_joins_outer(self, temp_db):
        """An inner failure rolls back the whole outer unit."""
        repo = ResellerRepository(temp_db)
        reseller = repo.create(ResellerRecord(name="r", wallet_balance=100))

        with pytest.raises(LookupError):
            with temp_db.transaction():
                repo.adjust_balance(reseller.id, -50)
                repo.adjust_balance(9999, -50)

        assert repo.get(reseller.id).wallet_balance == 100

    def test_adjust_balance_returns_before_and_after(self, temp_db):
        repo = ResellerRepository(temp_db)
        reseller = repo.create(ResellerRecord(name="r", wallet_balance=100))

        assert repo.adjust_balance(reseller.id, -300) == (100, -200)

    def test_unsupported_url_rejected(self):
        with pytest.raises(ValueError):
            Database("postgresql://localhost/wallet")

    def test_initialize_is_idempotent(self, temp_db):
        temp_db.initialize()
        rows = temp_db.execute("SELECT version FROM schema_version")
        assert len(rows) == 1


class TestConfigMeta:
    """Test the meta value object."""

    def test_unknown_keys_preserved(self):
        """Keys written by other tools survive a round trip."""
        meta = ConfigMeta.from_dict({"settled_usage_bytes": 10, "panel_note": "vip"})
        meta.charged_bytes = 5

        data = meta.to_dict()

        assert data["panel_note"] == "vip"
        assert data["settled_usage_bytes"] == 10
        assert data["charged_bytes"] == 5

    def test_string_flags_accepted(self):
        meta = ConfigMeta.from_dict({"disabled_by_wallet_suspension": "1"})
        assert meta.disabled_by_wallet_suspension

    def test_clear_wallet_suspension_drops_keys(self):
        meta = ConfigMeta(
            disabled_by_wallet_suspension=True,
            disabled_by_wallet_suspension_cycle_at="2026-03-01T10:00:00+00:00",
            disabled_by_reseller_id=3,
        )
        meta.clear_wallet_suspension()

        data = meta.to_dict()
        assert "disabled_by_wallet_suspension" not in data
        assert "disabled_by_wallet_suspension_cycle_at" not in data
        assert "disabled_by_reseller_id" not in data
