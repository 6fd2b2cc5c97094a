"""
Tests for FastAPI Endpoints

Integration tests for the admin API.
"""

import sqlite3
import pytest
from fastapi.testclient import TestClient

from api.server import AppState, app, get_state
from core.config import GIB
from persistence.models import ResellerStatus
from persistence.repository import ConfigRepository, ResellerRepository


@pytest.fixture
def state(temp_db, billing_config, provisioner, clock):
    return AppState(db=temp_db, config=billing_config, provisioner=provisioner, clock=clock)


@pytest.fixture
def client(state):
    """Create test client bound to the test state."""
    app.dependency_overrides[get_state] = lambda: state
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"
        assert "version" in data
        assert "uptime_seconds" in data


class TestChargeEndpoint:
    """Test one-off charges."""

    def test_charge(self, client, make_reseller, make_config):
        reseller = make_reseller(balance=10_000)
        make_config(reseller, usage_bytes=2 * GIB)

        response = client.post(f"/resellers/{reseller.id}/charge")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "charged"
        assert data["cost"] == 1560
        assert data["new_balance"] == 8440
        assert data["source"] == "admin"

    def test_dry_run(self, temp_db, client, make_reseller, make_config):
        """Dry runs report the balance after the charge and write nothing."""
        reseller = make_reseller(balance=1000)
        make_config(reseller, usage_bytes=GIB)

        response = client.post(f"/resellers/{reseller.id}/charge", json={"dry_run": True})

        data = response.json()
        assert data["status"] == "dry_run"
        assert data["current_balance"] == 1000
        assert data["balance_after_charge"] == 220
        assert ResellerRepository(temp_db).get(reseller.id).wallet_balance == 1000

    def test_force_after_recent_charge(self, temp_db, client, make_reseller, make_config):
        reseller = make_reseller()
        config = make_config(reseller, usage_bytes=GIB)
        client.post(f"/resellers/{reseller.id}/charge")
        ConfigRepository(temp_db).update_usage(config.id, 2 * GIB)

        skipped = client.post(f"/resellers/{reseller.id}/charge").json()
        forced = client.post(f"/resellers/{reseller.id}/charge", json={"force": True}).json()

        assert skipped["reason"] == "idempotency_guard"
        assert forced["status"] == "charged"

    def test_unknown_reseller(self, client):
        response = client.post("/resellers/9999/charge")
        assert response.status_code == 404


class TestWalletEndpoints:
    """Test top-ups, re-enabling and the ledger."""

    def test_top_up_reactivates(self, temp_db, client, make_reseller, make_config):
        """A top-up above the threshold brings a suspended reseller back."""
        reseller = make_reseller(balance=0)
        config = make_config(reseller, usage_bytes=3 * GIB)
        client.post(f"/resellers/{reseller.id}/charge")
        assert ResellerRepository(temp_db).get(reseller.id).status == ResellerStatus.SUSPENDED_WALLET

        response = client.post(f"/resellers/{reseller.id}/top-up", json={"amount": 5000, "reference": "pay-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["reactivated"]
        assert data["reenable"]["enabled"] == 1
        assert ConfigRepository(temp_db).get(config.id).status == "active"

    def test_top_up_requires_positive_amount(self, client, make_reseller):
        reseller = make_reseller()
        response = client.post(f"/resellers/{reseller.id}/top-up", json={"amount": 0})
        assert response.status_code == 422

    def test_reenable(self, client, make_reseller):
        reseller = make_reseller()
        response = client.post(f"/resellers/{reseller.id}/reenable")
        assert response.status_code == 200
        assert response.json()["enabled"] == 0

    def test_ledger(self, client, make_reseller, make_config):
        reseller = make_reseller(balance=10_000)
        make_config(reseller, usage_bytes=GIB)
        client.post(f"/resellers/{reseller.id}/charge")

        response = client.get(f"/resellers/{reseller.id}/ledger")

        data = response.json()
        assert data["wallet_balance"] == 9220
        assert data["summary"]["total_amount_charged"] == 780
        assert len(data["entries"]) == 1
        assert data["entries"][0]["action_type"] == "hourly"

    def test_ledger_limit_validated(self, client, make_reseller):
        reseller = make_reseller()
        response = client.get(f"/resellers/{reseller.id}/ledger?limit=0")
        assert response.status_code == 400


class TestConfigEndpoints:
    """Test destructive config actions."""

    def test_reset_traffic(self, client, make_reseller, make_config):
        reseller = make_reseller(balance=10_000)
        config = make_config(reseller, usage_bytes=GIB)

        response = client.post(f"/configs/{config.id}/reset-traffic")

        assert response.status_code == 200
        data = response.json()
        assert data["settlement"]["status"] == "charged"
        assert data["settlement"]["usage_folded"]
        assert data["remote_sync"] is True
        assert data["remote_error"] is None

    def test_delete(self, temp_db, client, make_reseller, make_config):
        reseller = make_reseller()
        config = make_config(reseller, usage_bytes=GIB)

        response = client.delete(f"/configs/{config.id}")

        assert response.status_code == 200
        assert response.json()["settlement"]["action_type"] == "delete_config"
        assert ConfigRepository(temp_db).get(config.id) is None

    def test_unknown_config(self, client):
        assert client.delete("/configs/9999").status_code == 404

    def test_settlement_failure_returns_503(self, client, state, make_reseller, make_config, monkeypatch):
        """A failed settlement blocks the action with 503."""
        reseller = make_reseller()
        config = make_config(reseller, usage_bytes=GIB)

        def broken_create(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(state.actions.settlement.ledger, "create", broken_create)

        response = client.post(f"/configs/{config.id}/reset-traffic")

        assert response.status_code == 503
