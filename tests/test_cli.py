"""
Tests for the CLI
"""

import json
import pytest

import cli
from core.config import GIB, reset_config
from persistence.database import Database
from persistence.repository import ResellerRepository, SnapshotRepository


@pytest.fixture
def cli_db(temp_db, monkeypatch):
    """Point the CLI at the test database."""
    monkeypatch.setenv("DATABASE_URL", temp_db.database_url)
    Database.reset_instance()
    reset_config()
    yield temp_db
    Database.reset_instance()
    reset_config()


def run(*argv):
    cli.main(["--log-level", "ERROR", *argv])


class TestArgumentParsing:
    """Test argument handling."""

    def test_charge_once_requires_reseller(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["charge-once"])

    def test_charge_once_flags(self):
        args = cli.build_parser().parse_args(["charge-once", "--reseller", "7", "--dry-run", "--force"])
        assert args.reseller == 7
        assert args.dry_run
        assert args.force

    def test_no_command_prints_help(self, capsys):
        cli.main([])
        assert "wallet-meter" in capsys.readouterr().out


class TestCommands:
    """Test command handlers against a real database."""

    def test_init_db(self, cli_db, capsys):
        run("init-db")
        assert "Database ready" in capsys.readouterr().out

    def test_charge_once_dry_run(self, cli_db, make_reseller, make_config, capsys):
        reseller = make_reseller(balance=1000)
        make_config(reseller, usage_bytes=GIB)

        run("charge-once", "--reseller", str(reseller.id), "--dry-run")

        out = capsys.readouterr().out
        assert "Dry run" in out
        assert "Balance after charge: 220" in out
        assert SnapshotRepository(cli_db).count(reseller.id) == 0

    def test_charge_once(self, cli_db, make_reseller, make_config, capsys):
        reseller = make_reseller(balance=1000)
        make_config(reseller, usage_bytes=GIB)

        run("charge-once", "--reseller", str(reseller.id))

        assert "New balance: 220" in capsys.readouterr().out
        assert ResellerRepository(cli_db).get(reseller.id).wallet_balance == 220

    def test_charge_once_unknown_reseller(self, cli_db, capsys):
        with pytest.raises(SystemExit):
            run("charge-once", "--reseller", "9999")
        assert "not found" in capsys.readouterr().out

    def test_charge_cycle(self, cli_db, make_reseller, make_config, capsys):
        reseller = make_reseller(balance=10_000)
        make_config(reseller, usage_bytes=GIB)

        run("charge-cycle")

        out = capsys.readouterr().out
        assert "Charged: 1" in out
        assert "Total cost: 780" in out

    def test_reenable_sweep(self, cli_db, capsys):
        run("reenable-sweep")
        assert "0 resellers" in capsys.readouterr().out

    def test_diagnose_json(self, cli_db, make_reseller, make_config, capsys):
        reseller = make_reseller(balance=500)
        make_config(reseller, usage_bytes=2 * GIB)

        run("diagnose", "--reseller", str(reseller.id), "--json")

        data = json.loads(capsys.readouterr().out)
        assert data["reseller"]["wallet_balance"] == 500
        assert data["current_total_bytes"] == 2 * GIB
        assert data["delta_bytes"] == 2 * GIB
        assert data["last_snapshot"] is None

    def test_diagnose_text(self, cli_db, make_reseller, make_config, capsys):
        reseller = make_reseller()
        make_config(reseller, usage_bytes=GIB)
        run("charge-once", "--reseller", str(reseller.id))
        capsys.readouterr()

        run("diagnose", "--reseller", str(reseller.id))

        out = capsys.readouterr().out
        assert "Wallet balance: 9220" in out
        assert "hourly" in out
