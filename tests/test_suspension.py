"""
Tests for Wallet Suspension
"""

import pytest

from billing.suspension import SuspensionController
from core.config import BillingConfig
from persistence.models import ConfigStatus, ResellerStatus
from persistence.repository import ConfigEventRepository, ConfigRepository, ResellerRepository
from provisioning.provisioner import StaticProvisioner


@pytest.fixture
def controller(temp_db, billing_config, provisioner, clock):
    return SuspensionController(temp_db, billing_config, provisioner, clock)


class TestSuspensionThreshold:
    """Test when suspension happens."""

    def test_balance_above_threshold_no_action(self, temp_db, controller, provisioner, make_reseller, make_config):
        """-999 is above the -1000 threshold."""
        reseller = make_reseller(balance=-999)
        make_config(reseller, usage_bytes=1)

        outcome = controller.evaluate(reseller)

        assert not outcome.suspended
        assert ResellerRepository(temp_db).get(reseller.id).status == ResellerStatus.ACTIVE
        assert provisioner.calls == []

    def test_balance_at_threshold_suspends(self, temp_db, controller, make_reseller, make_config):
        """The threshold itself is inclusive."""
        reseller = make_reseller(balance=-1000)
        config = make_config(reseller)

        outcome = controller.evaluate(reseller)

        assert outcome.suspended
        assert outcome.status_changed
        assert outcome.disabled == 1
        assert reseller.status == ResellerStatus.SUSPENDED_WALLET
        stored = ConfigRepository(temp_db).get(config.id)
        assert stored.status == ConfigStatus.DISABLED
        assert stored.disabled_at == "2026-03-01T10:15:00.000000+00:00"
        assert stored.meta.disabled_by_reseller_id == reseller.id

    def test_already_disabled_configs_not_touched(self, temp_db, controller, provisioner, make_reseller, make_config):
        """Configs disabled for other reasons keep their meta."""
        reseller = make_reseller(balance=-5000)
        manual = make_config(reseller, status=ConfigStatus.DISABLED)
        make_config(reseller)

        controller.evaluate(reseller)

        assert not ConfigRepository(temp_db).get(manual.id).meta.disabled_by_wallet_suspension
        assert provisioner.calls_for("disable") == ["user-2"]

    def test_other_status_left_alone(self, temp_db, controller, make_reseller, make_config):
        """Resellers suspended for other reasons are not re-labelled."""
        reseller = make_reseller(balance=-5000, status="suspended_admin")
        config = make_config(reseller)

        outcome = controller.evaluate(reseller)

        assert not outcome.suspended
        assert ResellerRepository(temp_db).get(reseller.id).status == "suspended_admin"
        assert ConfigRepository(temp_db).get(config.id).status == ConfigStatus.ACTIVE


class TestCycleScopedDisable:
    """Test the once-per-cycle guard."""

    def test_second_evaluation_same_cycle_disables_nothing(self, temp_db, controller, provisioner, clock, make_reseller, make_config):
        """Re-evaluation inside the hour does not disable again."""
        reseller = make_reseller(balance=-2000)
        config = make_config(reseller)
        controller.evaluate(reseller)

        # an operator turned the config back on without clearing the flag
        stored = ConfigRepository(temp_db).get(config.id)
        stored.status = ConfigStatus.ACTIVE
        ConfigRepository(temp_db).save_state(stored)

        clock.advance(minutes=20)
        outcome = controller.evaluate(reseller)

        assert outcome.disabled == 0
        assert outcome.skipped_in_cycle == 1
        assert provisioner.calls_for("disable") == ["user-1"]

    def test_next_cycle_disables_again(self, temp_db, controller, provisioner, clock, make_reseller, make_config):
        """A new hour is a new cycle."""
        reseller = make_reseller(balance=-2000)
        config = make_config(reseller)
        controller.evaluate(reseller)

        stored = ConfigRepository(temp_db).get(config.id)
        stored.status = ConfigStatus.ACTIVE
        ConfigRepository(temp_db).save_state(stored)

        clock.advance(hours=1)
        outcome = controller.evaluate(reseller)

        assert outcome.disabled == 1
        assert ConfigRepository(temp_db).get(config.id).meta.disabled_by_wallet_suspension_cycle_at == "2026-03-01T11:00:00+00:00"

    def test_minute_resolution(self, temp_db, provisioner, clock, make_reseller, make_config):
        """Minute resolution keys cycles by minute."""
        controller = SuspensionController(
            temp_db, BillingConfig(cycle_key_resolution="minute"), provisioner, clock
        )
        reseller = make_reseller(balance=-2000)
        config = make_config(reseller)

        controller.evaluate(reseller)

        assert ConfigRepository(temp_db).get(config.id).meta.disabled_by_wallet_suspension_cycle_at == "2026-03-01T10:15:00+00:00"

    def test_suspended_reseller_sweep_catches_new_configs(self, temp_db, controller, provisioner, make_reseller, make_config):
        """Configs left active under a suspended reseller get disabled."""
        reseller = make_reseller(balance=-2000, status=ResellerStatus.SUSPENDED_WALLET)
        straggler = make_config(reseller)

        outcome = controller.evaluate(reseller)

        assert outcome.suspended
        assert not outcome.status_changed
        assert outcome.disabled == 1
        assert ConfigRepository(temp_db).get(straggler.id).status == ConfigStatus.DISABLED


class TestRemoteDisableFailures:
    """Test that panel failures never stop suspension."""

    def test_remote_false_recorded(self, temp_db, controller, provisioner, make_reseller, make_config):
        """A rejected disable still leaves the config disabled locally."""
        reseller = make_reseller(balance=-2000)
        failing = make_config(reseller)
        ok = make_config(reseller)
        provisioner.failing_users.add(failing.panel_user_id)

        outcome = controller.evaluate(reseller)

        assert outcome.disabled == 2
        assert outcome.remote_failures == 1
        configs = ConfigRepository(temp_db)
        assert configs.get(failing.id).status == ConfigStatus.DISABLED
        assert configs.get(ok.id).status == ConfigStatus.DISABLED
        events = ConfigEventRepository(temp_db).list_for_config(failing.id, "auto_disabled")
        assert len(events) == 1
        assert events[0].meta["remote_success"] is False

    def test_remote_exception_recorded(self, temp_db, controller, provisioner, make_reseller, make_config):
        """A raising provisioner is logged and the sweep continues."""
        reseller = make_reseller(balance=-2000)
        broken = make_config(reseller)
        make_config(reseller)
        provisioner.raising_users.add(broken.panel_user_id)

        outcome = controller.evaluate(reseller)

        assert outcome.disabled == 2
        assert outcome.remote_failures == 1
        event = ConfigEventRepository(temp_db).list_for_config(broken.id, "auto_disabled")[0]
        assert "unreachable" in event.meta["last_error"]

    def test_config_without_panel(self, temp_db, controller, make_reseller, make_config):
        """A config with no panel is disabled locally and counted as a remote failure."""
        reseller = make_reseller(balance=-2000)
        orphan = make_config(reseller, panel_id=None)

        outcome = controller.evaluate(reseller)

        assert outcome.remote_failures == 1
        assert ConfigRepository(temp_db).get(orphan.id).status == ConfigStatus.DISABLED


class TestStaticProvisioner:
    """Test the default provisioner used for local runs."""

    def test_records_calls_and_answers_fixed_outcome(self, temp_db, billing_config, clock, make_reseller, make_config):
        provisioner = StaticProvisioner(outcome=False)
        controller = SuspensionController(temp_db, billing_config, provisioner, clock)
        reseller = make_reseller(balance=-2000)
        make_config(reseller)

        outcome = controller.evaluate(reseller)

        assert provisioner.calls == [("disable", "marzban", "user-1")]
        assert outcome.remote_failures == 1
