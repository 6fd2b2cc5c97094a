"""
WALLET METER - Provisioning Module

The panel-facing collaborator and the config actions that go through it.
`provisioning.actions` is imported directly; it depends on billing.
"""

from .provisioner import Provisioner, StaticProvisioner, call_provisioner

__all__ = [
    "Provisioner",
    "StaticProvisioner",
    "call_provisioner",
]
