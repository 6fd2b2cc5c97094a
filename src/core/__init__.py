"""
WALLET METER - Core Module

Configuration, error types and billing cycle helpers shared by the
persistence, billing and provisioning layers.
"""

from .config import BillingConfig, get_config, reset_config, GIB, MIB
from .cycle import cycle_key, utc_now
from .errors import (
    WalletMeterError,
    ConfigurationError,
    NotFoundError,
    SettlementError,
)

__all__ = [
    "BillingConfig",
    "get_config",
    "reset_config",
    "GIB",
    "MIB",
    "cycle_key",
    "utc_now",
    "WalletMeterError",
    "ConfigurationError",
    "NotFoundError",
    "SettlementError",
]
