"""
Billing Configuration

Every knob of the wallet billing engine lives here. Values come from the
environment (WALLET_* variables) with defaults suitable for production.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional
import os

from .errors import ConfigurationError

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024

CYCLE_RESOLUTIONS = ("hourly", "minute")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class BillingConfig:
    """Configuration for wallet charging, settlement and suspension."""
    price_per_gb: int = 780  # Default when a reseller has no override
    suspension_threshold: int = -1000
    minimum_delta_bytes_to_charge: int = 5 * MIB
    charge_idempotency_seconds: int = 50
    settlement_idempotency_seconds: int = 30
    charge_lock_ttl_seconds: int = 20
    charge_lock_key_prefix: str = "wallet_charge"
    auto_reenable_enabled: bool = True
    charge_enabled: bool = True
    cycle_key_resolution: str = "hourly"
    charge_workers: int = 4

    # env var name for each field
    ENV_VARS = {
        "price_per_gb": "WALLET_PRICE_PER_GB",
        "suspension_threshold": "WALLET_SUSPENSION_THRESHOLD",
        "minimum_delta_bytes_to_charge": "WALLET_MINIMUM_DELTA_BYTES",
        "charge_idempotency_seconds": "WALLET_CHARGE_IDEMPOTENCY_SECONDS",
        "settlement_idempotency_seconds": "WALLET_SETTLEMENT_IDEMPOTENCY_SECONDS",
        "charge_lock_ttl_seconds": "WALLET_CHARGE_LOCK_TTL_SECONDS",
        "charge_lock_key_prefix": "WALLET_CHARGE_LOCK_KEY_PREFIX",
        "auto_reenable_enabled": "WALLET_AUTO_REENABLE_ENABLED",
        "charge_enabled": "WALLET_CHARGE_ENABLED",
        "cycle_key_resolution": "WALLET_CYCLE_KEY_RESOLUTION",
        "charge_workers": "WALLET_CHARGE_WORKERS",
    }

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Reject values the engine cannot work with."""
        if self.price_per_gb < 0:
            raise ConfigurationError("price_per_gb must be >= 0")
        if self.minimum_delta_bytes_to_charge < 0:
            raise ConfigurationError("minimum_delta_bytes_to_charge must be >= 0")
        if self.charge_idempotency_seconds < 0 or self.settlement_idempotency_seconds < 0:
            raise ConfigurationError("idempotency windows must be >= 0")
        if self.charge_lock_ttl_seconds <= 0:
            raise ConfigurationError("charge_lock_ttl_seconds must be > 0")
        if self.cycle_key_resolution not in CYCLE_RESOLUTIONS:
            raise ConfigurationError(
                f"cycle_key_resolution must be one of {CYCLE_RESOLUTIONS}, "
                f"got {self.cycle_key_resolution!r}"
            )
        if self.charge_workers < 1:
            raise ConfigurationError("charge_workers must be >= 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BillingConfig":
        """
        Build a config from environment variables.

        Unset variables keep their defaults.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            env_name = cls.ENV_VARS.get(f.name)
            if env_name is None or env_name not in environ:
                continue
            raw = environ[env_name].strip()
            values[f.name] = _coerce(f.name, env_name, raw, f.type)

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(name: str, env_name: str, raw: str, type_: Any) -> Any:
    type_name = type_ if isinstance(type_, str) else getattr(type_, "__name__", str(type_))

    if type_name == "bool":
        lowered = raw.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"{env_name} must be a boolean, got {raw!r}")

    if type_name == "int":
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{env_name} must be an integer, got {raw!r}")

    return raw


_config: Optional[BillingConfig] = None


def get_config() -> BillingConfig:
    """Get the process-wide billing config (loaded from the environment once)."""
    global _config
    if _config is None:
        _config = BillingConfig.from_env()
    return _config


def reset_config() -> None:
    """Forget the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None
