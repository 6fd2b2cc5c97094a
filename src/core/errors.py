"""
Wallet Meter Exceptions

Skip conditions are never exceptions; these cover real failures only.
"""


class WalletMeterError(Exception):
    """Base class for billing engine errors."""
    pass


class ConfigurationError(WalletMeterError):
    """Raised when a billing option has an unusable value."""
    pass


class NotFoundError(WalletMeterError):
    """Raised when a reseller, config or panel does not exist."""

    def __init__(self, entity: str, entity_id: int):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class SettlementError(WalletMeterError):
    """
    Raised when a final settlement could not be written.

    The destructive action that requested the settlement must not proceed.
    """

    def __init__(self, config_id: int, action_type: str, cause: Exception):
        self.config_id = config_id
        self.action_type = action_type
        self.cause = cause
        super().__init__(
            f"Final settlement for config {config_id} ({action_type}) failed: {cause}"
        )
