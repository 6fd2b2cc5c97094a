"""
Provisioner Collaborator

The billing engine talks to panels only through this interface. Every call
answers True/False (or raises); panel-specific error detail is never
inspected here.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import structlog

logger = structlog.get_logger()

Credentials = Dict[str, Optional[str]]


class Provisioner(ABC):
    """Remote operations on a panel user."""

    @abstractmethod
    def enable(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        """Enable a user on its panel."""

    @abstractmethod
    def disable(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        """Disable a user on its panel."""

    @abstractmethod
    def reset_usage(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        """Zero a user's traffic counter on its panel."""

    @abstractmethod
    def delete(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        """Remove a user from its panel."""


class StaticProvisioner(Provisioner):
    """
    Provisioner that only logs and answers with a fixed outcome.

    Used for local runs and dry environments where no panel is reachable.
    Every call is kept in `calls` for inspection.
    """

    def __init__(self, outcome: bool = True):
        self.outcome = outcome
        self.calls: List[Tuple[str, str, Optional[str]]] = []

    def _record(self, operation: str, panel_type: str, panel_user_id: Optional[str]) -> bool:
        self.calls.append((operation, panel_type, panel_user_id))
        logger.info(
            "provisioner_call",
            operation=operation,
            panel_type=panel_type,
            panel_user_id=panel_user_id,
            outcome=self.outcome,
        )
        return self.outcome

    def enable(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        return self._record("enable", panel_type, panel_user_id)

    def disable(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        return self._record("disable", panel_type, panel_user_id)

    def reset_usage(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        return self._record("reset_usage", panel_type, panel_user_id)

    def delete(self, panel_type: str, credentials: Credentials, panel_user_id: Optional[str]) -> bool:
        return self._record("delete", panel_type, panel_user_id)


def call_provisioner(provisioner: Provisioner, operation: str, panel: Any, panel_user_id: Optional[str]) -> Dict[str, Any]:
    """
    Run one remote operation and fold every failure mode into a result dict.

    Returns {"success": bool, "last_error": str | None}. A missing panel is a
    failure, never an exception.
    """
    if panel is None:
        return {"success": False, "last_error": "No panel configured"}

    try:
        method = getattr(provisioner, operation)
        success = bool(method(panel.panel_type, panel.credentials(), panel_user_id))
    except Exception as e:
        logger.error(
            "provisioner_call_failed",
            operation=operation,
            panel_id=panel.id,
            panel_type=panel.panel_type,
            panel_user_id=panel_user_id,
            error=str(e),
        )
        return {"success": False, "last_error": str(e)}

    return {"success": success, "last_error": None if success else "Panel rejected the request"}
