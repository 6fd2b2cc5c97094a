"""
Wallet Top-Ups

Credits a reseller's wallet. A reseller suspended for an exhausted wallet
is reactivated as soon as a top-up lifts the balance above the suspension
threshold, and its wallet-suspended configs are re-enabled right away.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import structlog

from core.config import BillingConfig, get_config
from core.errors import NotFoundError
from persistence.database import Database, get_database
from persistence.models import ResellerStatus, WalletTransactionRecord
from persistence.repository import ResellerRepository, WalletTransactionRepository
from provisioning.provisioner import Provisioner

from .reenable import ReenablementOrchestrator
from .results import ReenableResult

logger = structlog.get_logger()


@dataclass
class TopUpResult:
    """Outcome of a wallet credit."""
    reseller_id: int
    amount: int
    balance_before: int
    balance_after: int
    transaction_id: Optional[int] = None
    reactivated: bool = False
    reenable: Optional[ReenableResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reseller_id": self.reseller_id,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "transaction_id": self.transaction_id,
            "reactivated": self.reactivated,
            "reenable": self.reenable.to_dict() if self.reenable else None,
        }


class WalletService:
    """Wallet credits and the reactivation they trigger."""

    def __init__(
        self,
        db: Optional[Database] = None,
        config: Optional[BillingConfig] = None,
        provisioner: Optional[Provisioner] = None,
        reenabler: Optional[ReenablementOrchestrator] = None,
    ):
        self.db = db or get_database()
        self.config = config or get_config()
        self.reenabler = reenabler or ReenablementOrchestrator(self.db, self.config, provisioner)
        self.resellers = ResellerRepository(self.db)
        self.transactions = WalletTransactionRepository(self.db)

    def top_up(self, reseller_id: int, amount: int, reference: Optional[str] = None) -> TopUpResult:
        """
        Credit `amount` to the wallet.

        Raises:
            NotFoundError: reseller does not exist
            ValueError: amount is not positive
        """
        if amount <= 0:
            raise ValueError("top-up amount must be positive")

        with self.db.transaction():
            # status read under the write lock
            reseller = self.resellers.get(reseller_id)
            if reseller is None:
                raise NotFoundError("reseller", reseller_id)
            balance_before, balance_after = self.resellers.adjust_balance(reseller_id, amount)
            tx = self.transactions.create(WalletTransactionRecord(
                reseller_id=reseller_id,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                reference=reference,
            ))
            reactivated = (
                reseller.is_suspended_wallet
                and balance_after > self.config.suspension_threshold
            )
            if reactivated:
                self.resellers.update_status(reseller_id, ResellerStatus.ACTIVE)

        logger.info(
            "wallet_topped_up",
            reseller_id=reseller_id,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reference=reference,
            reactivated=reactivated,
        )

        result = TopUpResult(
            reseller_id=reseller_id,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            transaction_id=tx.id,
            reactivated=reactivated,
        )
        if reactivated:
            reseller.status = ResellerStatus.ACTIVE
            reseller.wallet_balance = balance_after
            result.reenable = self.reenabler.reenable_wallet_suspended_configs(reseller)
        return result
