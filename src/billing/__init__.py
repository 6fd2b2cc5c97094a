"""
WALLET METER - Billing Module

Usage-metered wallet billing for resellers:
- Usage aggregation and deltas against the last snapshot
- Whole-GiB wallet charges, written atomically with ledger and snapshot
- Suspension and re-enabling around the balance threshold
- Final settlement before traffic resets and deletions
"""

from .usage import UsageAggregator, DeltaCalculator, UsageDelta
from .results import (
    ResultStatus,
    SkipReason,
    ChargeResult,
    SettlementResult,
    ReenableResult,
    SuspensionOutcome,
)
from .guard import IdempotencyGuard
from .charging import ChargeEngine, calculate_cost
from .suspension import SuspensionController
from .settlement import SettlementService
from .reenable import ReenablementOrchestrator
from .wallet import WalletService, TopUpResult
from .scheduler import BillingScheduler, ChargeCycleSummary, ReenableSweepSummary

__all__ = [
    "UsageAggregator",
    "DeltaCalculator",
    "UsageDelta",
    "ResultStatus",
    "SkipReason",
    "ChargeResult",
    "SettlementResult",
    "ReenableResult",
    "SuspensionOutcome",
    "IdempotencyGuard",
    "ChargeEngine",
    "calculate_cost",
    "SuspensionController",
    "SettlementService",
    "ReenablementOrchestrator",
    "WalletService",
    "TopUpResult",
    "BillingScheduler",
    "ChargeCycleSummary",
    "ReenableSweepSummary",
]
