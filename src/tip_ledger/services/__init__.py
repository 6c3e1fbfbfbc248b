"""Tip ledger services."""

from tip_ledger.services.allocation_writer import AllocationWriter, CommitResult
from tip_ledger.services.balance_ledger import BalanceLedger
from tip_ledger.services.distribution import (
    AllocationPlan,
    DistributionPolicyResolver,
    PlanEntry,
    split_evenly,
)
from tip_ledger.services.payment_events import (
    PaymentConfirmation,
    PaymentEventOutcome,
    PaymentEventProcessor,
    PaymentEventResult,
    map_gateway_status,
)
from tip_ledger.services.payout_service import PayoutService, PayoutStatement
from tip_ledger.services.reconciliation import (
    ReconciliationResult,
    ReconciliationService,
    ReconciliationSummary,
)
from tip_ledger.services.state_machine import TipStateMachine, TipStatus
from tip_ledger.services.tip_service import TipService, compute_tip_amounts

__all__ = [
    "AllocationPlan",
    "AllocationWriter",
    "BalanceLedger",
    "CommitResult",
    "DistributionPolicyResolver",
    "PaymentConfirmation",
    "PaymentEventOutcome",
    "PaymentEventProcessor",
    "PaymentEventResult",
    "PayoutService",
    "PayoutStatement",
    "PlanEntry",
    "ReconciliationResult",
    "ReconciliationService",
    "ReconciliationSummary",
    "TipService",
    "TipStateMachine",
    "TipStatus",
    "compute_tip_amounts",
    "map_gateway_status",
    "split_evenly",
]
