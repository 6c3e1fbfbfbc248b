"""Tip ledger API endpoints.

Thin HTTP layer: every endpoint calls one TipLedger operation. Ledger
errors are turned into JSON responses by the handlers in ``api.app``.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from tip_ledger.api.dependencies import Ledger
from tip_ledger.api.schemas import (
    AllocationResponse,
    BalanceResponse,
    DistributionResponse,
    DistributionSettings,
    ErrorResponse,
    PaymentConfirmationRequest,
    PaymentConfirmationResponse,
    PayoutResponse,
    PayoutStatementResponse,
    PoolParticipant,
    ReconciliationResponse,
    TipAllocationsResponse,
)
from tip_ledger.services.payment_events import PaymentConfirmation

router = APIRouter(tags=["ledger"])


# ============================================================================
# Payment confirmations
# ============================================================================


@router.post(
    "/payment-confirmations",
    response_model=PaymentConfirmationResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def confirm_payment(
    ledger: Ledger,
    payload: PaymentConfirmationRequest,
) -> PaymentConfirmationResponse:
    """Apply a verified gateway notification to its tip."""
    event = PaymentConfirmation(
        tip_id=payload.tip_id,
        order_id=payload.order_id,
        transaction_status=payload.transaction_status,
        fraud_status=payload.fraud_status,
        net_amount=payload.net_amount,
        transaction_id=payload.transaction_id,
        payment_type=payload.payment_type,
        transaction_time=payload.transaction_time,
        provider=payload.provider,
        payload=payload.model_dump(mode="json"),
    )
    result = await ledger.handle_payment_confirmation(event)
    return PaymentConfirmationResponse(
        outcome=result.outcome.value,
        tip_id=result.tip_id,
        previous_status=result.previous_status,
        new_status=result.new_status,
        allocations=[AllocationResponse.model_validate(a) for a in result.allocations],
        allocation_error=result.allocation_error,
    )


# ============================================================================
# Tips
# ============================================================================


@router.get(
    "/tips/{tip_id}/allocations",
    response_model=TipAllocationsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_tip_allocations(
    ledger: Ledger,
    tip_id: Annotated[UUID, Path()],
) -> TipAllocationsResponse:
    """List how a tip was allocated."""
    allocations = await ledger.get_tip_allocations(tip_id)
    return TipAllocationsResponse(
        tip_id=tip_id,
        total=sum(a.amount for a in allocations),
        allocations=[AllocationResponse.model_validate(a) for a in allocations],
    )


# ============================================================================
# Staff balances, payouts and reconciliation
# ============================================================================


@router.get(
    "/staff/{staff_id}/balance",
    response_model=BalanceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_balance(
    ledger: Ledger,
    staff_id: Annotated[UUID, Path()],
) -> BalanceResponse:
    """Cached balance of a staff member."""
    balance = await ledger.get_balance(staff_id)
    return BalanceResponse(staff_id=staff_id, balance=balance)


@router.post(
    "/staff/{staff_id}/payouts",
    response_model=PayoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def settle_staff(
    ledger: Ledger,
    staff_id: Annotated[UUID, Path()],
) -> PayoutResponse:
    """Pay out every unpaid allocation of a staff member."""
    payout = await ledger.settle(staff_id)
    return PayoutResponse.model_validate(payout)


@router.get(
    "/staff/{staff_id}/payouts",
    response_model=list[PayoutResponse],
)
async def list_staff_payouts(
    ledger: Ledger,
    staff_id: Annotated[UUID, Path()],
) -> list[PayoutResponse]:
    """Most recent payouts of a staff member."""
    payouts = await ledger.list_payouts(staff_id)
    return [PayoutResponse.model_validate(p) for p in payouts]


@router.post(
    "/staff/{staff_id}/reconcile",
    response_model=ReconciliationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reconcile_staff(
    ledger: Ledger,
    staff_id: Annotated[UUID, Path()],
) -> ReconciliationResponse:
    """Recompute a staff balance from unpaid allocations."""
    result = await ledger.reconcile(staff_id)
    return ReconciliationResponse(
        staff_id=result.staff_id,
        previous=result.previous,
        corrected=result.corrected,
        delta=result.delta,
        applied=result.applied,
    )


@router.get(
    "/payouts/{payout_id}",
    response_model=PayoutStatementResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payout(
    ledger: Ledger,
    payout_id: Annotated[UUID, Path()],
) -> PayoutStatementResponse:
    """Payout with the allocations it claimed."""
    statement = await ledger.payout_statement(payout_id)
    return PayoutStatementResponse(
        payout=PayoutResponse.model_validate(statement.payout),
        allocations=[AllocationResponse.model_validate(a) for a in statement.allocations],
    )


# ============================================================================
# Venue distribution settings
# ============================================================================


@router.get(
    "/venues/{venue_id}/distribution",
    response_model=DistributionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_distribution(
    ledger: Ledger,
    venue_id: Annotated[UUID, Path()],
) -> DistributionResponse:
    """Distribution settings and pool participants of a venue."""
    venue, participants = await ledger.get_venue(venue_id)
    return DistributionResponse(
        venue_id=venue.venue_id,
        distribution_mode=venue.distribution_mode,
        allow_staff_choice=venue.allow_staff_choice,
        unassigned_tip_policy=venue.unassigned_tip_policy,
        pool_participants=[PoolParticipant.model_validate(s) for s in participants],
    )


@router.patch(
    "/venues/{venue_id}/distribution",
    response_model=DistributionResponse,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def update_distribution(
    ledger: Ledger,
    venue_id: Annotated[UUID, Path()],
    payload: DistributionSettings,
) -> DistributionResponse:
    """Change how future tips of a venue are distributed."""
    await ledger.update_distribution(
        venue_id,
        distribution_mode=payload.distribution_mode,
        allow_staff_choice=payload.allow_staff_choice,
        unassigned_tip_policy=payload.unassigned_tip_policy,
    )
    return await get_distribution(ledger, venue_id)
