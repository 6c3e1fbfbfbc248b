"""Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tip_ledger.config import UnassignedTipPolicy
from tip_ledger.models import DistributionMode


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(BaseModel):
    """Error body returned for every ledger error."""

    code: str
    detail: str


# ============================================================================
# Allocation schemas
# ============================================================================


class AllocationResponse(BaseModel):
    """A single tip allocation."""

    model_config = ConfigDict(from_attributes=True)

    allocation_id: UUID
    tip_id: UUID
    position: int
    staff_id: UUID | None
    amount: int
    reason: str
    payout_id: UUID | None
    created_at: datetime


class TipAllocationsResponse(BaseModel):
    """Allocations of a tip."""

    tip_id: UUID
    total: int
    allocations: list[AllocationResponse]


# ============================================================================
# Payment confirmation schemas
# ============================================================================


class PaymentConfirmationRequest(BaseModel):
    """Verified gateway notification forwarded by the webhook layer."""

    tip_id: UUID | None = None
    order_id: str | None = None
    transaction_status: str
    fraud_status: str | None = None
    net_amount: int | None = Field(default=None, gt=0)
    transaction_id: str | None = None
    payment_type: str | None = None
    transaction_time: datetime | None = None
    provider: str = "gateway"

    @model_validator(mode="after")
    def require_reference(self) -> "PaymentConfirmationRequest":
        if self.tip_id is None and not self.order_id:
            raise ValueError("tip_id or order_id is required")
        return self


class PaymentConfirmationResponse(BaseModel):
    """Outcome of a payment notification."""

    outcome: str
    tip_id: UUID | None
    previous_status: str | None
    new_status: str | None
    allocations: list[AllocationResponse]
    allocation_error: str | None = None


# ============================================================================
# Balance, payout and reconciliation schemas
# ============================================================================


class BalanceResponse(BaseModel):
    """Cached balance of a staff member."""

    staff_id: UUID
    balance: int


class PayoutResponse(BaseModel):
    """A settled payout."""

    model_config = ConfigDict(from_attributes=True)

    payout_id: UUID
    staff_id: UUID
    venue_id: UUID
    total_amount: int
    allocation_count: int
    period_start: datetime
    period_end: datetime
    created_at: datetime


class PayoutStatementResponse(BaseModel):
    """Payout with the allocations it claimed."""

    payout: PayoutResponse
    allocations: list[AllocationResponse]


class ReconciliationResponse(BaseModel):
    """Result of reconciling one staff balance."""

    staff_id: UUID
    previous: int
    corrected: int
    delta: int
    applied: bool


# ============================================================================
# Venue distribution schemas
# ============================================================================


class PoolParticipant(BaseModel):
    """Active staff member taking part in even splits."""

    model_config = ConfigDict(from_attributes=True)

    staff_id: UUID
    display_name: str


class DistributionSettings(BaseModel):
    """Distribution settings of a venue."""

    distribution_mode: DistributionMode
    allow_staff_choice: bool
    unassigned_tip_policy: UnassignedTipPolicy | None = None


class DistributionResponse(DistributionSettings):
    """Distribution settings with current pool participants."""

    venue_id: UUID
    pool_participants: list[PoolParticipant] = Field(default_factory=list)
