"""Tip, allocation, payout and webhook log models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from tip_ledger.models.base import Base, TimestampMixin


class AllocationReason(str, Enum):
    """How the recipient of an allocation was decided."""

    TARGET_STAFF = "TARGET_STAFF"
    STAFF_CHOICE = "STAFF_CHOICE"
    VENUE_POOL = "VENUE_POOL"
    EVEN_SPLIT = "EVEN_SPLIT"
    TARGET_INACTIVE = "TARGET_INACTIVE"
    NO_ELIGIBLE_STAFF = "NO_ELIGIBLE_STAFF"


class Tip(Base, TimestampMixin):
    """A customer tip and its payment state.

    ``allocated_at`` is the allocation claim marker: it is set in the same
    transaction that writes the tip's allocation rows, and at most once.
    """

    __tablename__ = "tip"

    tip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    venue_id: Mapped[UUID] = mapped_column(
        ForeignKey("venue.venue_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_fee: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    guest_paid_fee: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    # Bound at creation by a personal QR code
    staff_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("staff.staff_id", ondelete="SET NULL"), nullable=True
    )
    # Picked by the customer from a team QR code
    chosen_staff_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("staff.staff_id", ondelete="SET NULL"), nullable=True
    )
    qr_code_id: Mapped[UUID | None] = mapped_column(nullable=True)
    gateway_order_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    gateway_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_payment_type: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    allocated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PAID', 'FAILED', 'CANCELED', 'EXPIRED')",
            name="tip_status_check",
        ),
        CheckConstraint("net_amount > 0", name="tip_net_amount_positive"),
        CheckConstraint("net_amount <= amount", name="tip_net_not_above_amount"),
    )


class TipAllocation(Base, TimestampMixin):
    """Immutable credit of part of a tip to a staff member or the venue pool.

    ``staff_id`` NULL means the amount stayed in the venue pool. Only
    ``payout_id`` may change after insert, and only from NULL to a payout.
    """

    __tablename__ = "tip_allocation"

    allocation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tip_id: Mapped[UUID] = mapped_column(
        ForeignKey("tip.tip_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    staff_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("staff.staff_id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)
    payout_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payout.payout_id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint("tip_id", "position", name="tip_allocation_position_unique"),
        CheckConstraint("amount > 0", name="tip_allocation_amount_positive"),
        CheckConstraint(
            "payout_id IS NULL OR staff_id IS NOT NULL",
            name="tip_allocation_pool_not_paid_out",
        ),
    )

    @property
    def is_pool(self) -> bool:
        return self.staff_id is None


class Payout(Base, TimestampMixin):
    """Batch commit claiming a staff member's unpaid allocations."""

    __tablename__ = "payout"

    payout_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    staff_id: Mapped[UUID] = mapped_column(
        ForeignKey("staff.staff_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    venue_id: Mapped[UUID] = mapped_column(
        ForeignKey("venue.venue_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    allocation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="payout_total_positive"),
        CheckConstraint("allocation_count > 0", name="payout_allocation_count_positive"),
    )


class WebhookLog(Base, TimestampMixin):
    """Raw inbound payment notification and its processing outcome."""

    __tablename__ = "webhook_log"

    webhook_log_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
