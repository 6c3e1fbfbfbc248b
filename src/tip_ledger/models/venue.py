"""Venue and staff models."""

from __future__ import annotations

from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from tip_ledger.models.base import Base, TimestampMixin


class DistributionMode(str, Enum):
    """Venue-level default destination for tips."""

    POOLED = "POOLED"
    PERSONAL = "PERSONAL"


class StaffStatus(str, Enum):
    """Staff membership status."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Venue(Base, TimestampMixin):
    """A venue receiving tips.

    Changing ``distribution_mode`` only affects tips allocated afterwards;
    existing allocations are never rewritten.
    """

    __tablename__ = "venue"

    venue_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    distribution_mode: Mapped[str] = mapped_column(
        String, nullable=False, default=DistributionMode.POOLED.value
    )
    allow_staff_choice: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # NULL defers to LedgerConfig.unassigned_tip_policy
    unassigned_tip_policy: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "distribution_mode IN ('POOLED', 'PERSONAL')",
            name="venue_distribution_mode_check",
        ),
        CheckConstraint(
            "unassigned_tip_policy IS NULL OR "
            "unassigned_tip_policy IN ('VENUE_POOL', 'EVEN_SPLIT', 'REQUIRE_CHOICE')",
            name="venue_unassigned_tip_policy_check",
        ),
    )


class Staff(Base, TimestampMixin):
    """A staff member with a cached balance of unpaid allocations.

    ``balance`` is a cache: it must equal the sum of the staff member's
    allocations that carry no payout. It is only ever changed through
    relative adjustments, or overwritten by reconciliation.
    """

    __tablename__ = "staff"

    staff_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    venue_id: Mapped[UUID] = mapped_column(
        ForeignKey("venue.venue_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=StaffStatus.ACTIVE.value)
    participates_in_pool: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("status IN ('ACTIVE', 'INACTIVE')", name="staff_status_check"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == StaffStatus.ACTIVE
