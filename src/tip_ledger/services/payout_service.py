"""Payout settlement - claims unpaid allocations into a payout.

An allocation can be claimed by at most one payout. The claim is a
conditional update on ``payout_id IS NULL`` executed in the same
transaction as the payout insert and the balance decrement; if fewer rows
are claimed than were selected, another settlement won the race and the
whole transaction is aborted with a ConflictError.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tip_ledger.errors import (
    ConflictError,
    NothingToPayoutError,
    PayoutNotFoundError,
    StaffNotFoundError,
)
from tip_ledger.models import Payout, Staff, TipAllocation
from tip_ledger.services.balance_ledger import BalanceLedger

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "payout_id",
    "venue_id",
    "staff_id",
    "staff_name",
    "payout_created_at",
    "payout_total",
    "allocation_id",
    "tip_id",
    "allocation_amount",
    "allocation_reason",
    "allocated_at",
]


@dataclass(frozen=True)
class PayoutStatement:
    """A payout and the allocations it claimed."""

    payout: Payout
    allocations: list[TipAllocation]

    @property
    def allocations_total(self) -> int:
        return sum(a.amount for a in self.allocations)


class PayoutService:
    """Settles a staff member's outstanding allocations."""

    def __init__(self, session: AsyncSession, ledger: BalanceLedger | None = None):
        self.session = session
        self.ledger = ledger or BalanceLedger(session)

    async def settle(self, staff_id: UUID) -> Payout:
        """Create a payout covering every unpaid allocation of a staff member.

        Raises:
            StaffNotFoundError: Unknown staff
            NothingToPayoutError: No unpaid allocations
            ConflictError: A concurrent settlement claimed some allocations
        """
        staff = await self.session.get(Staff, staff_id)
        if staff is None:
            raise StaffNotFoundError(staff_id)

        result = await self.session.execute(
            select(TipAllocation)
            .where(
                TipAllocation.staff_id == staff_id,
                TipAllocation.payout_id.is_(None),
            )
            .order_by(TipAllocation.created_at, TipAllocation.allocation_id)
            .with_for_update()
        )
        unpaid = list(result.scalars().all())
        if not unpaid:
            raise NothingToPayoutError(staff_id)

        total = sum(a.amount for a in unpaid)
        payout = Payout(
            staff_id=staff_id,
            venue_id=staff.venue_id,
            total_amount=total,
            allocation_count=len(unpaid),
            period_start=min(a.created_at for a in unpaid),
            period_end=max(a.created_at for a in unpaid),
        )
        self.session.add(payout)
        await self.session.flush()

        claimed = await self._claim(payout.payout_id, [a.allocation_id for a in unpaid])
        if claimed != len(unpaid):
            logger.warning(
                "Payout %s for staff %s claimed %d of %d allocations; aborting",
                payout.payout_id,
                staff_id,
                claimed,
                len(unpaid),
            )
            raise ConflictError(
                f"Concurrent settlement for staff {staff_id}: "
                f"claimed {claimed} of {len(unpaid)} allocations"
            )

        for allocation in unpaid:
            set_committed_value(allocation, "payout_id", payout.payout_id)

        await self.ledger.adjust(staff_id, -total)

        logger.info(
            "Settled payout %s for staff %s: %d allocations totalling %d",
            payout.payout_id,
            staff_id,
            len(unpaid),
            total,
        )
        return payout

    async def _claim(self, payout_id: UUID, allocation_ids: list[UUID]) -> int:
        """Stamp still-unpaid allocations with ``payout_id``. Returns rows claimed."""
        result = await self.session.execute(
            update(TipAllocation)
            .where(
                TipAllocation.allocation_id.in_(allocation_ids),
                TipAllocation.payout_id.is_(None),
            )
            .values(payout_id=payout_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_statement(self, payout_id: UUID) -> PayoutStatement:
        """Load a payout with its claimed allocations."""
        payout = await self.session.get(Payout, payout_id)
        if payout is None:
            raise PayoutNotFoundError(payout_id)

        result = await self.session.execute(
            select(TipAllocation)
            .where(TipAllocation.payout_id == payout_id)
            .order_by(TipAllocation.created_at, TipAllocation.allocation_id)
        )
        return PayoutStatement(payout=payout, allocations=list(result.scalars().all()))

    async def list_payouts(
        self,
        *,
        staff_id: UUID | None = None,
        venue_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[Payout]:
        """Most recent payouts first."""
        query = select(Payout)
        if staff_id is not None:
            query = query.where(Payout.staff_id == staff_id)
        if venue_id is not None:
            query = query.where(Payout.venue_id == venue_id)
        query = query.order_by(Payout.created_at.desc())
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def export_csv(self, venue_id: UUID) -> str:
        """Audit export: one row per claimed allocation of the venue's payouts."""
        result = await self.session.execute(
            select(Payout, TipAllocation, Staff.display_name)
            .join(TipAllocation, TipAllocation.payout_id == Payout.payout_id)
            .join(Staff, Staff.staff_id == Payout.staff_id)
            .where(Payout.venue_id == venue_id)
            .order_by(Payout.created_at, Payout.payout_id, TipAllocation.created_at)
        )

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPORT_COLUMNS)
        for payout, allocation, staff_name in result.all():
            writer.writerow([
                payout.payout_id,
                payout.venue_id,
                payout.staff_id,
                staff_name,
                payout.created_at.isoformat(),
                payout.total_amount,
                allocation.allocation_id,
                allocation.tip_id,
                allocation.amount,
                allocation.reason,
                allocation.created_at.isoformat(),
            ])
        return buffer.getvalue()
