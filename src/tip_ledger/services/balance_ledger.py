"""Balance ledger - cached per-staff balances.

``staff.balance`` is a cache of the sum of unpaid allocations. Writers
only ever apply relative adjustments (``balance = balance + :delta``) so
concurrent commits never lose updates. The source of truth is always
``tip_allocation``; ``outstanding`` recomputes from it.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tip_ledger.errors import StaffNotFoundError
from tip_ledger.models import Staff, TipAllocation


class BalanceLedger:
    """Reads and writes the cached staff balance."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, staff_id: UUID) -> int:
        """Cached balance for a staff member."""
        balance = await self.session.scalar(
            select(Staff.balance).where(Staff.staff_id == staff_id)
        )
        if balance is None:
            raise StaffNotFoundError(staff_id)
        return int(balance)

    async def adjust(self, staff_id: UUID, delta: int) -> None:
        """Apply a relative change to the cached balance."""
        result = await self.session.execute(
            update(Staff)
            .where(Staff.staff_id == staff_id)
            .values(balance=Staff.balance + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StaffNotFoundError(staff_id)

    async def outstanding(self, staff_id: UUID) -> int:
        """Sum of unpaid allocations, bypassing the cache."""
        total = await self.session.scalar(
            select(func.coalesce(func.sum(TipAllocation.amount), 0)).where(
                TipAllocation.staff_id == staff_id,
                TipAllocation.payout_id.is_(None),
            )
        )
        return int(total or 0)

    async def overwrite(self, staff_id: UUID, new_balance: int, expected: int) -> bool:
        """Set the cached balance only if it still equals ``expected``.

        Returns False if another writer changed the balance in between.
        """
        result = await self.session.execute(
            update(Staff)
            .where(Staff.staff_id == staff_id, Staff.balance == expected)
            .values(balance=new_balance)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
