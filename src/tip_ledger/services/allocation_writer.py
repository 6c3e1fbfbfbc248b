"""Allocation writer - idempotent persistence of tip allocations.

Key invariants:
1. A tip is claimed exactly once via ``allocated_at IS NULL`` (conditional
   update), in the same transaction as its allocation rows
2. Allocation rows are unique per (tip_id, position)
3. Every staff line increments that staff balance by a relative update
4. Retries are safe - a claimed tip returns its existing allocations
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tip_ledger.errors import (
    AlreadyAllocatedError,
    PlanMismatchError,
    TipNotPaidError,
    ValidationError,
)
from tip_ledger.models import Tip, TipAllocation, utcnow
from tip_ledger.services.balance_ledger import BalanceLedger
from tip_ledger.services.distribution import AllocationPlan
from tip_ledger.services.state_machine import TipStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResult:
    """Result of committing an allocation plan.

    If ``is_new`` is False the tip had already been allocated and the
    existing rows were returned; no balances were touched.
    """

    tip_id: UUID
    allocations: list[TipAllocation]
    is_new: bool

    @property
    def total(self) -> int:
        return sum(a.amount for a in self.allocations)


class AllocationWriter:
    """Writes allocation rows and balance increments for a paid tip.

    Does not commit: the caller owns the transaction, so either every row
    and every increment lands or none do.
    """

    def __init__(self, session: AsyncSession, ledger: BalanceLedger | None = None):
        self.session = session
        self.ledger = ledger or BalanceLedger(session)

    async def commit(self, tip: Tip, plan: AllocationPlan) -> CommitResult:
        """Persist ``plan`` for ``tip``.

        Raises:
            TipNotPaidError: Tip status is not PAID
            PlanMismatchError: Plan does not sum to the tip's net amount
            AlreadyAllocatedError: Tip was claimed by a writer whose rows are
                not visible yet (retry)
        """
        if tip.status != TipStatus.PAID:
            raise TipNotPaidError(tip.tip_id, tip.status)
        if plan.tip_id != tip.tip_id:
            raise ValidationError(f"Plan for tip {plan.tip_id} applied to tip {tip.tip_id}")
        if plan.total != tip.net_amount or not plan.entries:
            raise PlanMismatchError(tip.tip_id, tip.net_amount, plan.total)

        allocated_at = utcnow()
        claim = await self.session.execute(
            update(Tip)
            .where(Tip.tip_id == tip.tip_id, Tip.allocated_at.is_(None))
            .values(allocated_at=allocated_at)
            .execution_options(synchronize_session=False)
        )

        if claim.rowcount == 0:
            existing = await self.get_allocations(tip.tip_id)
            if not existing:
                raise AlreadyAllocatedError(tip.tip_id)
            logger.info(
                "Tip %s already allocated (%d rows); returning existing allocations",
                tip.tip_id,
                len(existing),
            )
            return CommitResult(tip_id=tip.tip_id, allocations=existing, is_new=False)

        set_committed_value(tip, "allocated_at", allocated_at)

        allocations = [
            TipAllocation(
                tip_id=tip.tip_id,
                position=position,
                staff_id=entry.staff_id,
                amount=entry.amount,
                reason=entry.reason.value,
            )
            for position, entry in enumerate(plan.entries)
        ]
        self.session.add_all(allocations)
        await self.session.flush()

        for entry in plan.entries:
            if entry.staff_id is not None:
                await self.ledger.adjust(entry.staff_id, entry.amount)

        if plan.fallback is not None:
            logger.warning(
                "Tip %s allocated with fallback %s: %s",
                tip.tip_id,
                plan.fallback.value,
                "; ".join(plan.notes),
            )
        logger.info(
            "Allocated tip %s: %d rows totalling %d",
            tip.tip_id,
            len(allocations),
            plan.total,
        )
        return CommitResult(tip_id=tip.tip_id, allocations=allocations, is_new=True)

    async def get_allocations(self, tip_id: UUID) -> list[TipAllocation]:
        """Allocation rows of a tip in plan order."""
        result = await self.session.execute(
            select(TipAllocation)
            .where(TipAllocation.tip_id == tip_id)
            .order_by(TipAllocation.position)
        )
        return list(result.scalars().all())

    async def verify_tip_integrity(self, tip: Tip) -> tuple[bool, list[str]]:
        """Check that a tip's allocations sum to its net amount.

        Returns (is_valid, list_of_errors).
        """
        errors: list[str] = []
        allocations = await self.get_allocations(tip.tip_id)

        if tip.allocated_at is None:
            if allocations:
                errors.append("Allocations exist but tip is not marked allocated")
            return len(errors) == 0, errors

        allocated = sum(a.amount for a in allocations)
        if allocated != tip.net_amount:
            errors.append(
                f"Net mismatch: tip shows {tip.net_amount}, allocations sum to {allocated}"
            )

        return len(errors) == 0, errors
