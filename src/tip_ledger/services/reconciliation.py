"""Balance reconciliation job.

Recomputes each staff balance from unpaid allocation rows and corrects
the cached value when it has drifted. Running it twice with no writes in
between reports a zero delta the second time.

The correction is a conditional write (``balance = :previous``): if a
live allocation or payout changed the balance after it was read, the
write is rejected with a ConflictError and the caller retries with fresh
figures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tip_ledger.errors import ConflictError
from tip_ledger.models import Staff
from tip_ledger.services.balance_ledger import BalanceLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of reconciling one staff balance."""

    staff_id: UUID
    previous: int
    corrected: int
    applied: bool = True

    @property
    def delta(self) -> int:
        return self.corrected - self.previous

    @property
    def drifted(self) -> bool:
        return self.delta != 0


@dataclass
class ReconciliationSummary:
    """Result of reconciling many staff balances."""

    results: list[ReconciliationResult] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def staff_checked(self) -> int:
        return len(self.results)

    @property
    def staff_fixed(self) -> int:
        return sum(1 for r in self.results if r.drifted and r.applied)

    @property
    def total_delta(self) -> int:
        return sum(r.delta for r in self.results)

    @property
    def success(self) -> bool:
        return not self.errors


class ReconciliationService:
    """Derives correct balances from the allocation ledger."""

    def __init__(self, session: AsyncSession, ledger: BalanceLedger | None = None):
        self.session = session
        self.ledger = ledger or BalanceLedger(session)

    async def inspect(self, staff_id: UUID) -> ReconciliationResult:
        """Compare cached and derived balance without writing."""
        previous = await self.ledger.get_balance(staff_id)
        corrected = await self.ledger.outstanding(staff_id)
        return ReconciliationResult(
            staff_id=staff_id,
            previous=previous,
            corrected=corrected,
            applied=False,
        )

    async def reconcile(self, staff_id: UUID) -> ReconciliationResult:
        """Overwrite the cached balance with the derived one if they differ.

        Raises:
            StaffNotFoundError: Unknown staff
            ConflictError: Balance changed between read and write
        """
        inspected = await self.inspect(staff_id)
        result = ReconciliationResult(
            staff_id=staff_id,
            previous=inspected.previous,
            corrected=inspected.corrected,
        )
        if not result.drifted:
            return result

        written = await self.ledger.overwrite(
            staff_id, result.corrected, expected=result.previous
        )
        if not written:
            raise ConflictError(
                f"Balance of staff {staff_id} changed during reconciliation"
            )

        logger.warning(
            "Corrected balance drift for staff %s: %d -> %d (delta %d)",
            staff_id,
            result.previous,
            result.corrected,
            result.delta,
        )
        return result

    async def staff_ids(self, venue_id: UUID | None = None) -> list[UUID]:
        """Staff to reconcile, optionally limited to one venue."""
        query = select(Staff.staff_id).order_by(Staff.staff_id)
        if venue_id is not None:
            query = query.where(Staff.venue_id == venue_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())
