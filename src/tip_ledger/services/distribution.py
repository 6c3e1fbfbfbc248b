"""Distribution policy resolver.

Decides, without touching the database, who a tip's net amount is
credited to. Rules in priority order:

1. A target staff member bound to the tip (personal QR) or explicitly
   chosen by the customer receives the whole amount, whatever the venue
   mode. An inactive target falls back to the venue pool and the plan is
   marked with that fallback.
2. In PERSONAL mode with ``allow_staff_choice``, the choice made on a team
   QR code is handled by rule 1 as well.
3. In PERSONAL mode without a choice, the unassigned tip policy decides
   (venue pool, even split, or reject).
4. In POOLED mode the whole amount stays in the venue pool.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from tip_ledger.config import UnassignedTipPolicy
from tip_ledger.errors import InvalidTargetError, StaffChoiceRequiredError, ValidationError
from tip_ledger.models import AllocationReason, DistributionMode, Staff, Tip, Venue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanEntry:
    """One recipient line of an allocation plan. ``staff_id`` None is the pool."""

    staff_id: UUID | None
    amount: int
    reason: AllocationReason


@dataclass(frozen=True)
class AllocationPlan:
    """Ordered allocation lines for a single tip.

    ``fallback`` is set when the preferred recipient could not be credited
    and the amount was redirected (e.g. inactive target staff).
    """

    tip_id: UUID
    entries: tuple[PlanEntry, ...]
    fallback: AllocationReason | None = None
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return sum(entry.amount for entry in self.entries)

    @property
    def staff_ids(self) -> list[UUID]:
        return [e.staff_id for e in self.entries if e.staff_id is not None]

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def split_evenly(amount: int, recipients: Sequence[UUID]) -> list[tuple[UUID, int]]:
    """Split ``amount`` across recipients in ascending id order.

    Integer division; the remainder goes to the first recipient so the
    shares always add up to ``amount``. Zero shares are dropped.
    """
    if not recipients:
        raise ValueError("Cannot split across zero recipients")
    if amount < 0:
        raise ValueError("Amount cannot be negative")

    ordered = sorted(set(recipients))
    share, remainder = divmod(amount, len(ordered))

    shares = []
    for index, staff_id in enumerate(ordered):
        value = share + remainder if index == 0 else share
        if value > 0:
            shares.append((staff_id, value))
    return shares


class DistributionPolicyResolver:
    """Resolves a tip into an AllocationPlan according to venue policy."""

    def __init__(self, default_policy: UnassignedTipPolicy = UnassignedTipPolicy.VENUE_POOL):
        self.default_policy = default_policy

    def policy_for(self, venue: Venue) -> UnassignedTipPolicy:
        """Venue override if set, else the configured default."""
        if venue.unassigned_tip_policy:
            return UnassignedTipPolicy(venue.unassigned_tip_policy)
        return self.default_policy

    def resolve(
        self,
        venue: Venue,
        tip: Tip,
        roster: Sequence[Staff],
        explicit_staff_target: UUID | None = None,
    ) -> AllocationPlan:
        """Build the allocation plan for a tip.

        Args:
            venue: The tip's venue
            tip: The tip being allocated
            roster: Staff of the venue (all statuses)
            explicit_staff_target: Customer's staff choice; defaults to the
                choice recorded on the tip

        Raises:
            InvalidTargetError: Target or choice is not staff of this venue
            StaffChoiceRequiredError: Venue policy rejects tips without a choice
            ValidationError: Tip net amount is not positive, or tip and
                venue do not match
        """
        if tip.venue_id != venue.venue_id:
            raise ValidationError(f"Tip {tip.tip_id} does not belong to venue {venue.venue_id}")
        if tip.net_amount <= 0:
            raise ValidationError(f"Tip {tip.tip_id} has non-positive net amount {tip.net_amount}")

        staff_by_id = {s.staff_id: s for s in roster if s.venue_id == venue.venue_id}
        net = tip.net_amount

        # Rule 1: target bound to the tip or picked by the customer
        if tip.staff_id is not None:
            return self._to_single_staff(
                tip, venue, staff_by_id, tip.staff_id, AllocationReason.TARGET_STAFF
            )

        choice = explicit_staff_target or tip.chosen_staff_id
        if choice is not None:
            return self._to_single_staff(
                tip, venue, staff_by_id, choice, AllocationReason.STAFF_CHOICE
            )

        mode = DistributionMode(venue.distribution_mode)

        # Rule 4: pooled venue
        if mode == DistributionMode.POOLED:
            return AllocationPlan(
                tip_id=tip.tip_id,
                entries=(PlanEntry(None, net, AllocationReason.VENUE_POOL),),
            )

        # Rule 3: PERSONAL mode, nobody chosen
        policy = self.policy_for(venue)
        if policy == UnassignedTipPolicy.REQUIRE_CHOICE:
            raise StaffChoiceRequiredError(venue.venue_id)

        if policy == UnassignedTipPolicy.EVEN_SPLIT:
            eligible = [
                s.staff_id
                for s in staff_by_id.values()
                if s.is_active and s.participates_in_pool
            ]
            if eligible:
                return AllocationPlan(
                    tip_id=tip.tip_id,
                    entries=tuple(
                        PlanEntry(staff_id, amount, AllocationReason.EVEN_SPLIT)
                        for staff_id, amount in split_evenly(net, eligible)
                    ),
                )
            logger.warning(
                "No eligible staff for even split of tip %s at venue %s; keeping in pool",
                tip.tip_id,
                venue.venue_id,
            )
            return AllocationPlan(
                tip_id=tip.tip_id,
                entries=(PlanEntry(None, net, AllocationReason.NO_ELIGIBLE_STAFF),),
                fallback=AllocationReason.NO_ELIGIBLE_STAFF,
                notes=("no active pool participants",),
            )

        return AllocationPlan(
            tip_id=tip.tip_id,
            entries=(PlanEntry(None, net, AllocationReason.VENUE_POOL),),
        )

    def _to_single_staff(
        self,
        tip: Tip,
        venue: Venue,
        staff_by_id: dict[UUID, Staff],
        staff_id: UUID,
        reason: AllocationReason,
    ) -> AllocationPlan:
        staff = staff_by_id.get(staff_id)
        if staff is None:
            raise InvalidTargetError(staff_id, venue.venue_id)

        if not staff.is_active:
            logger.warning(
                "Target staff %s for tip %s is inactive; allocating %s to venue pool",
                staff_id,
                tip.tip_id,
                tip.net_amount,
            )
            return AllocationPlan(
                tip_id=tip.tip_id,
                entries=(PlanEntry(None, tip.net_amount, AllocationReason.TARGET_INACTIVE),),
                fallback=AllocationReason.TARGET_INACTIVE,
                notes=(f"target staff {staff_id} inactive",),
            )

        return AllocationPlan(
            tip_id=tip.tip_id,
            entries=(PlanEntry(staff_id, tip.net_amount, reason),),
        )
