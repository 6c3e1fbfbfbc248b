"""Invariant tests over random operation sequences.

After any mix of allocations, duplicate commits, settlements and
reconciliations:

1. Every staff balance equals the sum of that staff's unpaid allocations
2. Every allocated tip's rows sum to its net amount
3. Every payout total equals the sum of the allocations it claimed
4. No allocation belongs to more than one payout
"""

from __future__ import annotations

import random

import pytest
from sqlalchemy import func, select

from tip_ledger.config import LedgerConfig, UnassignedTipPolicy
from tip_ledger.errors import NothingToPayoutError
from tip_ledger.ledger import TipLedger
from tip_ledger.models import DistributionMode, Payout, Staff, Tip, TipAllocation
from tip_ledger.services.allocation_writer import AllocationWriter
from tip_ledger.services.balance_ledger import BalanceLedger


async def assert_invariants(session_factory) -> None:
    async with session_factory() as session:
        ledger = BalanceLedger(session)
        staff = (await session.execute(select(Staff))).scalars().all()
        for member in staff:
            assert member.balance == await ledger.outstanding(member.staff_id)
            assert member.balance >= 0

        writer = AllocationWriter(session)
        tips = (await session.execute(select(Tip))).scalars().all()
        for tip in tips:
            valid, errors = await writer.verify_tip_integrity(tip)
            assert valid, errors

        payouts = (await session.execute(select(Payout))).scalars().all()
        for payout in payouts:
            claimed = await session.scalar(
                select(func.coalesce(func.sum(TipAllocation.amount), 0)).where(
                    TipAllocation.payout_id == payout.payout_id
                )
            )
            assert claimed == payout.total_amount


@pytest.mark.parametrize("seed", range(8))
async def test_random_sequences_preserve_invariants(seed, session_factory, data):
    rng = random.Random(seed)
    policy = rng.choice(list(UnassignedTipPolicy)[:2])
    ledger = TipLedger(
        session_factory,
        LedgerConfig(unassigned_tip_policy=policy, retry_backoff_seconds=0),
    )
    venue = await data.venue(
        mode=rng.choice(list(DistributionMode)),
        allow_staff_choice=rng.random() < 0.5,
    )
    staff = [await data.staff(venue, active=rng.random() < 0.8) for _ in range(4)]
    tips = []

    for _ in range(30):
        action = rng.choice(["tip", "tip", "allocate_again", "settle", "reconcile"])
        if action == "tip":
            target = rng.choice([None, None, *staff])
            tip = await data.tip(
                venue,
                rng.randint(1, 50_000),
                staff_id=target.staff_id if target is not None else None,
            )
            await ledger.allocate(tip.tip_id)
            tips.append(tip)
        elif action == "allocate_again" and tips:
            result = await ledger.allocate(rng.choice(tips).tip_id)
            assert result.is_new is False
        elif action == "settle":
            member = rng.choice(staff)
            outstanding = await ledger.inspect(member.staff_id)
            try:
                payout = await ledger.settle(member.staff_id)
            except NothingToPayoutError:
                assert outstanding.corrected == 0
            else:
                assert payout.total_amount == outstanding.corrected
        elif action == "reconcile":
            result = await ledger.reconcile(rng.choice(staff).staff_id)
            assert result.delta == 0

    await assert_invariants(session_factory)


async def test_reconcile_restores_invariant_after_corruption(ledger, session_factory, data):
    venue = await data.venue(mode=DistributionMode.PERSONAL)
    alice = await data.staff(venue)
    for amount in (1200, 800):
        tip = await data.tip(venue, amount, staff_id=alice.staff_id)
        await ledger.allocate(tip.tip_id)
    await data.set_balance(alice.staff_id, 5)

    summary = await ledger.reconcile_all()

    assert summary.staff_fixed == 1
    await assert_invariants(session_factory)
