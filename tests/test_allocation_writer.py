"""Tests for idempotent allocation commits."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from tip_ledger.errors import PlanMismatchError, TipNotPaidError, ValidationError
from tip_ledger.models import AllocationReason, Staff, Tip, TipAllocation
from tip_ledger.services.allocation_writer import AllocationWriter
from tip_ledger.services.distribution import AllocationPlan, PlanEntry


def single(tip: Tip, staff_id, amount: int | None = None, reason=AllocationReason.TARGET_STAFF):
    return AllocationPlan(
        tip_id=tip.tip_id,
        entries=(PlanEntry(staff_id, tip.net_amount if amount is None else amount, reason),),
    )


async def reload_tip(session, tip_id) -> Tip:
    tip = await session.get(Tip, tip_id)
    assert tip is not None
    return tip


class TestCommit:
    """Test writing allocations and balance increments."""

    async def test_commit_to_staff(self, session, data):
        venue = await data.venue()
        alice = await data.staff(venue)
        tip = await data.tip(venue, 5000, staff_id=alice.staff_id)

        tip = await reload_tip(session, tip.tip_id)
        result = await AllocationWriter(session).commit(tip, single(tip, alice.staff_id))

        assert result.is_new is True
        assert result.total == 5000
        assert [(a.staff_id, a.amount, a.position) for a in result.allocations] == [
            (alice.staff_id, 5000, 0)
        ]
        assert result.allocations[0].reason == "TARGET_STAFF"
        assert tip.allocated_at is not None
        balance = await session.scalar(
            select(Staff.balance).where(Staff.staff_id == alice.staff_id)
        )
        assert balance == 5000

    async def test_pool_allocation_leaves_balances(self, session, data):
        venue = await data.venue()
        alice = await data.staff(venue)
        tip = await data.tip(venue, 10000)

        tip = await reload_tip(session, tip.tip_id)
        plan = AllocationPlan(
            tip_id=tip.tip_id,
            entries=(PlanEntry(None, 10000, AllocationReason.VENUE_POOL),),
        )
        result = await AllocationWriter(session).commit(tip, plan)

        assert result.allocations[0].is_pool
        balance = await session.scalar(
            select(Staff.balance).where(Staff.staff_id == alice.staff_id)
        )
        assert balance == 0

    async def test_split_rows_are_positioned(self, session, data):
        venue = await data.venue()
        alice, bob = await data.staff(venue), await data.staff(venue)
        tip = await data.tip(venue, 9001)

        tip = await reload_tip(session, tip.tip_id)
        plan = AllocationPlan(
            tip_id=tip.tip_id,
            entries=(
                PlanEntry(alice.staff_id, 4501, AllocationReason.EVEN_SPLIT),
                PlanEntry(bob.staff_id, 4500, AllocationReason.EVEN_SPLIT),
            ),
        )
        writer = AllocationWriter(session)
        await writer.commit(tip, plan)

        rows = await writer.get_allocations(tip.tip_id)
        assert [(r.position, r.amount) for r in rows] == [(0, 4501), (1, 4500)]

    async def test_second_commit_is_noop(self, session, data):
        venue = await data.venue()
        alice = await data.staff(venue)
        tip = await data.tip(venue, 5000, staff_id=alice.staff_id)

        tip = await reload_tip(session, tip.tip_id)
        writer = AllocationWriter(session)
        first = await writer.commit(tip, single(tip, alice.staff_id))
        second = await writer.commit(tip, single(tip, alice.staff_id))

        assert second.is_new is False
        assert [a.allocation_id for a in second.allocations] == [
            a.allocation_id for a in first.allocations
        ]
        count = await session.scalar(
            select(func.count()).select_from(TipAllocation).where(TipAllocation.tip_id == tip.tip_id)
        )
        assert count == 1
        balance = await session.scalar(
            select(Staff.balance).where(Staff.staff_id == alice.staff_id)
        )
        assert balance == 5000


class TestCommitValidation:
    """Test plans and tips the writer refuses."""

    async def test_unpaid_tip(self, session, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000, status="PENDING")

        tip = await reload_tip(session, tip.tip_id)
        with pytest.raises(TipNotPaidError):
            await AllocationWriter(session).commit(tip, single(tip, None))

    async def test_plan_total_mismatch(self, session, data):
        venue = await data.venue()
        alice = await data.staff(venue)
        tip = await data.tip(venue, 5000)

        tip = await reload_tip(session, tip.tip_id)
        with pytest.raises(PlanMismatchError) as exc_info:
            await AllocationWriter(session).commit(tip, single(tip, alice.staff_id, 4999))

        assert exc_info.value.plan_total == 4999
        assert tip.allocated_at is None

    async def test_empty_plan(self, session, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000)

        tip = await reload_tip(session, tip.tip_id)
        with pytest.raises(PlanMismatchError):
            await AllocationWriter(session).commit(tip, AllocationPlan(tip.tip_id, ()))

    async def test_plan_for_other_tip(self, session, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000)

        tip = await reload_tip(session, tip.tip_id)
        plan = AllocationPlan(
            tip_id=uuid4(),
            entries=(PlanEntry(None, 5000, AllocationReason.VENUE_POOL),),
        )
        with pytest.raises(ValidationError):
            await AllocationWriter(session).commit(tip, plan)


class TestIntegrity:
    """Test the allocation integrity check."""

    async def test_unallocated_tip_is_valid(self, session, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000)

        tip = await reload_tip(session, tip.tip_id)
        assert await AllocationWriter(session).verify_tip_integrity(tip) == (True, [])

    async def test_allocated_tip_is_valid(self, session, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000)

        tip = await reload_tip(session, tip.tip_id)
        writer = AllocationWriter(session)
        await writer.commit(tip, single(tip, None, reason=AllocationReason.VENUE_POOL))

        valid, errors = await writer.verify_tip_integrity(tip)
        assert valid is True
        assert errors == []
