"""Pytest fixtures for tip ledger tests."""

from __future__ import annotations

from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tip_ledger.config import LedgerConfig
from tip_ledger.database import create_schema, get_engine, make_session_factory
from tip_ledger.ledger import TipLedger
from tip_ledger.models import (
    DistributionMode,
    Staff,
    StaffStatus,
    Tip,
    TipAllocation,
    Venue,
)


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine, fresh for each test.

    A file database gives every session its own connection, so separate
    ledger transactions behave as they would against Postgres.
    """
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for service-level tests. Rolled back at teardown."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig(retry_backoff_seconds=0)


@pytest.fixture
def ledger(session_factory, config) -> TipLedger:
    return TipLedger(session_factory, config)


class LedgerTestData:
    """Creates committed test records, each in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._order_seq = 0

    async def _persist(self, obj):
        async with self.session_factory() as session:
            async with session.begin():
                session.add(obj)
        return obj

    async def venue(
        self,
        *,
        mode: DistributionMode = DistributionMode.POOLED,
        allow_staff_choice: bool = False,
        unassigned_tip_policy: str | None = None,
        name: str = "Warung Test",
    ) -> Venue:
        return await self._persist(
            Venue(
                venue_id=uuid4(),
                name=name,
                distribution_mode=mode.value,
                allow_staff_choice=allow_staff_choice,
                unassigned_tip_policy=unassigned_tip_policy,
            )
        )

    async def staff(
        self,
        venue: Venue,
        *,
        name: str = "Staff",
        active: bool = True,
        participates_in_pool: bool = True,
        balance: int = 0,
    ) -> Staff:
        return await self._persist(
            Staff(
                staff_id=uuid4(),
                venue_id=venue.venue_id,
                display_name=name,
                status=(StaffStatus.ACTIVE if active else StaffStatus.INACTIVE).value,
                participates_in_pool=participates_in_pool,
                balance=balance,
            )
        )

    async def tip(
        self,
        venue: Venue,
        net_amount: int,
        *,
        status: str = "PAID",
        staff_id: UUID | None = None,
        chosen_staff_id: UUID | None = None,
        amount: int | None = None,
    ) -> Tip:
        """Tip with explicit amounts. Defaults to PAID and unallocated."""
        self._order_seq += 1
        return await self._persist(
            Tip(
                tip_id=uuid4(),
                venue_id=venue.venue_id,
                amount=amount if amount is not None else net_amount,
                net_amount=net_amount,
                platform_fee=0,
                status=status,
                staff_id=staff_id,
                chosen_staff_id=chosen_staff_id,
                gateway_order_id=f"TEST-{venue.venue_id.hex[:8]}-{self._order_seq}",
            )
        )

    async def get_tip(self, tip_id: UUID) -> Tip:
        async with self.session_factory() as session:
            tip = await session.get(Tip, tip_id)
            assert tip is not None
            return tip

    async def get_staff(self, staff_id: UUID) -> Staff:
        async with self.session_factory() as session:
            staff = await session.get(Staff, staff_id)
            assert staff is not None
            return staff

    async def allocations_for_staff(self, staff_id: UUID) -> list[TipAllocation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TipAllocation)
                .where(TipAllocation.staff_id == staff_id)
                .order_by(TipAllocation.created_at)
            )
            return list(result.scalars().all())

    async def set_balance(self, staff_id: UUID, balance: int) -> None:
        """Corrupt a cached balance directly, bypassing the ledger."""
        async with self.session_factory() as session:
            async with session.begin():
                staff = await session.get(Staff, staff_id)
                staff.balance = balance


@pytest.fixture
def data(session_factory) -> LedgerTestData:
    return LedgerTestData(session_factory)
