"""TipLedger facade - the single integration path for the ledger.

Usage:
    ledger = TipLedger(session_factory, config)

    # Payment confirmed by the gateway (already authenticated upstream)
    result = await ledger.handle_payment_confirmation(event)

    # Allocate a paid tip according to venue policy
    result = await ledger.allocate(tip_id)

    balance = await ledger.get_balance(staff_id)
    payout = await ledger.settle(staff_id)
    fix = await ledger.reconcile(staff_id)

Every operation runs in its own transaction: all of its writes commit
together or none do. Write conflicts (ConflictError, integrity and lock
errors from the store) are retried up to ``max_conflict_retries`` times
before they surface. Other SQLAlchemy failures surface as InternalError.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from tip_ledger.config import LedgerConfig, UnassignedTipPolicy
from tip_ledger.errors import (
    AlreadyAllocatedError,
    ConflictError,
    InternalError,
    LedgerError,
    TipNotFoundError,
    TipNotPaidError,
    ValidationError,
    VenueNotFoundError,
)
from tip_ledger.models import DistributionMode, Payout, Staff, Tip, TipAllocation, Venue
from tip_ledger.services.allocation_writer import AllocationWriter, CommitResult
from tip_ledger.services.balance_ledger import BalanceLedger
from tip_ledger.services.concurrency import run_with_retry
from tip_ledger.services.distribution import AllocationPlan, DistributionPolicyResolver
from tip_ledger.services.payment_events import (
    PaymentConfirmation,
    PaymentEventProcessor,
    PaymentEventResult,
    StatusUpdate,
)
from tip_ledger.services.payout_service import PayoutService, PayoutStatement
from tip_ledger.services.reconciliation import (
    ReconciliationResult,
    ReconciliationService,
    ReconciliationSummary,
)
from tip_ledger.services.state_machine import TipStateMachine, TipStatus
from tip_ledger.services.tip_service import TipService

logger = logging.getLogger(__name__)


class TipLedger:
    """Transactional facade over the allocation, payout and reconciliation services."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: LedgerConfig | None = None,
    ):
        self.session_factory = session_factory
        self.config = config or LedgerConfig()
        self.resolver = DistributionPolicyResolver(self.config.unassigned_tip_policy)

    # =========================================================================
    # Transactions
    # =========================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session inside one transaction, with store errors translated."""
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except (IntegrityError, OperationalError, StaleDataError) as exc:
                raise ConflictError(f"Write conflict: {exc.__class__.__name__}") from exc
            except SQLAlchemyError as exc:
                logger.exception("Unexpected persistence failure")
                raise InternalError(str(exc)) from exc

    async def _retrying(self, func):
        return await run_with_retry(
            func,
            attempts=self.config.max_conflict_retries,
            backoff_base=self.config.retry_backoff_seconds,
        )

    # =========================================================================
    # Core operations
    # =========================================================================

    async def allocate(
        self,
        tip_id: UUID,
        explicit_staff_target: UUID | None = None,
    ) -> CommitResult:
        """Resolve the venue policy for a paid tip and commit the allocation."""

        async def op() -> CommitResult:
            async with self.transaction() as session:
                tip = await session.get(Tip, tip_id)
                if tip is None:
                    raise TipNotFoundError(tip_id)

                writer = AllocationWriter(session)
                if tip.allocated_at is not None:
                    existing = await writer.get_allocations(tip_id)
                    if not existing:
                        raise AlreadyAllocatedError(tip_id)
                    return CommitResult(tip_id=tip_id, allocations=existing, is_new=False)
                if not TipStateMachine.can_allocate(tip.status):
                    raise TipNotPaidError(tip_id, tip.status)

                venue = await session.get(Venue, tip.venue_id)
                if venue is None:
                    raise VenueNotFoundError(tip.venue_id)
                roster = await self._roster(session, venue.venue_id)

                plan = self.resolver.resolve(venue, tip, roster, explicit_staff_target)
                return await writer.commit(tip, plan)

        return await self._retrying(op)

    async def commit(self, tip_id: UUID, plan: AllocationPlan) -> list[TipAllocation]:
        """Commit an already-resolved plan. Idempotent per tip."""

        async def op() -> list[TipAllocation]:
            async with self.transaction() as session:
                tip = await session.get(Tip, tip_id)
                if tip is None:
                    raise TipNotFoundError(tip_id)
                result = await AllocationWriter(session).commit(tip, plan)
                return result.allocations

        return await self._retrying(op)

    async def get_balance(self, staff_id: UUID) -> int:
        async with self.transaction() as session:
            return await BalanceLedger(session).get_balance(staff_id)

    async def settle(self, staff_id: UUID) -> Payout:
        """Pay out every unpaid allocation of a staff member."""

        async def op() -> Payout:
            async with self.transaction() as session:
                return await PayoutService(session).settle(staff_id)

        return await self._retrying(op)

    async def reconcile(self, staff_id: UUID) -> ReconciliationResult:
        """Correct the cached balance of one staff member from the ledger."""

        async def op() -> ReconciliationResult:
            async with self.transaction() as session:
                return await ReconciliationService(session).reconcile(staff_id)

        return await self._retrying(op)

    # =========================================================================
    # Reconciliation and reporting
    # =========================================================================

    async def inspect(self, staff_id: UUID) -> ReconciliationResult:
        async with self.transaction() as session:
            return await ReconciliationService(session).inspect(staff_id)

    async def reconcile_all(
        self,
        venue_id: UUID | None = None,
        *,
        dry_run: bool = False,
    ) -> ReconciliationSummary:
        """Reconcile every staff balance, one transaction per staff member.

        Failures are collected per staff; one bad balance does not stop the
        rest of the run.
        """
        async with self.transaction() as session:
            staff_ids = await ReconciliationService(session).staff_ids(venue_id)

        summary = ReconciliationSummary()
        for staff_id in staff_ids:
            try:
                if dry_run:
                    result = await self.inspect(staff_id)
                else:
                    result = await self.reconcile(staff_id)
                summary.results.append(result)
            except LedgerError as exc:
                logger.error("Reconciliation failed for staff %s: %s", staff_id, exc)
                summary.errors.append(
                    {"staff_id": str(staff_id), "code": exc.code, "message": str(exc)}
                )

        logger.info(
            "Reconciled %d staff (%d corrected, total delta %d, %d errors)",
            summary.staff_checked,
            summary.staff_fixed,
            summary.total_delta,
            len(summary.errors),
        )
        return summary

    async def payout_statement(self, payout_id: UUID) -> PayoutStatement:
        async with self.transaction() as session:
            return await PayoutService(session).get_statement(payout_id)

    async def list_payouts(self, staff_id: UUID, limit: int = 5) -> list[Payout]:
        async with self.transaction() as session:
            return await PayoutService(session).list_payouts(staff_id=staff_id, limit=limit)

    async def export_payouts_csv(self, venue_id: UUID) -> str:
        async with self.transaction() as session:
            return await PayoutService(session).export_csv(venue_id)

    async def get_tip_allocations(self, tip_id: UUID) -> list[TipAllocation]:
        async with self.transaction() as session:
            if await session.get(Tip, tip_id) is None:
                raise TipNotFoundError(tip_id)
            return await AllocationWriter(session).get_allocations(tip_id)

    # =========================================================================
    # Tips and payment events
    # =========================================================================

    async def create_tip(self, **kwargs) -> Tip:
        """Record a PENDING tip. See ``TipService.create_tip`` for arguments."""
        async with self.transaction() as session:
            return await TipService(session, self.config).create_tip(**kwargs)

    async def handle_payment_confirmation(self, event: PaymentConfirmation) -> PaymentEventResult:
        """Apply a verified gateway notification and allocate the tip if paid.

        The status change and the allocation commit separately: an
        allocation failure leaves the tip PAID and is reported in
        ``allocation_error`` rather than raised, so the caller can alert
        and redeliver without treating the payment as failed.
        """
        async with self.transaction() as session:
            log = await PaymentEventProcessor(session).record_webhook(event)
            webhook_log_id = log.webhook_log_id

        async def apply() -> StatusUpdate:
            async with self.transaction() as session:
                return await PaymentEventProcessor(session).apply_status(event)

        try:
            update = await self._retrying(apply)
        except LedgerError as exc:
            await self._mark_webhook(webhook_log_id, str(exc))
            raise

        result = PaymentEventResult(
            outcome=update.outcome,
            tip_id=update.tip_id,
            previous_status=update.previous_status,
            new_status=update.new_status,
        )

        if update.needs_allocation and update.tip_id is not None:
            try:
                committed = await self.allocate(update.tip_id)
                result.allocations = committed.allocations
            except LedgerError as exc:
                logger.error("Allocation failed for paid tip %s: %s", update.tip_id, exc)
                result.allocation_error = str(exc)
        elif update.tip_id is not None and update.new_status == TipStatus.PAID:
            result.allocations = await self.get_tip_allocations(update.tip_id)

        await self._mark_webhook(webhook_log_id, result.allocation_error)
        return result

    async def _mark_webhook(self, webhook_log_id: UUID, error: str | None) -> None:
        async with self.transaction() as session:
            await PaymentEventProcessor(session).mark_webhook(webhook_log_id, error)

    # =========================================================================
    # Venue distribution settings
    # =========================================================================

    async def get_venue(self, venue_id: UUID) -> tuple[Venue, list[Staff]]:
        """Venue with its active pool participants."""
        async with self.transaction() as session:
            venue = await session.get(Venue, venue_id)
            if venue is None:
                raise VenueNotFoundError(venue_id)
            roster = await self._roster(session, venue_id)
            return venue, [s for s in roster if s.is_active and s.participates_in_pool]

    async def update_distribution(
        self,
        venue_id: UUID,
        *,
        distribution_mode: DistributionMode,
        allow_staff_choice: bool,
        unassigned_tip_policy: UnassignedTipPolicy | None = None,
    ) -> Venue:
        """Change how future tips of a venue are distributed."""
        async with self.transaction() as session:
            venue = await session.get(Venue, venue_id)
            if venue is None:
                raise VenueNotFoundError(venue_id)
            if distribution_mode == DistributionMode.POOLED and unassigned_tip_policy:
                raise ValidationError("unassigned_tip_policy only applies to PERSONAL venues")

            venue.distribution_mode = DistributionMode(distribution_mode).value
            venue.allow_staff_choice = allow_staff_choice
            venue.unassigned_tip_policy = (
                UnassignedTipPolicy(unassigned_tip_policy).value if unassigned_tip_policy else None
            )
            logger.info(
                "Venue %s distribution set to %s (staff choice %s, unassigned %s)",
                venue_id,
                venue.distribution_mode,
                allow_staff_choice,
                venue.unassigned_tip_policy,
            )
            return venue

    @staticmethod
    async def _roster(session: AsyncSession, venue_id: UUID) -> list[Staff]:
        result = await session.execute(
            select(Staff).where(Staff.venue_id == venue_id).order_by(Staff.staff_id)
        )
        return list(result.scalars().all())
