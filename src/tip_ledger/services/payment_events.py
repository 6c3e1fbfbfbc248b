"""Payment confirmation processing.

Consumes gateway notifications that the surrounding system has already
authenticated. The tip status update and the allocation run in separate
transactions so a tip can be PAID while its allocation is still pending;
the allocation is then retried on the next delivery of the same event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tip_ledger.errors import AmountMismatchError, ConflictError
from tip_ledger.models import Tip, TipAllocation, WebhookLog, utcnow
from tip_ledger.services.state_machine import TipStateMachine, TipStatus

logger = logging.getLogger(__name__)


class PaymentEventOutcome(str, Enum):
    """Result of handling a payment notification."""

    PROCESSED = "processed"  # Status changed
    DUPLICATE = "duplicate"  # Tip already in a final status
    IGNORED = "ignored"  # Notification carries no status change
    UNKNOWN = "unknown"  # No tip for the reference


def map_gateway_status(transaction_status: str, fraud_status: str | None = None) -> TipStatus:
    """Map a gateway transaction status onto a tip status."""
    status = (transaction_status or "").lower()
    if status == "capture":
        return TipStatus.PAID if fraud_status == "accept" else TipStatus.PENDING
    if status == "settlement":
        return TipStatus.PAID
    if status in ("deny", "cancel"):
        return TipStatus.CANCELED
    if status == "expire":
        return TipStatus.EXPIRED
    if status == "failure":
        return TipStatus.FAILED
    return TipStatus.PENDING


@dataclass(frozen=True)
class PaymentConfirmation:
    """Verified payment notification for a tip.

    Either ``tip_id`` or ``order_id`` identifies the tip. ``net_amount`` is
    the amount the gateway confirmed for crediting, if it reports one.
    """

    transaction_status: str
    tip_id: UUID | None = None
    order_id: str | None = None
    fraud_status: str | None = None
    net_amount: int | None = None
    transaction_id: str | None = None
    payment_type: str | None = None
    transaction_time: datetime | None = None
    provider: str = "gateway"
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.tip_id is None and not self.order_id:
            raise ValueError("tip_id or order_id is required")

    @property
    def reference(self) -> str:
        return str(self.tip_id) if self.tip_id else str(self.order_id)


@dataclass(frozen=True)
class StatusUpdate:
    """Outcome of applying a notification to the tip's status."""

    outcome: PaymentEventOutcome
    tip_id: UUID | None
    previous_status: str | None
    new_status: str | None
    needs_allocation: bool = False


@dataclass
class PaymentEventResult:
    """Full result of handling a notification, including allocation."""

    outcome: PaymentEventOutcome
    tip_id: UUID | None
    previous_status: str | None
    new_status: str | None
    allocations: list[TipAllocation] = field(default_factory=list)
    allocation_error: str | None = None

    @property
    def allocated(self) -> bool:
        return bool(self.allocations)


class PaymentEventProcessor:
    """Applies payment notifications to tips and keeps the webhook log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_webhook(self, event: PaymentConfirmation) -> WebhookLog:
        """Store the raw notification before processing it."""
        payload = event.payload or {
            "reference": event.reference,
            "transaction_status": event.transaction_status,
        }
        log = WebhookLog(provider=event.provider, payload=payload, processed=False)
        self.session.add(log)
        await self.session.flush()
        return log

    async def mark_webhook(self, webhook_log_id: UUID, error: str | None = None) -> None:
        await self.session.execute(
            update(WebhookLog)
            .where(WebhookLog.webhook_log_id == webhook_log_id)
            .values(processed=True, error=error)
            .execution_options(synchronize_session=False)
        )

    async def find_tip(self, event: PaymentConfirmation) -> Tip | None:
        if event.tip_id is not None:
            return await self.session.get(Tip, event.tip_id)
        return await self.session.scalar(
            select(Tip).where(Tip.gateway_order_id == event.order_id)
        )

    async def apply_status(self, event: PaymentConfirmation) -> StatusUpdate:
        """Move the tip to the status reported by the gateway.

        Raises:
            AmountMismatchError: Confirmed amount differs from the tip
            ConflictError: Tip status changed concurrently
        """
        tip = await self.find_tip(event)
        if tip is None:
            logger.warning("Payment notification for unknown tip %s", event.reference)
            return StatusUpdate(PaymentEventOutcome.UNKNOWN, None, None, None)

        new_status = map_gateway_status(event.transaction_status, event.fraud_status)

        if TipStateMachine.is_final(tip.status):
            logger.info(
                "Tip %s already %s; notification '%s' treated as duplicate",
                tip.tip_id,
                tip.status,
                event.transaction_status,
            )
            return StatusUpdate(
                PaymentEventOutcome.DUPLICATE,
                tip.tip_id,
                tip.status,
                tip.status,
                needs_allocation=tip.status == TipStatus.PAID and tip.allocated_at is None,
            )

        if new_status == tip.status:
            return StatusUpdate(PaymentEventOutcome.IGNORED, tip.tip_id, tip.status, tip.status)

        TipStateMachine.validate_transition(tip.status, new_status)

        if (
            new_status == TipStatus.PAID
            and event.net_amount is not None
            and event.net_amount != tip.net_amount
        ):
            raise AmountMismatchError(tip.tip_id, tip.net_amount, event.net_amount)

        values: dict[str, Any] = {"status": new_status.value}
        if event.transaction_id:
            values["gateway_transaction_id"] = event.transaction_id
        if event.payment_type:
            values["gateway_payment_type"] = event.payment_type
        if new_status == TipStatus.PAID:
            values["paid_at"] = event.transaction_time or utcnow()

        result = await self.session.execute(
            update(Tip)
            .where(Tip.tip_id == tip.tip_id, Tip.status == tip.status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError(f"Status of tip {tip.tip_id} changed concurrently")

        logger.info("Tip %s: %s -> %s", tip.tip_id, tip.status, new_status.value)
        return StatusUpdate(
            PaymentEventOutcome.PROCESSED,
            tip.tip_id,
            tip.status,
            new_status.value,
            needs_allocation=new_status == TipStatus.PAID,
        )
