"""Tests for payment confirmation processing."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import select

from tip_ledger.errors import AmountMismatchError
from tip_ledger.models import DistributionMode, WebhookLog
from tip_ledger.services.payment_events import (
    PaymentConfirmation,
    PaymentEventOutcome,
    map_gateway_status,
)
from tip_ledger.services.state_machine import TipStatus


class TestGatewayStatusMapping:
    """Test mapping of gateway statuses onto tip statuses."""

    @pytest.mark.parametrize(
        "transaction_status,fraud_status,expected",
        [
            ("capture", "accept", TipStatus.PAID),
            ("capture", "challenge", TipStatus.PENDING),
            ("settlement", None, TipStatus.PAID),
            ("SETTLEMENT", None, TipStatus.PAID),
            ("deny", None, TipStatus.CANCELED),
            ("cancel", None, TipStatus.CANCELED),
            ("expire", None, TipStatus.EXPIRED),
            ("failure", None, TipStatus.FAILED),
            ("pending", None, TipStatus.PENDING),
        ],
    )
    def test_mapping(self, transaction_status, fraud_status, expected):
        assert map_gateway_status(transaction_status, fraud_status) == expected

    def test_reference_required(self):
        with pytest.raises(ValueError):
            PaymentConfirmation(transaction_status="settlement")


class TestHandlePaymentConfirmation:
    """Test status updates and allocation through the ledger."""

    async def test_settlement_pays_and_allocates(self, ledger, data):
        venue = await data.venue(mode=DistributionMode.PERSONAL)
        alice = await data.staff(venue)
        tip = await data.tip(venue, 5000, status="PENDING", staff_id=alice.staff_id)

        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(
                transaction_status="settlement",
                tip_id=tip.tip_id,
                net_amount=5000,
                transaction_id="trx-1",
                payment_type="qris",
            )
        )

        assert result.outcome == PaymentEventOutcome.PROCESSED
        assert result.previous_status == "PENDING"
        assert result.new_status == "PAID"
        assert result.allocated is True
        assert result.allocation_error is None
        assert await ledger.get_balance(alice.staff_id) == 5000

        stored = await data.get_tip(tip.tip_id)
        assert stored.status == "PAID"
        assert stored.paid_at is not None
        assert stored.allocated_at is not None
        assert stored.gateway_transaction_id == "trx-1"
        assert stored.gateway_payment_type == "qris"

    async def test_lookup_by_order_id(self, ledger, data):
        venue = await data.venue()
        tip = await data.tip(venue, 10000, status="PENDING")

        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(transaction_status="settlement", order_id=tip.gateway_order_id)
        )

        assert result.tip_id == tip.tip_id
        assert [a.staff_id for a in result.allocations] == [None]

    async def test_redelivery_is_duplicate(self, ledger, data):
        venue = await data.venue()
        alice = await data.staff(venue)
        tip = await data.tip(venue, 5000, status="PENDING", staff_id=alice.staff_id)
        event = PaymentConfirmation(transaction_status="settlement", tip_id=tip.tip_id)

        first = await ledger.handle_payment_confirmation(event)
        second = await ledger.handle_payment_confirmation(event)

        assert second.outcome == PaymentEventOutcome.DUPLICATE
        assert [a.allocation_id for a in second.allocations] == [
            a.allocation_id for a in first.allocations
        ]
        assert await ledger.get_balance(alice.staff_id) == 5000

    async def test_redelivery_finishes_pending_allocation(self, ledger, data):
        venue = await data.venue()
        alice = await data.staff(venue)
        tip = await data.tip(venue, 5000, status="PAID", staff_id=alice.staff_id)

        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(transaction_status="settlement", tip_id=tip.tip_id)
        )

        assert result.outcome == PaymentEventOutcome.DUPLICATE
        assert result.allocated is True
        assert await ledger.get_balance(alice.staff_id) == 5000

    async def test_failure_status(self, ledger, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000, status="PENDING")

        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(transaction_status="expire", tip_id=tip.tip_id)
        )

        assert result.outcome == PaymentEventOutcome.PROCESSED
        assert result.new_status == "EXPIRED"
        assert result.allocations == []
        assert (await data.get_tip(tip.tip_id)).allocated_at is None

    async def test_pending_notification_ignored(self, ledger, data):
        venue = await data.venue()
        tip = await data.tip(venue, 5000, status="PENDING")

        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(transaction_status="pending", tip_id=tip.tip_id)
        )

        assert result.outcome == PaymentEventOutcome.IGNORED

    async def test_unknown_tip(self, ledger):
        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(transaction_status="settlement", tip_id=uuid4())
        )

        assert result.outcome == PaymentEventOutcome.UNKNOWN
        assert result.tip_id is None

    async def test_amount_mismatch(self, ledger, data, session_factory):
        venue = await data.venue()
        tip = await data.tip(venue, 5000, status="PENDING")

        with pytest.raises(AmountMismatchError):
            await ledger.handle_payment_confirmation(
                PaymentConfirmation(
                    transaction_status="settlement", tip_id=tip.tip_id, net_amount=4000
                )
            )

        assert (await data.get_tip(tip.tip_id)).status == "PENDING"
        async with session_factory() as session:
            log = (await session.execute(select(WebhookLog))).scalar_one()
        assert log.processed is True
        assert "4000" in log.error

    async def test_allocation_failure_reported(self, ledger, data, session_factory):
        venue = await data.venue(
            mode=DistributionMode.PERSONAL, unassigned_tip_policy="REQUIRE_CHOICE"
        )
        tip = await data.tip(venue, 5000, status="PENDING")

        result = await ledger.handle_payment_confirmation(
            PaymentConfirmation(transaction_status="settlement", tip_id=tip.tip_id)
        )

        assert result.new_status == "PAID"
        assert result.allocated is False
        assert "requires a staff choice" in result.allocation_error
        stored = await data.get_tip(tip.tip_id)
        assert stored.status == "PAID"
        assert stored.allocated_at is None

    async def test_webhook_logged(self, ledger, data, session_factory):
        venue = await data.venue()
        tip = await data.tip(venue, 5000, status="PENDING")

        await ledger.handle_payment_confirmation(
            PaymentConfirmation(
                transaction_status="settlement",
                tip_id=tip.tip_id,
                provider="midtrans",
                payload={"order_id": tip.gateway_order_id},
            )
        )

        async with session_factory() as session:
            log = (await session.execute(select(WebhookLog))).scalar_one()
        assert log.provider == "midtrans"
        assert log.payload == {"order_id": tip.gateway_order_id}
        assert log.processed is True
        assert log.error is None
