"""Tip creation and platform fee computation."""

from __future__ import annotations

import logging
import math
import secrets
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from tip_ledger.config import LedgerConfig
from tip_ledger.errors import (
    InvalidTargetError,
    StaffNotFoundError,
    ValidationError,
    VenueNotFoundError,
)
from tip_ledger.models import Staff, Tip, Venue, utcnow
from tip_ledger.services.state_machine import TipStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TipAmounts:
    """Amounts derived from the tip the customer entered."""

    charged: int
    net: int
    platform_fee: int


def compute_tip_amounts(amount: int, guest_paid_fee: bool, fee_percent: int) -> TipAmounts:
    """Split a tip into charged amount, platform fee and net amount.

    The fee is rounded up to the next minor unit. When the guest covers the
    fee it is added on top of the charged amount; the net amount credited
    to recipients is ``amount - fee`` either way.
    """
    if amount <= 0:
        raise ValidationError("Tip amount must be positive")
    fee = math.ceil(amount * fee_percent / 100)
    net = amount - fee
    if net <= 0:
        raise ValidationError(f"Tip amount {amount} does not cover the platform fee")
    charged = amount + fee if guest_paid_fee else amount
    return TipAmounts(charged=charged, net=net, platform_fee=fee)


def generate_order_id(venue_id: UUID) -> str:
    """Gateway order id: venue prefix, timestamp and random suffix."""
    stamp = utcnow().strftime("%Y%m%d%H%M%S%f")
    return f"TIP-{str(venue_id)[:8]}-{stamp}-{secrets.token_hex(4)}"


class TipService:
    """Creates PENDING tips ready for the payment gateway."""

    def __init__(self, session: AsyncSession, config: LedgerConfig | None = None):
        self.session = session
        self.config = config or LedgerConfig()

    async def create_tip(
        self,
        *,
        venue_id: UUID,
        amount: int,
        guest_paid_fee: bool = False,
        staff_id: UUID | None = None,
        chosen_staff_id: UUID | None = None,
        qr_code_id: UUID | None = None,
    ) -> Tip:
        """Record a new tip in PENDING status.

        Args:
            venue_id: Venue receiving the tip
            amount: Tip amount entered by the customer, minor units
            guest_paid_fee: Customer pays the platform fee on top
            staff_id: Staff bound by a personal QR code
            chosen_staff_id: Staff picked by the customer on a team QR code
            qr_code_id: QR code that was scanned

        Raises:
            ValidationError: Amount below the configured minimum
            VenueNotFoundError: Unknown venue
            InvalidTargetError: Staff is not part of the venue
        """
        if amount < self.config.min_tip_amount:
            raise ValidationError(
                f"Minimum tip amount is {self.config.min_tip_amount}, got {amount}"
            )

        venue = await self.session.get(Venue, venue_id)
        if venue is None:
            raise VenueNotFoundError(venue_id)

        for target in (staff_id, chosen_staff_id):
            if target is None:
                continue
            staff = await self.session.get(Staff, target)
            if staff is None:
                raise StaffNotFoundError(target)
            if staff.venue_id != venue_id:
                raise InvalidTargetError(target, venue_id)

        amounts = compute_tip_amounts(amount, guest_paid_fee, self.config.platform_fee_percent)
        tip = Tip(
            venue_id=venue_id,
            amount=amounts.charged,
            net_amount=amounts.net,
            platform_fee=amounts.platform_fee,
            guest_paid_fee=guest_paid_fee,
            status=TipStatus.PENDING.value,
            staff_id=staff_id,
            chosen_staff_id=chosen_staff_id,
            qr_code_id=qr_code_id,
            gateway_order_id=generate_order_id(venue_id),
        )
        self.session.add(tip)
        await self.session.flush()

        logger.info(
            "Created tip %s for venue %s: charged %d, net %d",
            tip.tip_id,
            venue_id,
            amounts.charged,
            amounts.net,
        )
        return tip
