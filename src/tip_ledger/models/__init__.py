"""ORM models for the tip ledger."""

from tip_ledger.models.base import Base, TimestampMixin, utcnow
from tip_ledger.models.tips import AllocationReason, Payout, Tip, TipAllocation, WebhookLog
from tip_ledger.models.venue import DistributionMode, Staff, StaffStatus, Venue

__all__ = [
    "AllocationReason",
    "Base",
    "DistributionMode",
    "Payout",
    "Staff",
    "StaffStatus",
    "Tip",
    "TipAllocation",
    "TimestampMixin",
    "Venue",
    "WebhookLog",
    "utcnow",
]
