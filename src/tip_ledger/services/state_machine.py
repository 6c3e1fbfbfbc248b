"""Tip payment state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from tip_ledger.errors import InvalidTransitionError


class TipStatus(str, Enum):
    """Tip payment status values."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class TipStateMachine:
    """State machine for tip status transitions.

    Allowed transitions:
    - PENDING → PAID
    - PENDING → FAILED
    - PENDING → CANCELED
    - PENDING → EXPIRED

    Every other status is final. PAID is reached at most once, and that
    transition is what triggers allocation.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        TipStatus.PENDING: [
            TipStatus.PAID,
            TipStatus.FAILED,
            TipStatus.CANCELED,
            TipStatus.EXPIRED,
        ],
        TipStatus.PAID: [],
        TipStatus.FAILED: [],
        TipStatus.CANCELED: [],
        TipStatus.EXPIRED: [],
    }

    FINAL_STATUSES = {
        TipStatus.PAID,
        TipStatus.FAILED,
        TipStatus.CANCELED,
        TipStatus.EXPIRED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = "status is final" if cls.is_final(from_status) else None
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def is_final(cls, status: str) -> bool:
        """Check if no further transitions are possible."""
        return status in cls.FINAL_STATUSES

    @classmethod
    def can_allocate(cls, status: str) -> bool:
        """Only paid tips are allocated."""
        return status == TipStatus.PAID
