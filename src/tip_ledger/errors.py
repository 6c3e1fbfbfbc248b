"""Error taxonomy for the tip ledger.

Callers branch on the base classes:

- ``ValidationError``: malformed or out-of-policy input. Report to the user.
- ``NotFoundError``: a referenced record does not exist.
- ``ConflictError``: concurrent-write contention. Safe to retry; the
  ``TipLedger`` facade retries these before surfacing them.
- ``NothingToPayoutError``: legitimate empty state, not a failure.
- ``InternalError``: unexpected persistence failure.
"""

from __future__ import annotations

from uuid import UUID


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "LEDGER_ERROR"


class ValidationError(LedgerError):
    """Input is malformed or violates venue policy."""

    code = "VALIDATION_ERROR"


class InvalidTargetError(ValidationError):
    """Staff target does not belong to the tip's venue."""

    code = "INVALID_TARGET"

    def __init__(self, staff_id: UUID, venue_id: UUID):
        self.staff_id = staff_id
        self.venue_id = venue_id
        super().__init__(f"Staff {staff_id} does not belong to venue {venue_id}")


class StaffChoiceRequiredError(ValidationError):
    """Venue policy requires the customer to pick a staff member."""

    code = "STAFF_CHOICE_REQUIRED"

    def __init__(self, venue_id: UUID):
        self.venue_id = venue_id
        super().__init__(f"Venue {venue_id} requires a staff choice for every tip")


class TipNotPaidError(ValidationError):
    """Allocation attempted for a tip that is not PAID."""

    code = "TIP_NOT_PAID"

    def __init__(self, tip_id: UUID, status: str):
        self.tip_id = tip_id
        self.status = status
        super().__init__(f"Tip {tip_id} has status '{status}', expected 'PAID'")


class PlanMismatchError(ValidationError):
    """Allocation plan does not add up to the tip's net amount."""

    code = "PLAN_MISMATCH"

    def __init__(self, tip_id: UUID, net_amount: int, plan_total: int):
        self.tip_id = tip_id
        self.net_amount = net_amount
        self.plan_total = plan_total
        super().__init__(
            f"Plan for tip {tip_id} totals {plan_total}, but net amount is {net_amount}"
        )


class AmountMismatchError(ValidationError):
    """Confirmed payment amount differs from the tip's net amount."""

    code = "AMOUNT_MISMATCH"

    def __init__(self, tip_id: UUID, expected: int, confirmed: int):
        self.tip_id = tip_id
        self.expected = expected
        self.confirmed = confirmed
        super().__init__(
            f"Tip {tip_id} net amount is {expected}, payment confirmed {confirmed}"
        )


class InvalidTransitionError(ValidationError):
    """Raised when an invalid tip status transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NotFoundError(LedgerError):
    """A referenced record does not exist."""

    code = "NOT_FOUND"
    entity = "record"

    def __init__(self, entity_id: UUID | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity.capitalize()} {entity_id} not found")


class StaffNotFoundError(NotFoundError):
    entity = "staff"


class TipNotFoundError(NotFoundError):
    entity = "tip"


class VenueNotFoundError(NotFoundError):
    entity = "venue"


class PayoutNotFoundError(NotFoundError):
    entity = "payout"


class ConflictError(LedgerError):
    """Concurrent write contention; the operation can be retried."""

    code = "CONFLICT"


class AlreadyAllocatedError(ConflictError):
    """Another writer claimed the tip but its allocations are not visible yet."""

    code = "ALREADY_ALLOCATED"

    def __init__(self, tip_id: UUID):
        self.tip_id = tip_id
        super().__init__(f"Tip {tip_id} is being allocated by another writer")


class NothingToPayoutError(LedgerError):
    """Staff member has no unpaid allocations."""

    code = "NOTHING_TO_PAYOUT"

    def __init__(self, staff_id: UUID):
        self.staff_id = staff_id
        super().__init__(f"Staff {staff_id} has no unpaid allocations")


class InternalError(LedgerError):
    """Unexpected persistence failure."""

    code = "INTERNAL_ERROR"
