"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Request

from tip_ledger.ledger import TipLedger


def get_ledger(request: Request) -> TipLedger:
    """Ledger facade created at application startup."""
    return request.app.state.ledger


# Type aliases for cleaner dependency injection
Ledger = Annotated[TipLedger, Depends(get_ledger)]
