"""API routes."""

from tip_ledger.api.routes.health import router as health_router
from tip_ledger.api.routes.ledger import router as ledger_router

__all__ = ["health_router", "ledger_router"]
