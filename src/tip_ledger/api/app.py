"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from tip_ledger.api.routes import health_router, ledger_router
from tip_ledger.config import get_settings
from tip_ledger.database import create_schema, dispose_db, init_db
from tip_ledger.errors import (
    ConflictError,
    InternalError,
    LedgerError,
    NotFoundError,
    NothingToPayoutError,
    ValidationError,
)
from tip_ledger.ledger import TipLedger

logger = logging.getLogger(__name__)

ERROR_STATUS: list[tuple[type[LedgerError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NothingToPayoutError, status.HTTP_409_CONFLICT),
    (InternalError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def status_for(exc: LedgerError) -> int:
    """HTTP status for a ledger error."""
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(ledger: TipLedger | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``ledger`` to serve an existing facade (tests, embedding); without
    it the database is initialized from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        if ledger is not None:
            app.state.ledger = ledger
            yield
            return

        settings = get_settings()
        logging.basicConfig(level=settings.log_level)
        engine, factory = init_db()
        if settings.create_schema:
            await create_schema(engine)
        app.state.ledger = TipLedger(factory, settings.ledger)
        yield
        await dispose_db()

    app = FastAPI(
        title="Tip Ledger API",
        description="Tip allocation, balances, payouts and reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    if ledger is not None:
        app.state.ledger = ledger

    # Exception handlers
    @app.exception_handler(LedgerError)
    async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
        """Map ledger errors onto HTTP responses."""
        code = status_for(exc)
        if code >= 500:
            logger.error("Ledger failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"code": exc.code, "detail": str(exc)})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(ledger_router, prefix="/api/v1")

    return app
