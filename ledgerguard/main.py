"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ledgerguard.api.v1.router import api_router
from ledgerguard.config import get_settings
from ledgerguard.core.errors import BillingError, BillingErrorCode, InvalidStatusTransitionError
from ledgerguard.core.invariants import InvariantViolationError
from ledgerguard.database import engine
from ledgerguard.store import DocumentNotFoundError, StoreUnavailableError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

BILLING_ERROR_STATUS = {
    BillingErrorCode.BILLING_SUSPENDED: status.HTTP_402_PAYMENT_REQUIRED,
    BillingErrorCode.BILLING_DUE: status.HTTP_402_PAYMENT_REQUIRED,
    BillingErrorCode.BILLING_CYCLE_LOCKED: status.HTTP_409_CONFLICT,
    BillingErrorCode.BILLING_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BillingErrorCode.USAGE_WRITE_BLOCKED: status.HTTP_403_FORBIDDEN,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    # Connection pools are created lazily, but we can test connection here
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))

    yield

    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Ledgerguard",
    description="Billing invariant and usage-ledger enforcement API",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Translate billing guard rejections."""
    return JSONResponse(
        status_code=BILLING_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        content={
            "detail": exc.message,
            "code": exc.code.value,
            "billing_account_id": exc.billing_account_id,
            "billing_status": exc.billing_status.value if exc.billing_status else None,
        },
    )


@app.exception_handler(InvalidStatusTransitionError)
async def invalid_transition_handler(
    request: Request, exc: InvalidStatusTransitionError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": str(exc),
            "from_status": exc.from_status.value,
            "to_status": exc.to_status.value,
            "valid_targets": [t.value for t in exc.valid_targets],
        },
    )


@app.exception_handler(InvariantViolationError)
async def invariant_violation_handler(
    request: Request, exc: InvariantViolationError
) -> JSONResponse:
    logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "invariant": exc.invariant},
    )


@app.exception_handler(DocumentNotFoundError)
async def not_found_handler(request: Request, exc: DocumentNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Billing store unavailable"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    if settings.debug:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__},
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
