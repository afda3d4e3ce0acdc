"""
FastAPI Application Entry Point.

This is the main application file for the POS Ledger Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from pos_backend.app.core.config import settings
from pos_backend.app.api.v1.router import router as api_v1_router
from pos_backend.app.core.observability import ObservabilityMiddleware, configure_logging, logger
from pos_backend.app.core.redis_client import close_redis, ping_redis
from pos_backend.app.db.session import engine, Base
from pos_backend.app.db.views import create_summary_view, detect_capabilities, get_ledger_capabilities
from pos_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from pos_backend.app.models.user import User
from pos_backend.app.models.audit_log import AuditLog
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.order import Order
from pos_backend.app.models.customer_payment import CustomerPayment
from pos_backend.app.models.customer_ledger import CustomerLedgerEntry
from pos_backend.app.models.order_payment_transaction import OrderPaymentTransaction


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging.
    2. Creates database tables and the ledger summary view.
    3. Detects storage capabilities once.
    4. Closes the cache client and disposes the engine on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.create_summary_view:
        await create_summary_view(engine)

    capabilities = await detect_capabilities(engine)
    logger.info("Ledger storage ready (summary view: %s)", capabilities.summary_view_available)
    yield
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Customer ledger and payment backend for a restaurant POS",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and backing service state
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "cache": "up" if await ping_redis() else "down",
        "summary_view": get_ledger_capabilities().summary_view_available,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
