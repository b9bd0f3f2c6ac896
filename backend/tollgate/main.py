"""Main module of the FastAPI application.

This module sets up the FastAPI application, builds the payment facade and
registers the middleware that logs incoming requests and unhandled exceptions.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from tollgate.api.middleware import (
    add_request_id,
    billing_operation_exception_handler,
    exception_logging_middleware,
    external_service_exception_handler,
    invalid_state_exception_handler,
    log_requests,
    not_found_exception_handler,
    validation_exception_handler,
)
from tollgate.api.router import TrailingSlashRouter
from tollgate.api.v1.api import api_router
from tollgate.billing.adapters.sqlalchemy_adapter import SQLAlchemyDatabaseAdapter
from tollgate.billing.adapters.stripe_adapter import StripeVendorAdapter
from tollgate.billing.catalog import build_payment_options
from tollgate.billing.provider import PaymentProvider
from tollgate.core.config import Settings, settings
from tollgate.core.exceptions import (
    BillingOperationError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundException,
)
from tollgate.core.logging import logger
from tollgate.db.init_db import init_db
from tollgate.db.session import AsyncSessionLocal, async_engine


def build_payment_provider(config: Settings) -> Optional[PaymentProvider]:
    """Wire the payment facade from settings, None when no vendor is configured."""
    if not config.STRIPE_ENABLED:
        logger.info("Stripe is disabled, billing endpoints are unavailable")
        return None

    return PaymentProvider(
        adapter=StripeVendorAdapter(
            secret_key=config.STRIPE_SECRET_KEY,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
            api_version=config.STRIPE_API_VERSION,
        ),
        database=SQLAlchemyDatabaseAdapter(AsyncSessionLocal),
        options=build_payment_options(config),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events.

    Creates missing tables, builds the payment facade and syncs the plan catalog.
    """
    if settings.CREATE_TABLES_ON_STARTUP:
        await init_db(async_engine)

    app.state.payment = build_payment_provider(settings)

    if app.state.payment is not None and settings.BILLING_SYNC_ON_STARTUP:
        # A vendor outage must not keep the API from starting
        try:
            report = await app.state.payment.sync()
            logger.info(f"Startup plan sync wrote {report.total_writes} changes")
        except BillingOperationError as e:
            logger.error(f"Startup plan sync failed: {e}")

    yield

    await async_engine.dispose()


# Create FastAPI app with our custom router and disable FastAPI's built-in redirects
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    lifespan=lifespan,
    router=TrailingSlashRouter(),
    redirect_slashes=False,
)

app.include_router(api_router)

# Register middleware directly
app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

# Register exception handlers
app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(NotFoundException)(not_found_exception_handler)
app.exception_handler(InvalidStateError)(invalid_state_exception_handler)
app.exception_handler(ExternalServiceError)(external_service_exception_handler)
app.exception_handler(BillingOperationError)(billing_operation_exception_handler)
