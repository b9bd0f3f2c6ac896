"""API endpoints for billing operations.

This module provides the HTTP interface for billing operations,
delegating all business logic to the payment facade.
"""

import asyncio
from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from tollgate import schemas
from tollgate.api import deps
from tollgate.api.router import TrailingSlashRouter
from tollgate.billing.provider import PaymentProvider
from tollgate.core.exceptions import InvalidStateError, NotFoundException
from tollgate.core.logging import LoggerConfigurator

router = TrailingSlashRouter()

logger = LoggerConfigurator.configure_logger(__name__, dimensions={"component": "billing"})

# Upper bound of plans shown to a customer
PLAN_LIST_LIMIT = 100


def _require_declared_feature(provider: PaymentProvider, feature: str) -> None:
    if feature not in provider.options.subscriptions.plans.feature_slugs():
        raise NotFoundException(f"Unknown feature '{feature}'")


@router.get("/subscription", response_model=schemas.SubscriptionInfo)
async def get_subscription(
    organization_id: str = Depends(deps.get_organization_id),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> schemas.SubscriptionInfo:
    """Get the organization's customer record, subscription and usage.

    Returns:
        The customer with its active subscription and the plans on offer, plus the
        upgrade page when no subscription is live

    Raises:
        NotFoundException: If the organization is not a billing customer
    """
    customer, plans = await asyncio.gather(
        provider.get_customer_by_id(organization_id),
        provider.list_plans(
            schemas.QueryParams(where={"archived": False}, limit=PLAN_LIST_LIMIT)
        ),
    )
    if customer is None:
        raise NotFoundException(f"CUSTOMER_NOT_FOUND: {organization_id}")

    upgrade_url = (
        provider.options.paths.end_subscription_url if customer.subscription is None else None
    )
    return schemas.SubscriptionInfo(customer=customer, plans=plans, upgrade_url=upgrade_url)


@router.get("/plans", response_model=list[schemas.Plan])
async def list_plans(
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> list[schemas.Plan]:
    """List the plans that are not archived, with their prices."""
    return await provider.list_plans(
        schemas.QueryParams(where={"archived": False}, limit=PLAN_LIST_LIMIT)
    )


@router.post("/checkout-session", response_model=schemas.CheckoutSessionResponse)
async def create_checkout_session(
    request: schemas.CheckoutSessionRequest,
    organization_id: str = Depends(deps.get_organization_id),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> schemas.CheckoutSessionResponse:
    """Create a checkout session for a plan.

    Args:
        request: Checkout session request with plan, cycle and optional URLs
        organization_id: The calling organization
        provider: The payment facade

    Returns:
        Checkout session URL to redirect the user to
    """
    checkout_url = await provider.create_checkout_session(
        schemas.CheckoutSessionParams(
            customer_id=organization_id,
            plan=request.plan,
            cycle=request.cycle,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
    )
    return schemas.CheckoutSessionResponse(checkout_url=checkout_url)


@router.post("/portal-session", response_model=schemas.CustomerPortalResponse)
async def create_portal_session(
    request: schemas.CustomerPortalRequest,
    organization_id: str = Depends(deps.get_organization_id),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> schemas.CustomerPortalResponse:
    """Create a billing portal session.

    The portal lets users update payment methods, download invoices and
    cancel their subscription.
    """
    portal_url = await provider.create_billing_portal(organization_id, request.return_url)
    return schemas.CustomerPortalResponse(portal_url=portal_url)


@router.post("/cancel", response_model=Optional[schemas.Subscription])
async def cancel_subscription(
    request: schemas.CancelSubscriptionParams,
    organization_id: str = Depends(deps.get_organization_id),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> Optional[schemas.Subscription]:
    """Cancel the organization's active subscription, now or at ``cancel_at``.

    Raises:
        InvalidStateError: If the organization has no active subscription
    """
    customer = await provider.get_customer_by_id(organization_id)
    if customer is None:
        raise NotFoundException(f"CUSTOMER_NOT_FOUND: {organization_id}")
    if customer.subscription is None:
        raise InvalidStateError(f"Customer {organization_id} has no active subscription")

    return await provider.cancel_subscription(str(customer.subscription.id), request)


@router.get("/quota/{feature}", response_model=schemas.QuotaInfo)
async def get_quota(
    feature: str,
    organization_id: str = Depends(deps.get_organization_id),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> schemas.QuotaInfo:
    """Get limit, usage and remaining quota of a feature."""
    _require_declared_feature(provider, feature)
    return await provider.get_quota_info(organization_id, feature)


@router.get("/features/{feature}", response_model=schemas.FeatureAccess)
async def get_feature_access(
    feature: str,
    organization_id: str = Depends(deps.get_organization_id),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> schemas.FeatureAccess:
    """Check whether the organization's plan enables a feature."""
    _require_declared_feature(provider, feature)
    enabled = await provider.can_use_feature(organization_id, feature)
    return schemas.FeatureAccess(feature=feature, enabled=enabled)


@router.post("/sync", response_model=schemas.SyncReport, include_in_schema=False)
async def sync_plans(
    _: None = Depends(deps.require_sync_token),
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> schemas.SyncReport:
    """Push the declared plan catalog to the payment vendor and the database."""
    return await provider.sync()


@router.post("/webhook", include_in_schema=False)
async def payment_webhook(
    request: Request,
    provider: PaymentProvider = Depends(deps.get_payment_provider),
) -> JSONResponse:
    """Handle payment vendor webhook events.

    Security:
    - The signature is verified against the raw body by the vendor adapter
    - Already processed event ids are acknowledged without side effects

    Deliveries that cannot be verified are acknowledged with 200 so the vendor stops
    retrying them; failures while applying a verified event propagate as an error
    response and the vendor retries.
    """
    payload = await request.body()
    result = await provider.handle(payload, dict(request.headers))
    logger.with_context(request_id=getattr(request.state, "request_id", None)).info(
        f"Webhook handled: {result.body.get('status')}"
    )
    return JSONResponse(status_code=result.status_code, content=result.body)
