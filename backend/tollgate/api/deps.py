"""Dependencies that are used in the API endpoints."""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request

from tollgate.billing.provider import PaymentProvider
from tollgate.core.config import settings


def get_payment_provider(request: Request) -> PaymentProvider:
    """Return the payment facade built at startup.

    Raises:
    ------
        HTTPException: 503 if billing was not configured for this instance.

    """
    provider = getattr(request.app.state, "payment", None)
    if provider is None:
        raise HTTPException(status_code=503, detail="Billing is not enabled for this instance")
    return provider


async def get_organization_id(
    x_organization_id: str = Header(..., alias="X-Organization-ID"),
) -> str:
    """Return the organization the request acts for.

    Authentication sits in front of this service and forwards the organization id.
    """
    organization_id = x_organization_id.strip()
    if not organization_id:
        raise HTTPException(status_code=400, detail="X-Organization-ID header is empty")
    return organization_id


async def require_sync_token(
    x_sync_token: Optional[str] = Header(None, alias="X-Sync-Token"),
) -> None:
    """Guard operator routes with the ``BILLING_SYNC_TOKEN`` setting.

    Raises:
    ------
        HTTPException: 403 if no token is configured, 401 if the header does not match.

    """
    expected = settings.BILLING_SYNC_TOKEN
    if not expected:
        raise HTTPException(status_code=403, detail="Catalog sync over HTTP is disabled")
    if not x_sync_token or not secrets.compare_digest(x_sync_token, expected):
        raise HTTPException(status_code=401, detail="Invalid sync token")
