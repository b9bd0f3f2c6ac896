"""Unit tests for the billing API endpoints.

The app runs over httpx's ASGI transport with the payment facade wired to the
in-memory adapters.
"""

from typing import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest

from tollgate import schemas
from tollgate.core.config import settings
from tollgate.main import app
from tollgate.schemas.billing_events import SubscriptionUpdatedEvent, WebhookErrorEvent

HEADERS = {"X-Organization-ID": "org_1"}


@pytest.fixture
async def client(synced_provider) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for the app with the payment facade installed."""
    app.state.payment = synced_provider
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.state.payment = None


@pytest.fixture
async def customer(synced_provider) -> schemas.Customer:
    """The calling organization as a customer on the free plan."""
    return await synced_provider.create_customer(
        schemas.CustomerDTO(reference_id="org_1", name="Acme Inc", email="billing@acme.test")
    )


@pytest.mark.unit
class TestBillingAvailability:
    """Tests for requests that never reach the facade."""

    async def test_billing_disabled(self):
        """Billing routes answer 503 when no facade was built."""
        # Arrange
        app.state.payment = None
        transport = httpx.ASGITransport(app=app)

        # Act
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/billing/plans")

        # Assert
        assert response.status_code == 503

    async def test_organization_header_is_required(self, client):
        """Organization-scoped routes need the organization header."""
        response = await client.get("/billing/subscription")

        assert response.status_code == 422
        assert "errors" in response.json()


@pytest.mark.unit
class TestSubscriptionEndpoints:
    """Tests for subscription and plan routes."""

    async def test_get_subscription(self, client, customer):
        """The customer comes back with its subscription, usage and the plans on offer."""
        # Act
        response = await client.get("/billing/subscription", headers=HEADERS)

        # Assert
        assert response.status_code == 200
        body = response.json()
        assert body["customer"]["provider_id"] == customer.provider_id
        assert body["customer"]["subscription"]["plan"]["slug"] == "free"
        assert body["customer"]["subscription"]["status"] == "trialing"
        assert [plan["slug"] for plan in body["plans"]] == ["free", "pro", "enterprise"]

    async def test_get_subscription_for_unknown_organization(self, client):
        """Organizations that are not customers are not found."""
        response = await client.get("/billing/subscription", headers=HEADERS)

        assert response.status_code == 404
        assert "CUSTOMER_NOT_FOUND" in response.json()["detail"]

    async def test_list_plans_with_trailing_slash(self, client):
        """Routes answer with and without a trailing slash."""
        # Act
        plain = await client.get("/billing/plans")
        slashed = await client.get("/billing/plans/")

        # Assert
        assert plain.status_code == slashed.status_code == 200
        assert plain.json() == slashed.json()
        assert {price["slug"] for price in plain.json()[1]["prices"]} == {
            "pro-monthly",
            "pro-yearly",
        }

    async def test_cancel_now_then_again(self, client, customer):
        """A second cancellation finds no active subscription."""
        # Act
        first = await client.post("/billing/cancel", json={}, headers=HEADERS)
        second = await client.post("/billing/cancel", json={}, headers=HEADERS)

        # Assert
        assert first.status_code == 200
        assert first.json()["status"] == "canceled"
        assert second.status_code == 400
        assert "no active subscription" in second.json()["detail"]

    async def test_ended_subscription_points_to_upgrade_page(self, client, customer):
        """Without a live subscription the response links the upgrade page."""
        # Arrange
        before = await client.get("/billing/subscription", headers=HEADERS)
        await client.post("/billing/cancel", json={}, headers=HEADERS)

        # Act
        after = await client.get("/billing/subscription", headers=HEADERS)

        # Assert
        assert before.json()["upgrade_url"] is None
        assert after.status_code == 200
        assert after.json()["customer"]["subscription"] is None
        assert after.json()["upgrade_url"] == "https://app.test/upgrade"

    async def test_scheduled_cancel(self, client, customer):
        """A cancellation date is recorded without ending the subscription."""
        # Act
        response = await client.post(
            "/billing/cancel", json={"cancel_at": "2030-01-01T00:00:00Z"}, headers=HEADERS
        )

        # Assert
        assert response.status_code == 200
        assert response.json()["status"] == "trialing"
        assert response.json()["metadata"]["cancel_at"].startswith("2030-01-01T00:00:00")


@pytest.mark.unit
class TestSessionEndpoints:
    """Tests for checkout and portal routes."""

    async def test_checkout_session(self, client, customer, database):
        """Subscribed customers get a link confirming the plan change."""
        # Arrange
        pro_yearly = next(p for p in database.prices.values() if p.slug == "pro-yearly")

        # Act
        response = await client.post(
            "/billing/checkout-session", json={"plan": "pro", "cycle": "year"}, headers=HEADERS
        )

        # Assert
        assert response.status_code == 200
        assert response.json() == {
            "checkout_url": (
                f"https://vendor.test/confirm/{customer.subscription.provider_id}/"
                f"{pro_yearly.provider_id}"
            )
        }

    async def test_checkout_session_unknown_plan(self, client, customer):
        """Unknown plans are reported as not found."""
        response = await client.post(
            "/billing/checkout-session", json={"plan": "platinum"}, headers=HEADERS
        )

        assert response.status_code == 404
        assert response.json()["detail"].startswith("Failed to create checkout session:")

    async def test_checkout_session_invalid_cycle(self, client, customer):
        """Request bodies are validated."""
        response = await client.post(
            "/billing/checkout-session", json={"plan": "pro", "cycle": "fortnight"}, headers=HEADERS
        )

        assert response.status_code == 422

    async def test_portal_session(self, client, customer):
        """The portal returns to the given URL."""
        # Act
        response = await client.post(
            "/billing/portal-session",
            json={"return_url": "https://app.test/settings"},
            headers=HEADERS,
        )

        # Assert
        assert response.status_code == 200
        assert response.json()["portal_url"] == (
            f"https://vendor.test/portal/{customer.provider_id}?return=https://app.test/settings"
        )

    async def test_vendor_failure_is_a_server_error(self, client, customer, vendor):
        """Unexpected vendor failures surface as 500 with the operation name."""
        # Arrange
        vendor.create_billing_portal = AsyncMock(side_effect=RuntimeError("vendor down"))

        # Act
        response = await client.post("/billing/portal-session", json={}, headers=HEADERS)

        # Assert
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to create billing portal: vendor down"


@pytest.mark.unit
class TestQuotaEndpoints:
    """Tests for quota and feature routes."""

    async def test_quota(self, client, customer, database):
        """Quota reports limit, usage and what remains."""
        # Arrange
        database.set_usage(customer, "leads", 2)

        # Act
        response = await client.get("/billing/quota/leads", headers=HEADERS)

        # Assert
        assert response.status_code == 200
        assert response.json() == {
            "feature": "leads",
            "enabled": True,
            "limit": 3,
            "usage": 2,
            "remaining": 1,
            "unlimited": False,
        }

    async def test_undeclared_feature(self, client, customer):
        """Features no plan declares are not found."""
        quota = await client.get("/billing/quota/teleport", headers=HEADERS)
        feature = await client.get("/billing/features/teleport", headers=HEADERS)

        assert quota.status_code == feature.status_code == 404

    async def test_feature_access(self, client, customer):
        """Feature access follows the plan's enabled flag."""
        # Act
        leads = await client.get("/billing/features/leads", headers=HEADERS)
        chat = await client.get("/billing/features/chat-support", headers=HEADERS)

        # Assert
        assert leads.json() == {"feature": "leads", "enabled": True}
        assert chat.json() == {"feature": "chat-support", "enabled": False}

    async def test_feature_access_without_customer(self, client):
        """Feature checks never fail, unknown organizations simply have no access."""
        response = await client.get("/billing/features/leads", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["enabled"] is False


@pytest.mark.unit
class TestSyncAndWebhookEndpoints:
    """Tests for the catalog sync and webhook routes."""

    async def test_sync(self, client, monkeypatch):
        """Syncing an unchanged catalog reports no writes."""
        monkeypatch.setattr(settings, "BILLING_SYNC_TOKEN", "sync-secret")

        response = await client.post("/billing/sync", headers={"X-Sync-Token": "sync-secret"})

        assert response.status_code == 200
        assert response.json() == {
            "plans_created": 0,
            "plans_updated": 0,
            "prices_created": 0,
            "prices_updated": 0,
        }

    async def test_sync_disabled_without_token_setting(self, client, vendor, monkeypatch):
        """The sync route refuses every caller when no token is configured."""
        monkeypatch.setattr(settings, "BILLING_SYNC_TOKEN", None)

        response = await client.post("/billing/sync", headers={"X-Sync-Token": "anything"})

        assert response.status_code == 403
        assert vendor.writes == 0

    @pytest.mark.parametrize("headers", [{}, {"X-Sync-Token": "wrong"}])
    async def test_sync_rejects_wrong_token(self, client, vendor, monkeypatch, headers):
        """Callers without the configured token cannot trigger vendor writes."""
        monkeypatch.setattr(settings, "BILLING_SYNC_TOKEN", "sync-secret")

        response = await client.post("/billing/sync", headers=headers)

        assert response.status_code == 401
        assert vendor.writes == 0

    async def test_webhook_rejected_delivery_is_acknowledged(self, client, vendor):
        """Unverifiable deliveries answer 200 so they are not retried."""
        # Arrange
        vendor.next_event = WebhookErrorEvent(data={"message": "Invalid signature"})

        # Act
        response = await client.post(
            "/billing/webhook", content=b'{"id": "evt_1"}', headers={"stripe-signature": "bad"}
        )

        # Assert
        assert response.status_code == 200
        assert response.json() == {"status": "processed", "message": "Invalid signature"}

    async def test_webhook_passes_raw_body_and_headers(self, client, vendor):
        """The vendor adapter receives the untouched body and the request headers."""
        # Arrange
        vendor.handle = AsyncMock(return_value=None)

        # Act
        response = await client.post(
            "/billing/webhook", content=b'{"id": "evt_1"}', headers={"stripe-signature": "t=1"}
        )

        # Assert
        assert response.status_code == 200
        payload, headers = vendor.handle.await_args.args
        assert payload == b'{"id": "evt_1"}'
        assert headers["stripe-signature"] == "t=1"

    async def test_webhook_processing_failure_is_retried(self, client, customer, vendor, database):
        """Failures while applying an event answer with an error status."""
        # Arrange
        database.update_subscription = AsyncMock(side_effect=RuntimeError("db down"))
        vendor.next_event = SubscriptionUpdatedEvent(
            event_id="evt_2",
            data={
                "provider_id": customer.subscription.provider_id,
                "customer_provider_id": customer.provider_id,
                "status": "active",
            },
        )

        # Act
        response = await client.post("/billing/webhook", content=b"{}")

        # Assert
        assert response.status_code == 500
        assert "evt_2" not in database.processed_events
