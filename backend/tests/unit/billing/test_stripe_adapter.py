"""Unit tests for the Stripe vendor adapter.

Stripe SDK calls are patched with AsyncMock; webhook signatures are computed for
real so verification runs through the SDK.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
import stripe

from tollgate import schemas
from tollgate.billing.adapters.stripe_adapter import StripeVendorAdapter
from tollgate.core.exceptions import ExternalServiceError, InvalidStateError
from tollgate.schemas.billing_events import (
    CustomerUpdatedEvent,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    PriceCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionUpdatedEvent,
    WebhookErrorEvent,
)

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def adapter() -> StripeVendorAdapter:
    """Stripe adapter with test keys."""
    return StripeVendorAdapter(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)


def _signed(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict]:
    body = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return body.encode("utf-8"), {"Stripe-Signature": f"t={timestamp},v1={signature}"}


def _event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.mark.unit
class TestStripeCustomers:
    """Tests for customer calls."""

    async def test_create_customer_tags_reference_id(self, adapter):
        """Customers carry their organization id in metadata."""
        # Arrange
        create = AsyncMock(return_value=SimpleNamespace(id="cus_123"))

        # Act
        with patch.object(stripe.Customer, "create_async", create):
            customer = await adapter.create_customer(
                schemas.CustomerDTO(
                    reference_id="org_1",
                    name="Café Zoë",
                    email="billing@acme.test",
                    metadata={"tier": {"level": 2}, "skip": None},
                )
            )

        # Assert
        assert customer.provider_id == "cus_123"
        assert customer.organization_id == "org_1"
        kwargs = create.await_args.kwargs
        assert kwargs["name"] == "Caf? Zo?"
        assert kwargs["metadata"] == {"tier": '{"level":2}', "referenceId": "org_1"}

    async def test_stripe_errors_become_external_service_errors(self, adapter):
        """SDK errors are reported as external service failures."""
        # Arrange
        create = AsyncMock(side_effect=stripe.StripeError("card declined"))

        # Act
        with patch.object(stripe.Customer, "create_async", create):
            with pytest.raises(ExternalServiceError) as exc_info:
                await adapter.create_customer(
                    schemas.CustomerDTO(reference_id="org_1", name="Acme", email="a@acme.test")
                )

        # Assert
        assert exc_info.value.service_name == "Stripe"
        assert "Failed to create customer" in str(exc_info.value)

    async def test_update_customer_only_sends_given_fields(self, adapter):
        """Unset fields are not sent to Stripe."""
        # Arrange
        modify = AsyncMock(
            return_value={
                "id": "cus_123",
                "name": "Acme Corp",
                "email": "billing@acme.test",
                "metadata": {"referenceId": "org_1"},
                "created": 1735689600,
            }
        )

        # Act
        with patch.object(stripe.Customer, "modify_async", modify):
            customer = await adapter.update_customer(
                "cus_123", schemas.CustomerUpdate(name="Acme Corp")
            )

        # Assert
        modify.assert_awaited_once_with("cus_123", name="Acme Corp")
        assert customer.organization_id == "org_1"
        assert customer.metadata == {}
        assert customer.created_at == datetime(2025, 1, 1)


@pytest.mark.unit
class TestStripeCatalog:
    """Tests for product and price calls."""

    async def test_create_plan_reuses_product_with_same_slug(self, adapter):
        """An existing product carrying the slug is reactivated instead of duplicated."""
        # Arrange
        search = AsyncMock(return_value={"data": [{"id": "prod_existing"}]})
        modify = AsyncMock()
        create = AsyncMock()
        plan = schemas.DeclaredPlan(slug="pro", name="Pro", description="Growing teams")

        # Act
        with patch.object(stripe.Product, "search_async", search), patch.object(
            stripe.Product, "modify_async", modify
        ), patch.object(stripe.Product, "create_async", create):
            provider_id = await adapter.create_plan(plan)

        # Assert
        assert provider_id == "prod_existing"
        assert search.await_args.kwargs["query"] == "metadata['slug']:'pro'"
        modify.assert_awaited_once_with(
            "prod_existing",
            active=True,
            name="Pro",
            metadata={"slug": "pro"},
            description="Growing teams",
        )
        create.assert_not_awaited()

    async def test_create_plan_creates_product(self, adapter):
        """A new product is created when no product carries the slug."""
        # Arrange
        search = AsyncMock(return_value={"data": []})
        create = AsyncMock(return_value=SimpleNamespace(id="prod_new"))

        # Act
        with patch.object(stripe.Product, "search_async", search), patch.object(
            stripe.Product, "create_async", create
        ):
            provider_id = await adapter.create_plan(schemas.DeclaredPlan(slug="free", name="Free"))

        # Assert
        assert provider_id == "prod_new"
        create.assert_awaited_once_with(name="Free", metadata={"slug": "free"})

    async def test_create_price_is_recurring(self, adapter):
        """Prices are recurring prices on the plan's product."""
        # Arrange
        create = AsyncMock(return_value=SimpleNamespace(id="price_new"))
        price_in = schemas.PriceDTO(
            plan_provider_id="prod_1",
            slug="pro-yearly",
            amount=99000,
            currency="USD",
            interval="year",
        )

        # Act
        with patch.object(stripe.Price, "create_async", create):
            provider_id = await adapter.create_price(price_in)

        # Assert
        assert provider_id == "price_new"
        kwargs = create.await_args.kwargs
        assert kwargs["product"] == "prod_1"
        assert kwargs["currency"] == "usd"
        assert kwargs["recurring"] == {"interval": "year", "interval_count": 1}
        assert kwargs["metadata"] == {"slug": "pro-yearly"}

    async def test_create_price_needs_product(self, adapter):
        """Prices cannot be created before their plan exists on Stripe."""
        with pytest.raises(InvalidStateError):
            await adapter.create_price(
                schemas.PriceDTO(slug="pro-monthly", amount=9900, currency="usd", interval="month")
            )

    async def test_find_plan_by_slug_lists_prices(self, adapter):
        """A product found by slug comes back with its prices."""
        # Arrange
        search = AsyncMock(
            return_value={"data": [{"id": "prod_1", "name": "Pro", "active": True}]}
        )
        list_prices = AsyncMock(
            return_value={
                "data": [
                    {
                        "id": "price_1",
                        "product": "prod_1",
                        "unit_amount": 9900,
                        "currency": "usd",
                        "recurring": {"interval": "month", "interval_count": 1},
                        "metadata": {"slug": "pro-monthly"},
                        "active": True,
                        "created": 1735689600,
                    }
                ]
            }
        )

        # Act
        with patch.object(stripe.Product, "search_async", search), patch.object(
            stripe.Price, "list_async", list_prices
        ):
            plan = await adapter.find_plan_by_slug("pro")

        # Assert
        assert plan.provider_id == "prod_1"
        [price] = plan.prices
        assert price.slug == "pro-monthly"
        assert price.signature == (9900, "usd", "month", 1)
        list_prices.assert_awaited_once_with(product="prod_1", limit=100)


@pytest.mark.unit
class TestStripeSubscriptions:
    """Tests for subscription and session calls."""

    async def test_create_subscription_with_trial(self, adapter):
        """Trial days and the cycle anchor are passed to Stripe."""
        # Arrange
        create = AsyncMock(return_value=SimpleNamespace(id="sub_1"))
        subscription_in = schemas.SubscriptionDTO(
            customer_id=uuid4(),
            customer_provider_id="cus_1",
            price_id=uuid4(),
            price_provider_id="price_1",
            trial_days=14,
            billing_cycle_anchor=datetime(2025, 1, 1),
        )

        # Act
        with patch.object(stripe.Subscription, "create_async", create):
            provider_id = await adapter.create_subscription(subscription_in)

        # Assert
        assert provider_id == "sub_1"
        create.assert_awaited_once_with(
            customer="cus_1",
            items=[{"price": "price_1", "quantity": 1}],
            metadata={},
            trial_period_days=14,
            billing_cycle_anchor=1735689600,
        )

    async def test_update_subscription_swaps_first_item(self, adapter):
        """A price change replaces the price of the first subscription item."""
        # Arrange
        retrieve = AsyncMock(return_value={"items": {"data": [{"id": "si_1"}]}})
        modify = AsyncMock()

        # Act
        with patch.object(stripe.Subscription, "retrieve_async", retrieve), patch.object(
            stripe.Subscription, "modify_async", modify
        ):
            await adapter.update_subscription(
                "sub_1", schemas.SubscriptionUpdate(price_provider_id="price_2")
            )

        # Assert
        modify.assert_awaited_once_with("sub_1", items=[{"id": "si_1", "price": "price_2"}])

    async def test_immediate_and_scheduled_cancel(self, adapter):
        """Cancelling now deletes the subscription, a date schedules it."""
        # Arrange
        cancel = AsyncMock()
        modify = AsyncMock()
        cancel_at = datetime(2030, 1, 1, tzinfo=timezone.utc)

        # Act
        with patch.object(stripe.Subscription, "cancel_async", cancel), patch.object(
            stripe.Subscription, "modify_async", modify
        ):
            await adapter.cancel_subscription("sub_1")
            await adapter.cancel_subscription(
                "sub_2", schemas.CancelSubscriptionParams(cancel_at=cancel_at)
            )

        # Assert
        cancel.assert_awaited_once_with("sub_1", invoice_now=False, prorate=False)
        modify.assert_awaited_once_with(
            "sub_2", cancel_at=int(cancel_at.timestamp()), proration_behavior="none"
        )

    async def test_checkout_without_subscription(self, adapter):
        """Customers without a subscription get a Stripe checkout page."""
        # Arrange
        create = AsyncMock(return_value=SimpleNamespace(url="https://checkout.stripe.test/c"))

        # Act
        with patch.object(stripe.checkout.Session, "create_async", create):
            url = await adapter.create_checkout_session(
                "cus_1", "price_1", "https://app.test/ok", "https://app.test/cancel"
            )

        # Assert
        assert url == "https://checkout.stripe.test/c"
        kwargs = create.await_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_1", "quantity": 1}]

    async def test_checkout_with_subscription_confirms_update(self, adapter):
        """Subscribed customers confirm the change in the billing portal."""
        # Arrange
        retrieve = AsyncMock(return_value={"items": {"data": [{"id": "si_1"}]}})
        create = AsyncMock(return_value=SimpleNamespace(url="https://portal.stripe.test/p"))

        # Act
        with patch.object(stripe.Subscription, "retrieve_async", retrieve), patch.object(
            stripe.billing_portal.Session, "create_async", create
        ):
            url = await adapter.create_checkout_session(
                "cus_1",
                "price_2",
                "https://app.test/ok",
                "https://app.test/cancel",
                subscription_provider_id="sub_1",
            )

        # Assert
        assert url == "https://portal.stripe.test/p"
        flow = create.await_args.kwargs["flow_data"]
        assert flow["type"] == "subscription_update_confirm"
        assert flow["subscription_update_confirm"]["items"] == [
            {"id": "si_1", "price": "price_2", "quantity": 1}
        ]


@pytest.mark.unit
class TestStripeWebhooks:
    """Tests for webhook verification and normalization."""

    async def test_missing_signature(self, adapter):
        """Deliveries without a signature header are rejected."""
        event = await adapter.handle(b"{}", {})

        assert isinstance(event, WebhookErrorEvent)
        assert event.data.message == "Missing Stripe-Signature"

    async def test_invalid_signature(self, adapter):
        """Deliveries signed with another secret are rejected."""
        # Arrange
        payload, headers = _signed(_event("customer.updated", {"id": "cus_1"}), secret="whsec_x")

        # Act
        event = await adapter.handle(payload, headers)

        # Assert
        assert isinstance(event, WebhookErrorEvent)
        assert event.data.message.startswith("Invalid signature")

    async def test_unmodeled_event_type(self, adapter):
        """Event types without a normalized variant return None."""
        payload, headers = _signed(_event("charge.refunded", {"id": "ch_1"}))

        assert await adapter.handle(payload, headers) is None

    async def test_customer_updated(self, adapter):
        """Customer events carry the reference id separately from metadata."""
        # Arrange
        payload, headers = _signed(
            _event(
                "customer.updated",
                {
                    "id": "cus_1",
                    "name": "Acme Corp",
                    "email": "billing@acme.test",
                    "metadata": {"referenceId": "org_1", "vat": "DE123"},
                },
            )
        )

        # Act
        event = await adapter.handle(payload, headers)

        # Assert
        assert isinstance(event, CustomerUpdatedEvent)
        assert event.event_id == "evt_1"
        assert event.data.organization_id == "org_1"
        assert event.data.metadata == {"vat": "DE123"}

    async def test_subscription_updated(self, adapter):
        """Subscription events read price and quantity from the first item."""
        # Arrange
        payload, headers = _signed(
            _event(
                "customer.subscription.updated",
                {
                    "id": "sub_1",
                    "customer": "cus_1",
                    "status": "trialing",
                    "trial_start": 1735689600,
                    "trial_end": 1735689600 + 14 * 86400,
                    "items": {"data": [{"id": "si_1", "price": {"id": "price_1"}, "quantity": 2}]},
                },
            )
        )

        # Act
        event = await adapter.handle(payload, headers)

        # Assert
        assert isinstance(event, SubscriptionUpdatedEvent)
        assert event.data.price_provider_id == "price_1"
        assert event.data.quantity == 2
        assert event.data.trial_days == 14
        assert event.data.status == schemas.SubscriptionStatus.TRIALING

    async def test_subscription_deleted(self, adapter):
        """Deleted subscriptions are reported as canceled."""
        payload, headers = _signed(
            _event("customer.subscription.deleted", {"id": "sub_1", "customer": "cus_1"})
        )

        event = await adapter.handle(payload, headers)

        assert isinstance(event, SubscriptionDeletedEvent)
        assert event.data.status == schemas.SubscriptionStatus.CANCELED

    async def test_price_created(self, adapter):
        """Price events carry the reconciliation fields."""
        # Arrange
        payload, headers = _signed(
            _event(
                "price.created",
                {
                    "id": "price_1",
                    "product": "prod_1",
                    "unit_amount": 2000,
                    "currency": "usd",
                    "recurring": {"interval": "month", "interval_count": 1},
                    "metadata": {"slug": "plus-monthly"},
                },
            )
        )

        # Act
        event = await adapter.handle(payload, headers)

        # Assert
        assert isinstance(event, PriceCreatedEvent)
        assert event.data.plan_provider_id == "prod_1"
        assert event.data.interval == schemas.CyclePeriod.MONTH

    async def test_invoice_events(self, adapter):
        """Invoices report the amount paid or due and the nested subscription id."""
        # Arrange
        succeeded_payload, succeeded_headers = _signed(
            _event(
                "invoice.payment_succeeded",
                {
                    "id": "in_1",
                    "customer": "cus_1",
                    "amount_paid": 9900,
                    "amount_due": 9900,
                    "currency": "usd",
                    "status": "paid",
                    "parent": {"subscription_details": {"subscription": "sub_1"}},
                },
            )
        )
        failed_payload, failed_headers = _signed(
            _event(
                "invoice.payment_failed",
                {
                    "id": "in_2",
                    "customer": "cus_1",
                    "subscription": "sub_1",
                    "amount_paid": 0,
                    "amount_due": 9900,
                    "currency": "usd",
                    "status": "open",
                },
                event_id="evt_2",
            )
        )

        # Act
        succeeded = await adapter.handle(succeeded_payload, succeeded_headers)
        failed = await adapter.handle(failed_payload, failed_headers)

        # Assert
        assert isinstance(succeeded, InvoicePaymentSucceededEvent)
        assert succeeded.data.subscription_provider_id == "sub_1"
        assert (succeeded.data.amount, succeeded.data.paid) == (9900, True)

        assert isinstance(failed, InvoicePaymentFailedEvent)
        assert (failed.data.amount, failed.data.paid) == (9900, False)

    async def test_malformed_object(self, adapter):
        """Objects missing required fields become error events with the event id."""
        # Arrange
        payload, headers = _signed(
            _event("customer.subscription.updated", {"id": "sub_1"}, event_id="evt_bad")
        )

        # Act
        event = await adapter.handle(payload, headers)

        # Assert
        assert isinstance(event, WebhookErrorEvent)
        assert event.event_id == "evt_bad"
        assert event.data.message.startswith("Malformed customer.subscription.updated")
