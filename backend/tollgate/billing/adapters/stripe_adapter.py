"""Stripe implementation of the payment vendor adapter.

Plans are Stripe products and prices are recurring Stripe prices. Products and prices
carry their slug in metadata, customers carry their organization id as ``referenceId``.
"""

import json
from typing import Any, Callable, Dict, Mapping, Optional

import stripe
from pydantic import ValidationError

from tollgate import schemas
from tollgate.billing.adapters.vendor import PaymentVendorAdapter
from tollgate.core.datetime_utils import from_timestamp, to_timestamp
from tollgate.core.exceptions import ExternalServiceError, InvalidStateError
from tollgate.core.logging import LoggerConfigurator
from tollgate.schemas.billing_events import (
    CustomerCreatedEvent,
    CustomerDeletedData,
    CustomerDeletedEvent,
    CustomerEventData,
    CustomerUpdatedEvent,
    InvoiceEventData,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    PlanCreatedEvent,
    PlanDeletedEvent,
    PlanEventData,
    PlanUpdatedEvent,
    PriceCreatedEvent,
    PriceDeletedEvent,
    PriceEventData,
    PriceUpdatedEvent,
    SubscriptionCreatedEvent,
    SubscriptionDeletedData,
    SubscriptionDeletedEvent,
    SubscriptionEventData,
    SubscriptionTrialWillEndData,
    SubscriptionTrialWillEndEvent,
    SubscriptionUpdatedEvent,
    WebhookErrorData,
    WebhookErrorEvent,
)

logger = LoggerConfigurator.configure_logger(__name__, dimensions={"component": "billing"})

REFERENCE_ID_KEY = "referenceId"
SLUG_KEY = "slug"
SIGNATURE_HEADER = "stripe-signature"


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain webhook dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _id_of(value: Any) -> Optional[str]:
    """Return the id of an expandable field, which is either an id or an object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def _items_of(subscription: Any) -> list:
    # "items" collides with dict.items, so it is read by key
    try:
        items = subscription["items"]
    except (KeyError, TypeError):
        return []
    return _field(items, "data") or []


def _trial_days(trial_start: Optional[int], trial_end: Optional[int]) -> Optional[int]:
    if not trial_start or not trial_end:
        return None
    return int((trial_end - trial_start) // 86400)


def _stripe_error(action: str, e: Exception) -> ExternalServiceError:
    return ExternalServiceError(service_name="Stripe", message=f"Failed to {action}: {str(e)}")


class StripeVendorAdapter(PaymentVendorAdapter):
    """Payment vendor adapter over the Stripe SDK."""

    def __init__(
        self, secret_key: str, webhook_secret: str, api_version: Optional[str] = None
    ) -> None:
        """Initialize the Stripe adapter.

        Args:
        ----
            secret_key (str): Stripe secret API key.
            webhook_secret (str): Signing secret of the webhook endpoint.
            api_version (str, optional): Pinned Stripe API version.

        """
        stripe.api_key = secret_key
        if api_version:
            stripe.api_version = api_version
        self.webhook_secret = webhook_secret

        self._parsers: Dict[str, Callable[[Optional[str], Any], schemas.NormalizedEvent]] = {
            "customer.created": self._customer_parser(CustomerCreatedEvent),
            "customer.updated": self._customer_parser(CustomerUpdatedEvent),
            "customer.deleted": self._parse_customer_deleted,
            "product.created": self._plan_parser(PlanCreatedEvent),
            "product.updated": self._plan_parser(PlanUpdatedEvent),
            "product.deleted": self._plan_parser(PlanDeletedEvent),
            "price.created": self._price_parser(PriceCreatedEvent),
            "price.updated": self._price_parser(PriceUpdatedEvent),
            "price.deleted": self._price_parser(PriceDeletedEvent),
            "customer.subscription.created": self._subscription_parser(SubscriptionCreatedEvent),
            "customer.subscription.updated": self._subscription_parser(SubscriptionUpdatedEvent),
            "customer.subscription.deleted": self._parse_subscription_deleted,
            "customer.subscription.trial_will_end": self._parse_trial_will_end,
            "invoice.payment_succeeded": self._invoice_parser(InvoicePaymentSucceededEvent),
            "invoice.payment_failed": self._invoice_parser(InvoicePaymentFailedEvent),
        }

    def _sanitize_text(self, text: Optional[str]) -> Optional[str]:
        """Sanitize text for Stripe API (ASCII-only)."""
        if not text:
            return text
        return text.encode("ascii", "replace").decode("ascii")

    def _clean_metadata(self, metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
        """Clean metadata values for Stripe, which only stores flat strings."""
        if not metadata:
            return {}

        cleaned = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, (dict, list)):
                value = json.dumps(value, separators=(",", ":"))
            cleaned[self._sanitize_text(str(key))] = self._sanitize_text(str(value))
        return cleaned

    # ------------------------------------------------------------------
    # Translation from Stripe objects
    # ------------------------------------------------------------------

    def _to_customer(self, obj: Any) -> schemas.Customer:
        metadata = dict(_field(obj, "metadata") or {})
        reference_id = metadata.pop(REFERENCE_ID_KEY, None)
        return schemas.Customer(
            provider_id=_field(obj, "id"),
            organization_id=reference_id or "",
            name=_field(obj, "name") or "",
            email=_field(obj, "email") or "",
            metadata=metadata,
            created_at=from_timestamp(_field(obj, "created")),
        )

    def _to_price(self, obj: Any) -> schemas.Price:
        metadata = dict(_field(obj, "metadata") or {})
        recurring = _field(obj, "recurring")
        return schemas.Price(
            provider_id=_field(obj, "id"),
            plan_provider_id=_id_of(_field(obj, "product")),
            slug=metadata.pop(SLUG_KEY, None) or _field(obj, "id"),
            amount=_field(obj, "unit_amount") or 0,
            currency=_field(obj, "currency") or "usd",
            interval=_field(recurring, "interval", "month"),
            interval_count=_field(recurring, "interval_count", 1),
            metadata=metadata,
            active=bool(_field(obj, "active", True)),
            created_at=from_timestamp(_field(obj, "created")),
        )

    async def _search_product(self, slug: str) -> Optional[Any]:
        query = f"metadata['{SLUG_KEY}']:'{slug}'"
        result = await stripe.Product.search_async(query=query, limit=1)
        data = _field(result, "data") or []
        return data[0] if data else None

    async def _first_item_id(self, subscription_provider_id: str) -> str:
        subscription = await stripe.Subscription.retrieve_async(subscription_provider_id)
        items = _items_of(subscription)
        if not items:
            raise InvalidStateError(f"Subscription {subscription_provider_id} has no items")
        return _field(items[0], "id")

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(self, customer: schemas.CustomerDTO) -> schemas.Customer:
        """Create a Stripe customer tagged with its reference id."""
        try:
            result = await stripe.Customer.create_async(
                email=self._sanitize_text(customer.email),
                name=self._sanitize_text(customer.name),
                metadata={
                    **self._clean_metadata(customer.metadata),
                    REFERENCE_ID_KEY: customer.reference_id,
                },
            )
        except stripe.StripeError as e:
            raise _stripe_error("create customer", e) from e

        return schemas.Customer(
            provider_id=result.id,
            organization_id=customer.reference_id,
            name=customer.name,
            email=customer.email,
            metadata=customer.metadata,
        )

    async def update_customer(
        self, provider_id: str, customer: schemas.CustomerUpdate
    ) -> schemas.Customer:
        """Update a Stripe customer."""
        params: Dict[str, Any] = {}
        if customer.name is not None:
            params["name"] = self._sanitize_text(customer.name)
        if customer.email is not None:
            params["email"] = self._sanitize_text(customer.email)
        if customer.metadata is not None:
            params["metadata"] = self._clean_metadata(customer.metadata)

        try:
            result = await stripe.Customer.modify_async(provider_id, **params)
        except stripe.StripeError as e:
            raise _stripe_error("update customer", e) from e
        return self._to_customer(result)

    async def delete_customer(self, provider_id: str) -> None:
        """Delete a Stripe customer."""
        try:
            await stripe.Customer.delete_async(provider_id)
        except stripe.StripeError as e:
            raise _stripe_error("delete customer", e) from e

    async def find_customer_by_reference_id(
        self, reference_id: str
    ) -> Optional[schemas.Customer]:
        """Find a Stripe customer by its organization id."""
        query = f"metadata['{REFERENCE_ID_KEY}']:'{reference_id}'"
        try:
            result = await stripe.Customer.search_async(query=query, limit=1)
        except stripe.StripeError as e:
            raise _stripe_error("search customer", e) from e

        data = _field(result, "data") or []
        return self._to_customer(data[0]) if data else None

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def create_plan(self, plan: schemas.DeclaredPlan) -> str:
        """Create a product, or reactivate the product that already carries the slug."""
        params: Dict[str, Any] = {
            "name": self._sanitize_text(plan.name),
            "metadata": {SLUG_KEY: plan.slug},
        }
        if plan.description:
            params["description"] = self._sanitize_text(plan.description)

        try:
            existing = await self._search_product(plan.slug)
            if existing is not None:
                logger.info(f"Reusing Stripe product {_field(existing, 'id')} for plan {plan.slug}")
                await stripe.Product.modify_async(_field(existing, "id"), active=True, **params)
                return _field(existing, "id")

            product = await stripe.Product.create_async(**params)
        except stripe.StripeError as e:
            raise _stripe_error("create plan", e) from e
        return product.id

    async def update_plan(self, provider_id: str, plan: schemas.PlanUpdate) -> None:
        """Update a product's name, description or active flag."""
        params: Dict[str, Any] = {}
        if plan.name is not None:
            params["name"] = self._sanitize_text(plan.name)
        if plan.description:
            params["description"] = self._sanitize_text(plan.description)
        if plan.archived is not None:
            params["active"] = not plan.archived
        if not params:
            return

        try:
            await stripe.Product.modify_async(provider_id, **params)
        except stripe.StripeError as e:
            raise _stripe_error("update plan", e) from e

    async def archive_plan(self, provider_id: str) -> None:
        """Deactivate a product."""
        try:
            await stripe.Product.modify_async(provider_id, active=False)
        except stripe.StripeError as e:
            raise _stripe_error("archive plan", e) from e

    async def find_plan_by_slug(self, slug: str) -> Optional[schemas.Plan]:
        """Find a product by slug, with its prices."""
        try:
            product = await self._search_product(slug)
        except stripe.StripeError as e:
            raise _stripe_error("search plan", e) from e
        if product is None:
            return None

        return schemas.Plan(
            provider_id=_field(product, "id"),
            slug=slug,
            name=_field(product, "name") or slug,
            description=_field(product, "description"),
            prices=await self.find_prices_by_plan_id(_field(product, "id")),
            archived=not _field(product, "active", True),
        )

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def create_price(self, price: schemas.PriceDTO) -> str:
        """Create a recurring price on the plan's product."""
        if not price.plan_provider_id:
            raise InvalidStateError(f"Price {price.slug} has no plan provider id")

        try:
            result = await stripe.Price.create_async(
                product=price.plan_provider_id,
                unit_amount=price.amount,
                currency=price.currency.lower(),
                recurring={
                    "interval": price.interval.value,
                    "interval_count": price.interval_count,
                },
                active=price.active,
                metadata={**self._clean_metadata(price.metadata), SLUG_KEY: price.slug},
            )
        except stripe.StripeError as e:
            raise _stripe_error("create price", e) from e
        return result.id

    async def update_price(self, provider_id: str, price: schemas.PriceUpdate) -> None:
        """Update a price's metadata or active flag."""
        params: Dict[str, Any] = {}
        if price.metadata is not None:
            params["metadata"] = self._clean_metadata(price.metadata)
        if price.active is not None:
            params["active"] = price.active
        if not params:
            return

        try:
            await stripe.Price.modify_async(provider_id, **params)
        except stripe.StripeError as e:
            raise _stripe_error("update price", e) from e

    async def archive_price(self, provider_id: str) -> None:
        """Deactivate a price."""
        try:
            await stripe.Price.modify_async(provider_id, active=False)
        except stripe.StripeError as e:
            raise _stripe_error("archive price", e) from e

    async def find_prices_by_plan_id(self, plan_provider_id: str) -> list[schemas.Price]:
        """List the prices of a product."""
        try:
            result = await stripe.Price.list_async(product=plan_provider_id, limit=100)
        except stripe.StripeError as e:
            raise _stripe_error("list prices", e) from e
        return [self._to_price(price) for price in _field(result, "data") or []]

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def create_subscription(self, subscription: schemas.SubscriptionDTO) -> str:
        """Create a subscription on the customer's default payment method."""
        metadata = dict(subscription.metadata)
        method = metadata.pop("method", None)

        params: Dict[str, Any] = {
            "customer": subscription.customer_provider_id,
            "items": [
                {"price": subscription.price_provider_id, "quantity": subscription.quantity}
            ],
            "metadata": self._clean_metadata(metadata),
        }
        if subscription.trial_days:
            params["trial_period_days"] = subscription.trial_days
        if subscription.billing_cycle_anchor:
            params["billing_cycle_anchor"] = to_timestamp(subscription.billing_cycle_anchor)
        if subscription.proration_behavior:
            params["proration_behavior"] = subscription.proration_behavior.value
        if isinstance(method, dict) and method.get("id"):
            params["default_payment_method"] = method["id"]

        try:
            result = await stripe.Subscription.create_async(**params)
        except stripe.StripeError as e:
            raise _stripe_error("create subscription", e) from e
        return result.id

    async def update_subscription(
        self, provider_id: str, subscription: schemas.SubscriptionUpdate
    ) -> None:
        """Swap the price or quantity of the first subscription item, or its metadata."""
        params: Dict[str, Any] = {}
        try:
            if subscription.price_provider_id or subscription.quantity:
                item: Dict[str, Any] = {"id": await self._first_item_id(provider_id)}
                if subscription.price_provider_id:
                    item["price"] = subscription.price_provider_id
                if subscription.quantity:
                    item["quantity"] = subscription.quantity
                params["items"] = [item]
            if subscription.metadata is not None:
                params["metadata"] = self._clean_metadata(subscription.metadata)
            if subscription.proration_behavior:
                params["proration_behavior"] = subscription.proration_behavior.value
            if not params:
                return

            await stripe.Subscription.modify_async(provider_id, **params)
        except stripe.StripeError as e:
            raise _stripe_error("update subscription", e) from e

    async def cancel_subscription(
        self, provider_id: str, params: Optional[schemas.CancelSubscriptionParams] = None
    ) -> None:
        """Cancel now, or schedule the cancellation at ``params.cancel_at``."""
        params = params or schemas.CancelSubscriptionParams()
        try:
            if params.cancel_at:
                await stripe.Subscription.modify_async(
                    provider_id,
                    cancel_at=to_timestamp(params.cancel_at),
                    proration_behavior="create_prorations" if params.prorate else "none",
                )
            else:
                await stripe.Subscription.cancel_async(
                    provider_id, invoice_now=params.invoice_now, prorate=params.prorate
                )
        except stripe.StripeError as e:
            raise _stripe_error("cancel subscription", e) from e

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_billing_portal(self, customer_provider_id: str, return_url: str) -> str:
        """Create a customer portal session."""
        try:
            session = await stripe.billing_portal.Session.create_async(
                customer=customer_provider_id,
                return_url=self._sanitize_text(return_url),
            )
        except stripe.StripeError as e:
            raise _stripe_error("create portal session", e) from e
        return session.url

    async def create_checkout_session(
        self,
        customer_provider_id: str,
        price_provider_id: str,
        success_url: str,
        cancel_url: str,
        subscription_provider_id: Optional[str] = None,
        trial_days: Optional[int] = None,
    ) -> str:
        """Create a checkout page, or a portal deep link confirming a plan change."""
        try:
            if not subscription_provider_id:
                params: Dict[str, Any] = {
                    "customer": customer_provider_id,
                    "success_url": self._sanitize_text(success_url),
                    "cancel_url": self._sanitize_text(cancel_url),
                    "mode": "subscription",
                    "line_items": [{"price": price_provider_id, "quantity": 1}],
                }
                if trial_days:
                    params["subscription_data"] = {"trial_period_days": trial_days}
                session = await stripe.checkout.Session.create_async(**params)
                if not session.url:
                    raise ExternalServiceError("Stripe", "Checkout session has no URL")
                return session.url

            item_id = await self._first_item_id(subscription_provider_id)
            session = await stripe.billing_portal.Session.create_async(
                customer=customer_provider_id,
                return_url=self._sanitize_text(success_url),
                flow_data={
                    "type": "subscription_update_confirm",
                    "after_completion": {
                        "type": "redirect",
                        "redirect": {"return_url": self._sanitize_text(success_url)},
                    },
                    "subscription_update_confirm": {
                        "subscription": subscription_provider_id,
                        "items": [{"id": item_id, "price": price_provider_id, "quantity": 1}],
                    },
                },
            )
            if not session.url:
                raise ExternalServiceError("Stripe", "Billing portal session has no URL")
            return session.url
        except stripe.StripeError as e:
            raise _stripe_error("create checkout session", e) from e

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Optional[schemas.NormalizedEvent]:
        """Verify the Stripe signature and normalize the event."""
        signature = next(
            (value for key, value in headers.items() if key.lower() == SIGNATURE_HEADER), None
        )
        if not signature:
            logger.error("Stripe webhook without signature header")
            return WebhookErrorEvent(data=WebhookErrorData(message="Missing Stripe-Signature"))

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret)
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid Stripe webhook signature: {e}")
            return WebhookErrorEvent(data=WebhookErrorData(message=f"Invalid signature: {e}"))
        except ValueError as e:
            logger.error(f"Invalid Stripe webhook payload: {e}")
            return WebhookErrorEvent(data=WebhookErrorData(message=f"Invalid payload: {e}"))

        if not isinstance(event, dict):
            logger.error("Stripe webhook payload is not an event object")
            return WebhookErrorEvent(data=WebhookErrorData(message="Invalid payload: not an event"))

        event_type = event.get("type")
        event_id = event.get("id")
        log = logger.with_context(event_type=event_type, stripe_event_id=event_id)

        parser = self._parsers.get(event_type)
        if parser is None:
            log.info(f"Unhandled webhook event type: {event_type}")
            return None

        obj = (event.get("data") or {}).get("object") or {}
        try:
            return parser(event_id, obj)
        except (ValidationError, KeyError, TypeError) as e:
            log.error(f"Could not normalize {event_type}: {e}")
            return WebhookErrorEvent(
                event_id=event_id,
                data=WebhookErrorData(message=f"Malformed {event_type} payload: {e}"),
            )

    def _customer_parser(self, variant: type) -> Callable[[Optional[str], Any], Any]:
        def parse(event_id: Optional[str], obj: Dict[str, Any]) -> Any:
            metadata = dict(obj.get("metadata") or {})
            reference_id = metadata.pop(REFERENCE_ID_KEY, None)
            return variant(
                event_id=event_id,
                data=CustomerEventData(
                    provider_id=obj["id"],
                    organization_id=reference_id,
                    name=obj.get("name"),
                    email=obj.get("email"),
                    metadata=metadata,
                ),
            )

        return parse

    def _parse_customer_deleted(
        self, event_id: Optional[str], obj: Dict[str, Any]
    ) -> CustomerDeletedEvent:
        return CustomerDeletedEvent(
            event_id=event_id,
            data=CustomerDeletedData(
                provider_id=obj["id"],
                organization_id=(obj.get("metadata") or {}).get(REFERENCE_ID_KEY),
            ),
        )

    def _plan_parser(self, variant: type) -> Callable[[Optional[str], Any], Any]:
        def parse(event_id: Optional[str], obj: Dict[str, Any]) -> Any:
            return variant(
                event_id=event_id,
                data=PlanEventData(
                    provider_id=obj["id"],
                    slug=(obj.get("metadata") or {}).get(SLUG_KEY),
                    name=obj.get("name"),
                    description=obj.get("description"),
                    active=obj.get("active", True),
                ),
            )

        return parse

    def _price_parser(self, variant: type) -> Callable[[Optional[str], Any], Any]:
        def parse(event_id: Optional[str], obj: Dict[str, Any]) -> Any:
            recurring = obj.get("recurring") or {}
            return variant(
                event_id=event_id,
                data=PriceEventData(
                    provider_id=obj["id"],
                    plan_provider_id=_id_of(obj.get("product")),
                    slug=(obj.get("metadata") or {}).get(SLUG_KEY),
                    amount=obj.get("unit_amount"),
                    currency=obj.get("currency"),
                    interval=recurring.get("interval"),
                    interval_count=recurring.get("interval_count") or 1,
                    active=obj.get("active", True),
                ),
            )

        return parse

    def _subscription_parser(self, variant: type) -> Callable[[Optional[str], Any], Any]:
        def parse(event_id: Optional[str], obj: Dict[str, Any]) -> Any:
            items = _items_of(obj)
            first_item = items[0] if items else {}
            return variant(
                event_id=event_id,
                data=SubscriptionEventData(
                    provider_id=obj["id"],
                    customer_provider_id=_id_of(obj["customer"]),
                    price_provider_id=_id_of(first_item.get("price")),
                    status=obj["status"],
                    quantity=first_item.get("quantity") or 1,
                    trial_days=_trial_days(obj.get("trial_start"), obj.get("trial_end")),
                    billing_cycle_anchor=from_timestamp(obj.get("billing_cycle_anchor")),
                    metadata=obj.get("metadata") or {},
                ),
            )

        return parse

    def _parse_subscription_deleted(
        self, event_id: Optional[str], obj: Dict[str, Any]
    ) -> SubscriptionDeletedEvent:
        return SubscriptionDeletedEvent(
            event_id=event_id,
            data=SubscriptionDeletedData(
                provider_id=obj["id"],
                customer_provider_id=_id_of(obj.get("customer")),
                status=obj.get("status") or schemas.SubscriptionStatus.CANCELED,
            ),
        )

    def _parse_trial_will_end(
        self, event_id: Optional[str], obj: Dict[str, Any]
    ) -> SubscriptionTrialWillEndEvent:
        return SubscriptionTrialWillEndEvent(
            event_id=event_id,
            data=SubscriptionTrialWillEndData(
                provider_id=obj["id"],
                customer_provider_id=_id_of(obj.get("customer")),
                trial_end=from_timestamp(obj.get("trial_end")),
            ),
        )

    def _invoice_parser(self, variant: type) -> Callable[[Optional[str], Any], Any]:
        succeeded = variant is InvoicePaymentSucceededEvent

        def parse(event_id: Optional[str], obj: Dict[str, Any]) -> Any:
            subscription_id = _id_of(obj.get("subscription"))
            if subscription_id is None:
                # Newer API versions nest the subscription under the invoice parent
                details = (obj.get("parent") or {}).get("subscription_details") or {}
                subscription_id = _id_of(details.get("subscription"))
            return variant(
                event_id=event_id,
                data=InvoiceEventData(
                    provider_id=obj["id"],
                    customer_provider_id=_id_of(obj.get("customer")),
                    subscription_provider_id=subscription_id,
                    amount=(obj.get("amount_paid") if succeeded else obj.get("amount_due")) or 0,
                    currency=obj.get("currency"),
                    status=obj.get("status"),
                    paid=obj.get("status") == "paid" or bool(obj.get("paid")),
                ),
            )

        return parse
