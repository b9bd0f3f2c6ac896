"""Payment facade.

``PaymentProvider`` orchestrates one vendor adapter and one persistence adapter.
Every mutation goes to the vendor first, is mirrored into the database with the
vendor-issued id, and then fires its lifecycle hook. It also answers quota and
feature questions, processes webhooks and syncs the declared plan catalog.

The application builds exactly one instance at startup and passes it around;
there is no global accessor.
"""

import functools
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from tollgate import schemas
from tollgate.billing.adapters.persistence import PaymentDatabaseAdapter
from tollgate.billing.adapters.vendor import PaymentVendorAdapter
from tollgate.billing.events import PaymentEvents
from tollgate.core.exceptions import BillingOperationError, InvalidStateError, NotFoundException
from tollgate.core.logging import ContextualLogger, LoggerConfigurator
from tollgate.schemas.billing_events import (
    CustomerCreatedEvent,
    CustomerDeletedEvent,
    CustomerUpdatedEvent,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    PlanCreatedEvent,
    PlanDeletedEvent,
    PlanUpdatedEvent,
    PriceCreatedEvent,
    PriceDeletedEvent,
    PriceUpdatedEvent,
    SubscriptionCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionTrialWillEndEvent,
    SubscriptionUpdatedEvent,
    WebhookErrorEvent,
    WebhookResult,
)

logger = LoggerConfigurator.configure_logger(__name__, dimensions={"component": "billing"})

WebhookHandler = Callable[[Any, ContextualLogger], Awaitable[None]]


def billing_operation(operation: str) -> Callable:
    """Log and wrap any failure of a facade operation as a BillingOperationError."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self: "PaymentProvider", *args: Any, **kwargs: Any) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except Exception as e:
                logger.error(f"Failed to {operation}: {e}", exc_info=True)
                raise BillingOperationError(operation, e) from e

        return wrapper

    return decorator


class PaymentProvider:
    """Vendor-agnostic billing facade."""

    def __init__(
        self,
        adapter: PaymentVendorAdapter,
        database: PaymentDatabaseAdapter,
        options: Optional[schemas.PaymentOptions] = None,
        events: Optional[PaymentEvents] = None,
    ) -> None:
        """Initialize the facade.

        Args:
        ----
            adapter (PaymentVendorAdapter): The payment vendor integration.
            database (PaymentDatabaseAdapter): The billing persistence.
            options (PaymentOptions, optional): Subscription, trial, catalog and path options.
            events (PaymentEvents, optional): Lifecycle hooks.

        """
        self.adapter = adapter
        self.database = database
        self.options = options or schemas.PaymentOptions()
        self.events = events or PaymentEvents()

        # One handler per normalized event variant
        self._webhook_handlers: dict[type, WebhookHandler] = {
            WebhookErrorEvent: self._handle_error,
            CustomerCreatedEvent: self._handle_customer_created,
            CustomerUpdatedEvent: self._handle_customer_updated,
            CustomerDeletedEvent: self._handle_without_mutation,
            PlanCreatedEvent: self._handle_without_mutation,
            PlanUpdatedEvent: self._handle_without_mutation,
            PlanDeletedEvent: self._handle_without_mutation,
            PriceCreatedEvent: self._handle_without_mutation,
            PriceUpdatedEvent: self._handle_without_mutation,
            PriceDeletedEvent: self._handle_without_mutation,
            SubscriptionCreatedEvent: self._handle_subscription_created,
            SubscriptionUpdatedEvent: self._handle_subscription_updated,
            SubscriptionDeletedEvent: self._handle_subscription_deleted,
            SubscriptionTrialWillEndEvent: self._handle_trial_will_end,
            InvoicePaymentSucceededEvent: self._handle_invoice_payment_succeeded,
            InvoicePaymentFailedEvent: self._handle_invoice_payment_failed,
        }

    @property
    def webhook_handlers(self) -> dict[type, WebhookHandler]:
        """Handlers by event variant."""
        return self._webhook_handlers

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _require_customer(self, ref: Union[str, Any]) -> schemas.Customer:
        customer = await self.database.get_customer_by_id(str(ref))
        if customer is None:
            raise NotFoundException(f"CUSTOMER_NOT_FOUND: {ref}")
        return customer

    async def _require_plan(self, slug: str) -> schemas.Plan:
        plan = await self.database.get_plan_by_slug(slug)
        if plan is None:
            raise NotFoundException(f"PLAN_NOT_FOUND: {slug}")
        return plan

    async def _require_subscription(self, ref: Union[str, Any]) -> schemas.Subscription:
        subscription = await self.database.get_subscription_by_id(str(ref))
        if subscription is None:
            raise NotFoundException(f"SUBSCRIPTION_NOT_FOUND: {ref}")
        return subscription

    def select_price(
        self, plan: schemas.Plan, cycle: schemas.CyclePeriod
    ) -> Optional[schemas.Price]:
        """Pick the price a plan is sold at for a billing cycle.

        Among the plan's active prices with that interval, the one matching the declared
        catalog wins; otherwise the newest.
        """
        candidates = [
            price for price in plan.prices if price.active and price.interval == cycle
        ]
        if not candidates:
            return None

        declared = self.options.subscriptions.plans.get(plan.slug)
        if declared is not None:
            signatures = {price.signature for price in declared.prices}
            matching = [price for price in candidates if price.signature in signatures]
            if matching:
                candidates = matching

        return max(candidates, key=lambda price: price.created_at or datetime.min)

    def _require_price(self, plan: schemas.Plan, cycle: schemas.CyclePeriod) -> schemas.Price:
        price = self.select_price(plan, cycle)
        if price is None:
            raise NotFoundException(f"PRICE_NOT_FOUND: no {cycle.value} price for plan {plan.slug}")
        if not price.provider_id:
            raise NotFoundException(f"PRICE_PROVIDER_ID_MISSING: {price.slug}")
        return price

    async def _starter_price(self) -> Optional[tuple[schemas.Price, Optional[int]]]:
        """Resolve the default plan's monthly price and trial length for new customers.

        Raises when a customer would be charged at signup, i.e. when there is no trial
        and the monthly price is not free.
        """
        subscriptions = self.options.subscriptions
        slug = subscriptions.plans.default
        if not subscriptions.enabled or not slug:
            return None

        plan = await self._require_plan(slug)
        price = self._require_price(plan, schemas.CyclePeriod.MONTH)

        trial = subscriptions.trial
        trial_days = trial.duration if trial.enabled and trial.duration > 0 else None
        if trial_days is None and price.amount > 0:
            raise InvalidStateError(
                f"Default plan '{slug}' costs {price.amount} {price.currency} per month "
                "and no trial is configured"
            )
        return price, trial_days

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    @billing_operation("create customer")
    async def create_customer(self, params: schemas.CustomerDTO) -> schemas.Customer:
        """Create a customer and put it on the default plan.

        The default plan is validated before anything is written. The starter
        subscription is trialing when a trial is configured and active otherwise.
        ``on_customer_created`` fires once everything is provisioned.
        """
        starter = await self._starter_price()

        vendor_customer = await self.adapter.create_customer(params)
        customer = await self.database.create_customer(
            params.model_copy(update={"provider_id": vendor_customer.provider_id})
        )
        logger.info(f"Created customer {customer.id} for organization {params.reference_id}")

        if starter is not None:
            price, trial_days = starter
            subscription_in = schemas.SubscriptionDTO(
                customer_id=customer.id,
                customer_provider_id=customer.provider_id,
                price_id=price.id,
                price_provider_id=price.provider_id,
                trial_days=trial_days,
                status=(
                    schemas.SubscriptionStatus.TRIALING
                    if trial_days
                    else schemas.SubscriptionStatus.ACTIVE
                ),
            )
            provider_id = await self.adapter.create_subscription(subscription_in)
            await self.database.create_subscription(
                subscription_in.model_copy(update={"provider_id": provider_id})
            )
            customer = await self._require_customer(customer.id)

        await self.events.emit("on_customer_created", customer)
        return customer

    @billing_operation("update customer")
    async def update_customer(
        self, customer_id: str, params: schemas.CustomerUpdate
    ) -> schemas.Customer:
        """Update a customer on the vendor, then locally."""
        customer = await self._require_customer(customer_id)
        if customer.provider_id:
            await self.adapter.update_customer(customer.provider_id, params)
        updated = await self.database.update_customer(customer.id, params)
        await self.events.emit("on_customer_updated", updated)
        return updated

    @billing_operation("delete customer")
    async def delete_customer(self, customer_id: str) -> None:
        """Delete a customer on the vendor, then locally."""
        customer = await self._require_customer(customer_id)
        if customer.provider_id:
            await self.adapter.delete_customer(customer.provider_id)
        await self.database.delete_customer(customer.id)
        await self.events.emit("on_customer_deleted", customer)

    @billing_operation("get customer")
    async def get_customer_by_id(self, customer_id: str) -> Optional[schemas.Customer]:
        """Get a customer by local id, organization id or vendor id."""
        return await self.database.get_customer_by_id(str(customer_id))

    @billing_operation("list customers")
    async def list_customers(
        self, query: Optional[schemas.QueryParams] = None
    ) -> list[schemas.Customer]:
        """List customers."""
        return await self.database.list_customers(query)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @billing_operation("create subscription")
    async def create_subscription(
        self, params: schemas.CreateSubscriptionParams
    ) -> schemas.Subscription:
        """Subscribe a customer to a plan's price for a billing cycle.

        The status is trialing when trial days are requested and active otherwise. The
        customer's previous live subscription is canceled once the new one is stored.
        """
        customer = await self._require_customer(params.customer_id)
        if not customer.provider_id:
            raise InvalidStateError(f"Customer {customer.id} is not linked to the vendor")

        plan = await self._require_plan(params.plan)
        price = self._require_price(plan, params.cycle)

        subscription_in = schemas.SubscriptionDTO(
            customer_id=customer.id,
            customer_provider_id=customer.provider_id,
            price_id=price.id,
            price_provider_id=price.provider_id,
            quantity=params.quantity,
            trial_days=params.trial_days or None,
            status=(
                schemas.SubscriptionStatus.TRIALING
                if params.trial_days
                else schemas.SubscriptionStatus.ACTIVE
            ),
            billing_cycle_anchor=params.billing_cycle_anchor,
            proration_behavior=params.proration_behavior,
            metadata=params.metadata,
        )
        provider_id = await self.adapter.create_subscription(subscription_in)
        subscription = await self.database.create_subscription(
            subscription_in.model_copy(update={"provider_id": provider_id})
        )
        await self._end_previous_subscription(customer, subscription)
        logger.info(
            f"Subscribed customer {customer.id} to {plan.slug}/{params.cycle.value} "
            f"({subscription.status.value})"
        )

        await self.events.emit("on_subscription_created", subscription)
        return subscription

    async def _with_price_ids(
        self, params: schemas.SubscriptionUpdate
    ) -> schemas.SubscriptionUpdate:
        """Fill in whichever of the local and vendor price ids is missing."""
        if params.price_id is None and params.price_provider_id is None:
            return params

        ref = params.price_id or params.price_provider_id
        price = await self.database.get_price_by_id(str(ref))
        if price is None:
            raise NotFoundException(f"PRICE_NOT_FOUND: {ref}")
        if not price.provider_id:
            raise NotFoundException(f"PRICE_PROVIDER_ID_MISSING: {price.slug}")

        values = params.model_dump(exclude_unset=True)
        values.update(price_id=price.id, price_provider_id=price.provider_id)
        return schemas.SubscriptionUpdate(**values)

    async def _end_previous_subscription(
        self, customer: schemas.Customer, replacement: schemas.Subscription
    ) -> None:
        """Cancel the subscription ``replacement`` takes over from, on the vendor and locally.

        ``customer`` is the view loaded before the replacement was stored.
        """
        previous = customer.subscription
        if previous is None or previous.id == replacement.id:
            return

        if previous.provider_id and previous.provider_id != replacement.provider_id:
            await self.adapter.cancel_subscription(previous.provider_id)
        await self.database.cancel_subscription(previous.id)
        logger.info(f"Canceled subscription {previous.id} replaced by {replacement.id}")

        canceled = await self.database.get_subscription_by_id(str(previous.id))
        await self.events.emit("on_subscription_canceled", canceled)

    @billing_operation("update subscription")
    async def update_subscription(
        self, subscription_id: str, params: schemas.SubscriptionUpdate
    ) -> schemas.Subscription:
        """Update a subscription on the vendor, then locally."""
        subscription = await self._require_subscription(subscription_id)
        params = await self._with_price_ids(params)

        if subscription.provider_id:
            await self.adapter.update_subscription(subscription.provider_id, params)
        updated = await self.database.update_subscription(subscription.id, params)

        await self.events.emit("on_subscription_updated", updated)
        return updated

    @billing_operation("cancel subscription")
    async def cancel_subscription(
        self,
        subscription_id: str,
        params: Optional[schemas.CancelSubscriptionParams] = None,
    ) -> Optional[schemas.Subscription]:
        """Cancel a subscription on the vendor, then locally.

        An immediate cancellation marks the subscription canceled. A scheduled one only
        records ``cancel_at``; the vendor's deletion webhook ends it when the time comes.
        """
        subscription = await self._require_subscription(subscription_id)
        if subscription.provider_id:
            await self.adapter.cancel_subscription(subscription.provider_id, params)

        if params is not None and params.cancel_at is not None:
            await self.database.update_subscription(
                subscription.id,
                schemas.SubscriptionUpdate(
                    metadata={**subscription.metadata, "cancel_at": params.cancel_at.isoformat()}
                ),
            )
        else:
            await self.database.cancel_subscription(subscription.id)

        matches = await self.database.list_subscriptions(
            schemas.QueryParams(where={"id": subscription.id}, limit=1)
        )
        canceled = matches[0] if matches else None
        await self.events.emit("on_subscription_canceled", canceled)
        return canceled

    @billing_operation("list subscriptions")
    async def list_subscriptions(
        self, query: Optional[schemas.QueryParams] = None
    ) -> list[schemas.Subscription]:
        """List subscriptions."""
        return await self.database.list_subscriptions(query)

    @billing_operation("list plans")
    async def list_plans(self, query: Optional[schemas.QueryParams] = None) -> list[schemas.Plan]:
        """List plans with their prices."""
        return await self.database.list_plans(query)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @billing_operation("create billing portal")
    async def create_billing_portal(
        self, customer_id: str, return_url: Optional[str] = None
    ) -> str:
        """Create a billing portal URL for a customer."""
        customer = await self._require_customer(customer_id)
        if not customer.provider_id:
            raise InvalidStateError(f"Customer {customer.id} is not linked to the vendor")

        url = return_url or self.options.paths.portal_return_url
        if not url:
            raise InvalidStateError("No billing portal return URL configured")
        return await self.adapter.create_billing_portal(customer.provider_id, url)

    @billing_operation("create checkout session")
    async def create_checkout_session(self, params: schemas.CheckoutSessionParams) -> str:
        """Create a checkout URL for a plan and cycle.

        Customers with an active subscription are sent to confirm a plan change instead.
        """
        customer = await self._require_customer(params.customer_id)
        if not customer.provider_id:
            raise InvalidStateError(f"Customer {customer.id} is not linked to the vendor")

        plan = await self._require_plan(params.plan)
        price = self._require_price(plan, params.cycle)

        success_url = params.success_url or self.options.paths.checkout_success_url
        cancel_url = params.cancel_url or self.options.paths.checkout_cancel_url
        if not success_url or not cancel_url:
            raise InvalidStateError("No checkout redirect URLs configured")

        subscription_provider_id = (
            customer.subscription.provider_id if customer.subscription else None
        )
        return await self.adapter.create_checkout_session(
            customer_provider_id=customer.provider_id,
            price_provider_id=price.provider_id,
            success_url=success_url,
            cancel_url=cancel_url,
            subscription_provider_id=subscription_provider_id,
        )

    # ------------------------------------------------------------------
    # Quotas and features
    # ------------------------------------------------------------------

    async def _feature_of(
        self, customer_id: str, feature: str
    ) -> tuple[schemas.Customer, Optional[Union[schemas.MeteredFeature, schemas.ToggleFeature]]]:
        customer = await self._require_customer(customer_id)
        if customer.subscription is None:
            raise InvalidStateError(f"Customer {customer_id} has no active subscription")

        return customer, customer.subscription.plan.metadata.get_feature(feature)

    @billing_operation("check quota")
    async def has_quota(self, customer_id: str, feature: str) -> bool:
        """Whether the customer may use one more unit of a feature.

        Raises when the customer does not exist or has no active subscription. Absent
        and disabled features have no quota, a missing limit is unlimited.
        """
        customer, definition = await self._feature_of(customer_id, feature)
        if definition is None or not definition.enabled:
            return False
        if not isinstance(definition, schemas.MeteredFeature) or definition.limit is None:
            return True

        usage = await self.database.get_customer_usage(str(customer.id), feature)
        return usage < definition.limit

    async def can_use_feature(self, customer_id: str, feature: str) -> bool:
        """Whether the customer's plan enables a feature.

        Never raises: anything that goes wrong means the feature cannot be used.
        """
        try:
            customer = await self.database.get_customer_by_id(str(customer_id))
            if customer is None or customer.subscription is None:
                return False
            definition = customer.subscription.plan.metadata.get_feature(feature)
            return definition is not None and definition.enabled
        except Exception as e:
            logger.warning(f"Feature check of '{feature}' for {customer_id} failed: {e}")
            return False

    @billing_operation("get quota info")
    async def get_quota_info(self, customer_id: str, feature: str) -> schemas.QuotaInfo:
        """Describe the limit, usage and remaining quota of a feature."""
        customer, definition = await self._feature_of(customer_id, feature)
        if definition is None:
            return schemas.QuotaInfo(feature=feature, enabled=False, remaining=0)

        limit = definition.limit if isinstance(definition, schemas.MeteredFeature) else None
        usage = 0
        if isinstance(definition, schemas.MeteredFeature):
            usage = await self.database.get_customer_usage(str(customer.id), feature)

        if not definition.enabled:
            remaining: Optional[int] = 0
        elif limit is None:
            remaining = None
        else:
            remaining = max(limit - usage, 0)

        return schemas.QuotaInfo(
            feature=feature,
            enabled=definition.enabled,
            limit=limit,
            usage=usage,
            remaining=remaining,
            unlimited=definition.enabled and limit is None,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @billing_operation("handle webhook")
    async def handle(self, payload: bytes, headers: Mapping[str, str]) -> WebhookResult:
        """Process a webhook delivery.

        Deliveries that fail verification, are not modeled or were already processed
        are acknowledged without touching the database. Failures while applying an
        event propagate so the vendor retries.
        """
        event = await self.adapter.handle(payload, headers)
        if event is None:
            return WebhookResult(
                status_code=200,
                body={"status": "processed", "message": "Event type not handled"},
            )

        log = logger.with_context(event_type=event.event, event_id=event.event_id)

        if isinstance(event, WebhookErrorEvent):
            await self._handle_error(event, log)
            await self.events.emit("on_webhook_received", event)
            return WebhookResult(
                status_code=200,
                body={"status": "processed", "message": event.data.message},
            )

        if event.event_id and await self.database.has_processed_event(event.event_id):
            log.info(f"Skipping already processed webhook event {event.event_id}")
            return WebhookResult(
                status_code=200,
                body={"status": "processed", "message": "Event already processed"},
            )

        log.info(f"Processing webhook event: {event.event}")
        await self._webhook_handlers[type(event)](event, log)

        if event.event_id:
            await self.database.record_processed_event(event.event_id, event.event)

        await self.events.emit("on_webhook_received", event)
        return WebhookResult(
            status_code=200,
            body={"status": "success", "message": f"Processed {event.event}"},
        )

    async def _handle_error(self, event: WebhookErrorEvent, log: ContextualLogger) -> None:
        log.error(f"Rejected webhook delivery: {event.data.message}")

    async def _handle_without_mutation(self, event: Any, log: ContextualLogger) -> None:
        log.info(f"No local changes for {event.event}")

    async def _handle_customer_created(
        self, event: CustomerCreatedEvent, log: ContextualLogger
    ) -> None:
        # The customer was created through the facade, which already fired its hook
        await self._mirror_customer(event, log)

    async def _handle_customer_updated(
        self, event: CustomerUpdatedEvent, log: ContextualLogger
    ) -> None:
        customer = await self._mirror_customer(event, log)
        if customer is not None:
            await self.events.emit("on_customer_updated", customer)

    async def _mirror_customer(
        self, event: Union[CustomerCreatedEvent, CustomerUpdatedEvent], log: ContextualLogger
    ) -> Optional[schemas.Customer]:
        data = event.data
        customer = await self.database.get_customer_by_id(data.provider_id)
        if customer is None:
            log.info(f"Customer {data.provider_id} is not known locally, skipping")
            return None

        values: dict[str, Any] = {"metadata": data.metadata}
        if data.name is not None:
            values["name"] = data.name
        if data.email is not None:
            values["email"] = data.email
        return await self.database.update_customer(
            customer.id, schemas.CustomerUpdate(**values)
        )

    async def _handle_subscription_created(
        self, event: SubscriptionCreatedEvent, log: ContextualLogger
    ) -> None:
        data = event.data
        existing = await self.database.get_subscription_by_id(data.provider_id)
        if existing is not None:
            # Created through the facade, only the vendor's view of the status is new
            await self.database.update_subscription(
                existing.id, schemas.SubscriptionUpdate(status=data.status)
            )
            log.info(f"Subscription {data.provider_id} already stored, status synced")
            return

        customer = await self.database.get_customer_by_id(data.customer_provider_id)
        if customer is None:
            log.warning(f"Customer {data.customer_provider_id} is not known locally, skipping")
            return

        price = (
            await self.database.get_price_by_id(data.price_provider_id)
            if data.price_provider_id
            else None
        )
        if price is None:
            log.warning(f"Price {data.price_provider_id} is not known locally, skipping")
            return

        subscription = await self.database.create_subscription(
            schemas.SubscriptionDTO(
                provider_id=data.provider_id,
                customer_id=customer.id,
                customer_provider_id=data.customer_provider_id,
                price_id=price.id,
                price_provider_id=price.provider_id,
                quantity=data.quantity,
                trial_days=data.trial_days,
                status=data.status,
                billing_cycle_anchor=data.billing_cycle_anchor,
                metadata=data.metadata,
            )
        )
        await self._end_previous_subscription(customer, subscription)
        await self.events.emit("on_subscription_created", subscription)

    async def _handle_subscription_updated(
        self, event: SubscriptionUpdatedEvent, log: ContextualLogger
    ) -> None:
        data = event.data
        subscription = await self.database.get_subscription_by_id(data.provider_id)
        if subscription is None:
            log.warning(f"Subscription {data.provider_id} is not known locally, skipping")
            return

        values: dict[str, Any] = {
            "status": data.status,
            "quantity": data.quantity,
            "trial_days": data.trial_days,
            "metadata": data.metadata,
        }
        if data.billing_cycle_anchor is not None:
            values["billing_cycle_anchor"] = data.billing_cycle_anchor
        if data.price_provider_id:
            price = await self.database.get_price_by_id(data.price_provider_id)
            if price is None:
                log.warning(f"Price {data.price_provider_id} is not known locally, keeping price")
            else:
                values["price_id"] = price.id

        updated = await self.database.update_subscription(
            subscription.id, schemas.SubscriptionUpdate(**values)
        )
        await self.events.emit("on_subscription_updated", updated)

    async def _handle_subscription_deleted(
        self, event: SubscriptionDeletedEvent, log: ContextualLogger
    ) -> None:
        subscription = await self.database.get_subscription_by_id(event.data.provider_id)
        if subscription is None:
            log.warning(f"Subscription {event.data.provider_id} is not known locally, skipping")
            return

        await self.database.cancel_subscription(subscription.id)
        canceled = await self.database.get_subscription_by_id(str(subscription.id))
        await self.events.emit("on_subscription_canceled", canceled)
        await self.events.emit("on_subscription_deleted", canceled)

    async def _handle_trial_will_end(
        self, event: SubscriptionTrialWillEndEvent, log: ContextualLogger
    ) -> None:
        await self.events.emit("on_subscription_trial_will_end", event)

    async def _handle_invoice_payment_succeeded(
        self, event: InvoicePaymentSucceededEvent, log: ContextualLogger
    ) -> None:
        await self.events.emit("on_invoice_payment_succeeded", event)

    async def _handle_invoice_payment_failed(
        self, event: InvoicePaymentFailedEvent, log: ContextualLogger
    ) -> None:
        log.warning(f"Payment failed for invoice {event.data.provider_id}")
        await self.events.emit("on_invoice_payment_failed", event)

    # ------------------------------------------------------------------
    # Plan sync
    # ------------------------------------------------------------------

    @billing_operation("sync plans")
    async def sync(self) -> schemas.SyncReport:
        """Make the vendor and the database match the declared plan catalog.

        Plans are matched by slug and prices by (amount, currency, interval,
        interval_count). Unchanged plans and prices are not written, so syncing the
        same catalog twice writes nothing the second time. Prices that left the
        catalog are kept as they are.
        """
        report = schemas.SyncReport()
        subscriptions = self.options.subscriptions
        if not subscriptions.enabled or not subscriptions.plans.options:
            logger.info("Subscriptions disabled or no plans declared, nothing to sync")
            return report

        for declared in subscriptions.plans.options:
            plan = await self._sync_plan(declared, report)
            await self._sync_prices(plan, declared, report)

        logger.info(
            f"Plan sync finished: {report.plans_created} plans created, "
            f"{report.plans_updated} updated, {report.prices_created} prices created, "
            f"{report.prices_updated} updated"
        )
        return report

    def _plan_changed(self, plan: schemas.Plan, declared: schemas.DeclaredPlan) -> bool:
        return (
            not plan.provider_id
            or plan.archived
            or plan.name != declared.name
            or plan.description != declared.description
            or plan.metadata.model_dump(mode="json") != declared.metadata.model_dump(mode="json")
        )

    async def _sync_plan(
        self, declared: schemas.DeclaredPlan, report: schemas.SyncReport
    ) -> schemas.Plan:
        existing = await self.database.get_plan_by_slug(declared.slug)

        if existing is None:
            provider_id = await self.adapter.create_plan(declared)
            plan = await self.database.create_plan(
                schemas.PlanDTO(
                    provider_id=provider_id,
                    slug=declared.slug,
                    name=declared.name,
                    description=declared.description,
                    metadata=declared.metadata,
                )
            )
            report.plans_created += 1
            await self.events.emit("on_plan_created", plan)
            return plan

        if not self._plan_changed(existing, declared):
            return existing

        values: dict[str, Any] = {
            "name": declared.name,
            "description": declared.description,
            "metadata": declared.metadata,
            "archived": False,
        }
        if existing.provider_id:
            await self.adapter.update_plan(existing.provider_id, schemas.PlanUpdate(**values))
        else:
            values["provider_id"] = await self.adapter.create_plan(declared)

        plan = await self.database.update_plan(declared.slug, schemas.PlanUpdate(**values))
        report.plans_updated += 1
        await self.events.emit("on_plan_updated", plan)
        return plan

    async def _sync_prices(
        self, plan: schemas.Plan, declared: schemas.DeclaredPlan, report: schemas.SyncReport
    ) -> None:
        for declared_price in declared.prices:
            match = next(
                (price for price in plan.prices if price.signature == declared_price.signature),
                None,
            )

            if match is None:
                price_in = schemas.PriceDTO(
                    plan_id=plan.id,
                    plan_provider_id=plan.provider_id,
                    slug=declared_price.slug,
                    amount=declared_price.amount,
                    currency=declared_price.currency,
                    interval=declared_price.interval,
                    interval_count=declared_price.interval_count,
                    metadata=declared_price.metadata,
                )
                provider_id = await self.adapter.create_price(price_in)
                price = await self.database.create_price(
                    price_in.model_copy(update={"provider_id": provider_id})
                )
                report.prices_created += 1
                await self.events.emit("on_price_created", price)
                continue

            if match.metadata == declared_price.metadata and match.active:
                continue

            update = schemas.PriceUpdate(metadata=declared_price.metadata, active=True)
            if match.provider_id:
                await self.adapter.update_price(match.provider_id, update)
            price = await self.database.update_price(match.id, update)
            report.prices_updated += 1
            await self.events.emit("on_price_updated", price)

    @billing_operation("archive plan")
    async def archive_plan(self, slug: str) -> None:
        """Deactivate a plan on the vendor and mark it archived locally."""
        plan = await self._require_plan(slug)
        if plan.provider_id:
            await self.adapter.archive_plan(plan.provider_id)
        await self.database.archive_plan(plan.id)
        await self.events.emit("on_plan_deleted", plan.model_copy(update={"archived": True}))
