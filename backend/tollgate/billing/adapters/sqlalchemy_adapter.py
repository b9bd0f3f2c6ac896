"""SQLAlchemy implementation of the billing persistence adapter."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tollgate import crud, models, schemas
from tollgate.billing.adapters.persistence import PaymentDatabaseAdapter
from tollgate.billing.usage import UsageRegistry, cycle_window, default_usage_registry
from tollgate.core.datetime_utils import to_naive_utc, utc_now_naive
from tollgate.core.exceptions import InvalidStateError, NotFoundException
from tollgate.core.logging import LoggerConfigurator

logger = LoggerConfigurator.configure_logger(__name__, dimensions={"component": "billing"})


def _as_uuid(ref: Union[str, UUID, None]) -> Optional[UUID]:
    if isinstance(ref, UUID):
        return ref
    try:
        return uuid.UUID(str(ref))
    except ValueError:
        return None


def _column_values(update: BaseModel, aliases: dict[str, str], model: Any) -> dict[str, Any]:
    """Turn the explicitly set fields of an update schema into column values."""
    values = {}
    for field in update.model_fields_set:
        column = aliases.get(field, field)
        if not hasattr(model, column):
            continue
        value = getattr(update, field)
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        elif isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = to_naive_utc(value)
        values[column] = value
    return values


def _to_price(row: models.Price, plan_provider_id: Optional[str] = None) -> schemas.Price:
    return schemas.Price(
        id=row.id,
        provider_id=row.provider_id,
        plan_id=row.plan_id,
        plan_provider_id=plan_provider_id,
        slug=row.slug,
        amount=row.amount,
        currency=row.currency,
        interval=row.interval,
        interval_count=row.interval_count,
        metadata=row.price_metadata or {},
        active=row.active,
        created_at=row.created_at,
    )


def _to_plan(row: models.Plan, prices: list[models.Price]) -> schemas.Plan:
    return schemas.Plan(
        id=row.id,
        provider_id=row.provider_id,
        slug=row.slug,
        name=row.name,
        description=row.description,
        metadata=schemas.PlanMetadata.model_validate(row.plan_metadata or {}),
        prices=[_to_price(price, row.provider_id) for price in prices],
        archived=row.archived,
        created_at=row.created_at,
    )


def _to_subscription(row: models.Subscription) -> schemas.Subscription:
    return schemas.Subscription(
        id=row.id,
        provider_id=row.provider_id,
        customer_id=row.customer_id,
        price_id=row.price_id,
        quantity=row.quantity,
        trial_days=row.trial_days,
        status=row.status,
        billing_cycle_anchor=row.billing_cycle_anchor,
        proration_behavior=row.proration_behavior,
        metadata=row.subscription_metadata or {},
        created_at=row.created_at,
    )


def _to_customer(
    row: models.Customer, subscription: Optional[schemas.CustomerSubscription] = None
) -> schemas.Customer:
    return schemas.Customer(
        id=row.id,
        provider_id=row.provider_id,
        organization_id=row.organization_id,
        name=row.name,
        email=row.email,
        metadata=row.customer_metadata or {},
        subscription=subscription,
        created_at=row.created_at,
        updated_at=row.modified_at,
    )


class SQLAlchemyDatabaseAdapter(PaymentDatabaseAdapter):
    """Billing persistence over the async SQLAlchemy models.

    Each operation opens its own session from ``session_factory``, so independent
    reads can be gathered concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        usage_registry: Optional[UsageRegistry] = None,
        clock: Callable[[], datetime] = utc_now_naive,
    ):
        """Initialize the adapter.

        Args:
        ----
            session_factory (async_sessionmaker): Factory of database sessions.
            usage_registry (UsageRegistry, optional): Usage counters by table name,
                defaults to the counters of the built-in models.
            clock (Callable): Returns the current naive UTC time.

        """
        self.session_factory = session_factory
        self.usage_registry = usage_registry or default_usage_registry()
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups shared by several operations, all run inside a caller's session
    # ------------------------------------------------------------------

    async def _find_customer(self, db: AsyncSession, ref: str) -> Optional[models.Customer]:
        local_id = _as_uuid(ref)
        if local_id is not None:
            row = await crud.customer.get(db, local_id)
            if row is not None:
                return row
        row = await crud.customer.get_by_organization(db, organization_id=str(ref))
        if row is not None:
            return row
        return await crud.customer.get_by_provider_id(db, str(ref))

    async def _find_price(self, db: AsyncSession, ref: str) -> Optional[models.Price]:
        local_id = _as_uuid(ref)
        if local_id is not None:
            row = await crud.price.get(db, local_id)
            if row is not None:
                return row
        return await crud.price.get_by_provider_id(db, str(ref))

    async def _find_subscription(
        self, db: AsyncSession, ref: str
    ) -> Optional[models.Subscription]:
        local_id = _as_uuid(ref)
        if local_id is not None:
            row = await crud.subscription.get(db, local_id)
            if row is not None:
                return row
        return await crud.subscription.get_by_provider_id(db, str(ref))

    async def _plans_with_prices(
        self, db: AsyncSession, rows: list[models.Plan]
    ) -> list[schemas.Plan]:
        if not rows:
            return []
        result = await db.execute(
            select(models.Price)
            .where(models.Price.plan_id.in_([row.id for row in rows]))
            .order_by(models.Price.created_at)
        )
        prices_by_plan: dict[UUID, list[models.Price]] = {row.id: [] for row in rows}
        for price in result.scalars().all():
            prices_by_plan[price.plan_id].append(price)
        return [_to_plan(row, prices_by_plan[row.id]) for row in rows]

    async def _active_plan(
        self, db: AsyncSession, customer: models.Customer
    ) -> Optional[tuple[models.Subscription, models.Price, models.Plan]]:
        subscription = await crud.subscription.get_active_for_customer(
            db, customer_id=customer.id
        )
        if subscription is None:
            return None
        price = await crud.price.get(db, subscription.price_id)
        if price is None:
            return None
        plan = await crud.plan.get(db, price.plan_id)
        if plan is None:
            return None
        return subscription, price, plan

    async def _count_usage(
        self,
        db: AsyncSession,
        organization_id: str,
        feature: schemas.MeteredFeature,
        since: Optional[datetime],
    ) -> int:
        counter = self.usage_registry.resolve(feature.table)
        if counter is None:
            if feature.table:
                logger.warning(
                    f"No usage counter registered for table '{feature.table}' "
                    f"of feature '{feature.slug}', counting 0"
                )
            return 0
        return await counter(db, organization_id, since)

    async def _usage_of(
        self, db: AsyncSession, organization_id: str, feature: schemas.MeteredFeature
    ) -> schemas.Usage:
        last_reset, next_reset = cycle_window(feature.cycle, self.clock())
        since = last_reset if feature.cycle else None
        usage = await self._count_usage(db, organization_id, feature, since)
        return schemas.Usage(
            slug=feature.slug,
            name=feature.name,
            description=feature.description,
            usage=usage,
            limit=feature.limit,
            cycle=feature.cycle,
            last_reset=last_reset,
            next_reset=next_reset,
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def create_customer(self, customer: schemas.CustomerDTO) -> schemas.Customer:
        """Store a customer keyed by its organization id."""
        async with self.session_factory() as db:
            row = await crud.customer.create(
                db,
                obj_in={
                    "organization_id": customer.reference_id,
                    "provider_id": customer.provider_id,
                    "name": customer.name,
                    "email": customer.email,
                    "customer_metadata": customer.metadata,
                },
            )
            return _to_customer(row)

    async def update_customer(
        self, id: UUID, customer: schemas.CustomerUpdate
    ) -> schemas.Customer:
        """Update a customer."""
        async with self.session_factory() as db:
            row = await crud.customer.get(db, id)
            if row is None:
                raise NotFoundException(f"CUSTOMER_NOT_FOUND: {id}")
            values = _column_values(customer, crud.customer.field_aliases, models.Customer)
            row = await crud.customer.update(db, db_obj=row, obj_in=values)
            return _to_customer(row)

    async def delete_customer(self, id: UUID) -> None:
        """Delete a customer and its subscriptions."""
        async with self.session_factory() as db:
            await db.execute(
                delete(models.Subscription).where(models.Subscription.customer_id == id)
            )
            await crud.customer.remove(db, id=id)

    async def get_customer_by_id(self, ref: str) -> Optional[schemas.Customer]:
        """Get a customer with its active subscription and usage of every metered feature."""
        async with self.session_factory() as db:
            row = await self._find_customer(db, ref)
            if row is None:
                return None

            active = await self._active_plan(db, row)
            if active is None:
                return _to_customer(row)

            subscription, price, plan = active
            metadata = schemas.PlanMetadata.model_validate(plan.plan_metadata or {})
            usage = [
                await self._usage_of(db, row.organization_id, feature)
                for feature in metadata.features
                if isinstance(feature, schemas.MeteredFeature) and feature.enabled
            ]

            return _to_customer(
                row,
                schemas.CustomerSubscription(
                    id=subscription.id,
                    provider_id=subscription.provider_id,
                    status=subscription.status,
                    trial_days=subscription.trial_days,
                    usage=usage,
                    plan=schemas.CustomerPlan(
                        id=plan.id,
                        provider_id=plan.provider_id,
                        slug=plan.slug,
                        name=plan.name,
                        description=plan.description,
                        metadata=metadata,
                        price=_to_price(price, plan.provider_id),
                    ),
                ),
            )

    async def list_customers(
        self, query: Optional[schemas.QueryParams] = None
    ) -> list[schemas.Customer]:
        """List customers, without subscriptions."""
        query = query or schemas.QueryParams()
        async with self.session_factory() as db:
            rows = await crud.customer.get_multi(db, **query.model_dump())
            return [_to_customer(row) for row in rows]

    async def get_customer_usage(self, customer_id: str, feature: str) -> int:
        """Count a customer's usage of a feature in its current cycle, 0 when unknown."""
        async with self.session_factory() as db:
            row = await self._find_customer(db, customer_id)
            if row is None:
                logger.warning(f"Usage requested for unknown customer {customer_id}")
                return 0

            active = await self._active_plan(db, row)
            if active is None:
                return 0

            _, _, plan = active
            metadata = schemas.PlanMetadata.model_validate(plan.plan_metadata or {})
            definition = metadata.get_feature(feature)
            if not isinstance(definition, schemas.MeteredFeature) or not definition.table:
                return 0

            last_reset, _ = cycle_window(definition.cycle, self.clock())
            since = last_reset if definition.cycle else None
            return await self._count_usage(db, row.organization_id, definition, since)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def list_plans(self, query: Optional[schemas.QueryParams] = None) -> list[schemas.Plan]:
        """List plans with their prices."""
        query = query or schemas.QueryParams()
        async with self.session_factory() as db:
            rows = await crud.plan.get_multi(db, **query.model_dump())
            return await self._plans_with_prices(db, rows)

    async def create_plan(self, plan: schemas.PlanDTO) -> schemas.Plan:
        """Store a plan."""
        async with self.session_factory() as db:
            row = await crud.plan.create(
                db,
                obj_in={
                    "slug": plan.slug,
                    "provider_id": plan.provider_id,
                    "name": plan.name,
                    "description": plan.description,
                    "plan_metadata": plan.metadata.model_dump(mode="json"),
                },
            )
            return _to_plan(row, [])

    async def update_plan(self, slug: str, plan: schemas.PlanUpdate) -> schemas.Plan:
        """Update the plan with the given slug."""
        async with self.session_factory() as db:
            row = await crud.plan.get_by_slug(db, slug=slug)
            if row is None:
                raise NotFoundException(f"PLAN_NOT_FOUND: {slug}")
            values = _column_values(plan, crud.plan.field_aliases, models.Plan)
            row = await crud.plan.update(db, db_obj=row, obj_in=values)
            return (await self._plans_with_prices(db, [row]))[0]

    async def archive_plan(self, id: UUID) -> None:
        """Mark a plan as archived."""
        async with self.session_factory() as db:
            row = await crud.plan.get(db, id)
            if row is None:
                raise NotFoundException(f"PLAN_NOT_FOUND: {id}")
            await crud.plan.update(db, db_obj=row, obj_in={"archived": True})

    async def get_plan_by_slug(self, slug: str) -> Optional[schemas.Plan]:
        """Get a plan with its prices by slug."""
        async with self.session_factory() as db:
            row = await crud.plan.get_by_slug(db, slug=slug)
            if row is None:
                return None
            return (await self._plans_with_prices(db, [row]))[0]

    async def get_plan_by_id(self, id: UUID) -> Optional[schemas.Plan]:
        """Get a plan with its prices by local id."""
        local_id = _as_uuid(id)
        if local_id is None:
            return None
        async with self.session_factory() as db:
            row = await crud.plan.get(db, local_id)
            if row is None:
                return None
            return (await self._plans_with_prices(db, [row]))[0]

    async def get_plan_by_provider_id(self, provider_id: str) -> Optional[schemas.Plan]:
        """Get a plan with its prices by vendor id."""
        async with self.session_factory() as db:
            row = await crud.plan.get_by_provider_id(db, provider_id)
            if row is None:
                return None
            return (await self._plans_with_prices(db, [row]))[0]

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def get_price_by_id(self, ref: str) -> Optional[schemas.Price]:
        """Get a price by local id or vendor id."""
        async with self.session_factory() as db:
            row = await self._find_price(db, ref)
            if row is None:
                return None
            plan = await crud.plan.get(db, row.plan_id)
            return _to_price(row, plan.provider_id if plan else None)

    async def create_price(self, price: schemas.PriceDTO) -> schemas.Price:
        """Store a price of an existing plan."""
        if price.plan_id is None:
            raise InvalidStateError(f"Price {price.slug} has no plan id")
        async with self.session_factory() as db:
            row = await crud.price.create(
                db,
                obj_in={
                    "plan_id": price.plan_id,
                    "provider_id": price.provider_id,
                    "slug": price.slug,
                    "amount": price.amount,
                    "currency": price.currency.lower(),
                    "interval": price.interval.value,
                    "interval_count": price.interval_count,
                    "price_metadata": price.metadata,
                    "active": price.active,
                },
            )
            return _to_price(row, price.plan_provider_id)

    async def update_price(self, id: UUID, price: schemas.PriceUpdate) -> schemas.Price:
        """Update a price's metadata or active flag."""
        async with self.session_factory() as db:
            row = await crud.price.get(db, id)
            if row is None:
                raise NotFoundException(f"PRICE_NOT_FOUND: {id}")
            values = _column_values(price, crud.price.field_aliases, models.Price)
            row = await crud.price.update(db, db_obj=row, obj_in=values)
            return _to_price(row)

    async def delete_price(self, id: UUID) -> None:
        """Delete a price."""
        async with self.session_factory() as db:
            await crud.price.remove(db, id=id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def get_subscription_by_id(self, ref: str) -> Optional[schemas.Subscription]:
        """Get a subscription by local id or vendor id."""
        async with self.session_factory() as db:
            row = await self._find_subscription(db, ref)
            return _to_subscription(row) if row is not None else None

    async def create_subscription(
        self, subscription: schemas.SubscriptionDTO
    ) -> schemas.Subscription:
        """Store a subscription."""
        async with self.session_factory() as db:
            row = await crud.subscription.create(
                db,
                obj_in={
                    "customer_id": subscription.customer_id,
                    "price_id": subscription.price_id,
                    "provider_id": subscription.provider_id,
                    "status": subscription.status.value,
                    "quantity": subscription.quantity,
                    "trial_days": subscription.trial_days,
                    "billing_cycle_anchor": to_naive_utc(subscription.billing_cycle_anchor),
                    "proration_behavior": (
                        subscription.proration_behavior.value
                        if subscription.proration_behavior
                        else None
                    ),
                    "subscription_metadata": subscription.metadata,
                },
            )
            return _to_subscription(row)

    async def update_subscription(
        self, id: UUID, subscription: schemas.SubscriptionUpdate
    ) -> schemas.Subscription:
        """Update a subscription without checking the status transition."""
        async with self.session_factory() as db:
            row = await crud.subscription.get(db, id)
            if row is None:
                raise NotFoundException(f"SUBSCRIPTION_NOT_FOUND: {id}")
            values = _column_values(
                subscription, crud.subscription.field_aliases, models.Subscription
            )
            row = await crud.subscription.update(db, db_obj=row, obj_in=values)
            return _to_subscription(row)

    async def cancel_subscription(self, id: UUID) -> None:
        """Set a subscription's status to canceled."""
        async with self.session_factory() as db:
            row = await crud.subscription.get(db, id)
            if row is None:
                raise NotFoundException(f"SUBSCRIPTION_NOT_FOUND: {id}")
            await crud.subscription.update(
                db, db_obj=row, obj_in={"status": schemas.SubscriptionStatus.CANCELED.value}
            )

    async def list_subscriptions(
        self, query: Optional[schemas.QueryParams] = None
    ) -> list[schemas.Subscription]:
        """List subscriptions."""
        query = query or schemas.QueryParams()
        async with self.session_factory() as db:
            rows = await crud.subscription.get_multi(db, **query.model_dump())
            return [_to_subscription(row) for row in rows]

    # ------------------------------------------------------------------
    # Webhook deduplication
    # ------------------------------------------------------------------

    async def has_processed_event(self, event_id: str) -> bool:
        """Whether a vendor event was already applied."""
        async with self.session_factory() as db:
            return await crud.webhook_event.get_by_event_id(db, event_id=event_id) is not None

    async def record_processed_event(self, event_id: str, event_type: str) -> None:
        """Remember that a vendor event was applied."""
        async with self.session_factory() as db:
            try:
                await crud.webhook_event.create(
                    db, obj_in={"event_id": event_id, "event_type": event_type}
                )
            except IntegrityError:
                # A concurrent delivery of the same event recorded it first
                await db.rollback()
                logger.info(f"Webhook event {event_id} was already recorded")
