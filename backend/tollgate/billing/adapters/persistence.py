"""Billing persistence adapter interface."""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from tollgate import schemas


class PaymentDatabaseAdapter(ABC):
    """Contract for storing normalized billing entities.

    Lookups taking a ``ref`` accept the local id or the vendor id; customers are also
    found by organization id. Missing rows are reported as None, never raised.
    """

    # Customers

    @abstractmethod
    async def create_customer(self, customer: schemas.CustomerDTO) -> schemas.Customer:
        """Store a customer, ``customer.provider_id`` holds the vendor id."""
        pass

    @abstractmethod
    async def update_customer(
        self, id: UUID, customer: schemas.CustomerUpdate
    ) -> schemas.Customer:
        """Update a customer."""
        pass

    @abstractmethod
    async def delete_customer(self, id: UUID) -> None:
        """Delete a customer and its subscriptions."""
        pass

    @abstractmethod
    async def get_customer_by_id(self, ref: str) -> Optional[schemas.Customer]:
        """Get a customer with its active subscription, plan, price and usage."""
        pass

    @abstractmethod
    async def list_customers(
        self, query: Optional[schemas.QueryParams] = None
    ) -> list[schemas.Customer]:
        """List customers, without subscriptions."""
        pass

    @abstractmethod
    async def get_customer_usage(self, customer_id: str, feature: str) -> int:
        """Count a customer's usage of a feature in its current cycle.

        Returns 0 when there is no active subscription, no such feature, no table
        or no registered counter for the table.
        """
        pass

    # Plans

    @abstractmethod
    async def list_plans(self, query: Optional[schemas.QueryParams] = None) -> list[schemas.Plan]:
        """List plans with their prices."""
        pass

    @abstractmethod
    async def create_plan(self, plan: schemas.PlanDTO) -> schemas.Plan:
        """Store a plan."""
        pass

    @abstractmethod
    async def update_plan(self, slug: str, plan: schemas.PlanUpdate) -> schemas.Plan:
        """Update the plan with the given slug."""
        pass

    @abstractmethod
    async def archive_plan(self, id: UUID) -> None:
        """Mark a plan as archived."""
        pass

    @abstractmethod
    async def get_plan_by_slug(self, slug: str) -> Optional[schemas.Plan]:
        """Get a plan with its prices by slug."""
        pass

    @abstractmethod
    async def get_plan_by_id(self, id: UUID) -> Optional[schemas.Plan]:
        """Get a plan with its prices by local id."""
        pass

    @abstractmethod
    async def get_plan_by_provider_id(self, provider_id: str) -> Optional[schemas.Plan]:
        """Get a plan with its prices by vendor id."""
        pass

    # Prices

    @abstractmethod
    async def get_price_by_id(self, ref: str) -> Optional[schemas.Price]:
        """Get a price by local id or vendor id."""
        pass

    @abstractmethod
    async def create_price(self, price: schemas.PriceDTO) -> schemas.Price:
        """Store a price, ``price.plan_id`` must be set."""
        pass

    @abstractmethod
    async def update_price(self, id: UUID, price: schemas.PriceUpdate) -> schemas.Price:
        """Update a price's metadata or active flag."""
        pass

    @abstractmethod
    async def delete_price(self, id: UUID) -> None:
        """Delete a price."""
        pass

    # Subscriptions

    @abstractmethod
    async def get_subscription_by_id(self, ref: str) -> Optional[schemas.Subscription]:
        """Get a subscription by local id or vendor id."""
        pass

    @abstractmethod
    async def create_subscription(
        self, subscription: schemas.SubscriptionDTO
    ) -> schemas.Subscription:
        """Store a subscription."""
        pass

    @abstractmethod
    async def update_subscription(
        self, id: UUID, subscription: schemas.SubscriptionUpdate
    ) -> schemas.Subscription:
        """Update a subscription, any status is accepted."""
        pass

    @abstractmethod
    async def cancel_subscription(self, id: UUID) -> None:
        """Set a subscription's status to canceled."""
        pass

    @abstractmethod
    async def list_subscriptions(
        self, query: Optional[schemas.QueryParams] = None
    ) -> list[schemas.Subscription]:
        """List subscriptions."""
        pass

    # Webhook deduplication

    @abstractmethod
    async def has_processed_event(self, event_id: str) -> bool:
        """Whether a vendor event was already applied."""
        pass

    @abstractmethod
    async def record_processed_event(self, event_id: str, event_type: str) -> None:
        """Remember that a vendor event was applied."""
        pass
