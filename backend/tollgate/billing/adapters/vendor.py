"""Payment vendor adapter interface."""

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from tollgate import schemas


class PaymentVendorAdapter(ABC):
    """Contract every payment vendor integration satisfies.

    Vendor adapters speak vendor ids only. Plans and customers are tagged in vendor
    metadata (``slug``, ``referenceId``) so they can be found again, but the local
    database stays the source of truth for the id mapping.
    """

    # Customers

    @abstractmethod
    async def create_customer(self, customer: schemas.CustomerDTO) -> schemas.Customer:
        """Create a customer tagged with its reference id."""
        pass

    @abstractmethod
    async def update_customer(
        self, provider_id: str, customer: schemas.CustomerUpdate
    ) -> schemas.Customer:
        """Update a customer's name, email or metadata."""
        pass

    @abstractmethod
    async def delete_customer(self, provider_id: str) -> None:
        """Delete a customer."""
        pass

    @abstractmethod
    async def find_customer_by_reference_id(
        self, reference_id: str
    ) -> Optional[schemas.Customer]:
        """Find a customer by the organization id stored in its metadata."""
        pass

    # Plans

    @abstractmethod
    async def create_plan(self, plan: schemas.DeclaredPlan) -> str:
        """Create a plan, or reactivate the one carrying the same slug. Returns its vendor id."""
        pass

    @abstractmethod
    async def update_plan(self, provider_id: str, plan: schemas.PlanUpdate) -> None:
        """Update a plan's name, description or metadata."""
        pass

    @abstractmethod
    async def archive_plan(self, provider_id: str) -> None:
        """Deactivate a plan."""
        pass

    @abstractmethod
    async def find_plan_by_slug(self, slug: str) -> Optional[schemas.Plan]:
        """Find a plan by the slug stored in its metadata."""
        pass

    # Prices

    @abstractmethod
    async def create_price(self, price: schemas.PriceDTO) -> str:
        """Create a recurring price for ``price.plan_provider_id``. Returns its vendor id."""
        pass

    @abstractmethod
    async def update_price(self, provider_id: str, price: schemas.PriceUpdate) -> None:
        """Update a price's metadata or active flag."""
        pass

    @abstractmethod
    async def archive_price(self, provider_id: str) -> None:
        """Deactivate a price."""
        pass

    @abstractmethod
    async def find_prices_by_plan_id(self, plan_provider_id: str) -> list[schemas.Price]:
        """List the prices of a plan."""
        pass

    # Subscriptions

    @abstractmethod
    async def create_subscription(self, subscription: schemas.SubscriptionDTO) -> str:
        """Create a subscription. Returns its vendor id."""
        pass

    @abstractmethod
    async def update_subscription(
        self, provider_id: str, subscription: schemas.SubscriptionUpdate
    ) -> None:
        """Swap the price or change the quantity or metadata of a subscription."""
        pass

    @abstractmethod
    async def cancel_subscription(
        self, provider_id: str, params: Optional[schemas.CancelSubscriptionParams] = None
    ) -> None:
        """Cancel now, or at ``params.cancel_at`` when set."""
        pass

    # Sessions

    @abstractmethod
    async def create_billing_portal(self, customer_provider_id: str, return_url: str) -> str:
        """Create a billing portal session. Returns its URL."""
        pass

    @abstractmethod
    async def create_checkout_session(
        self,
        customer_provider_id: str,
        price_provider_id: str,
        success_url: str,
        cancel_url: str,
        subscription_provider_id: Optional[str] = None,
        trial_days: Optional[int] = None,
    ) -> str:
        """Create a checkout URL.

        New purchases get a checkout page. With an existing subscription the URL is a
        billing portal deep link that confirms the change to the new price.
        """
        pass

    # Webhooks

    @abstractmethod
    async def handle(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Optional[schemas.NormalizedEvent]:
        """Verify and normalize a webhook delivery.

        Returns None for event types that are not modeled, and a WebhookErrorEvent
        when the signature or the payload is invalid. Never raises for either case.
        """
        pass
