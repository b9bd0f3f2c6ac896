"""Lifecycle hooks fired by the payment facade."""

from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Optional

EventCallback = Callable[[Any], Awaitable[None]]


@dataclass
class PaymentEvents:
    """Optional async callbacks, each receives the affected entity or event.

    Hooks run after the vendor and database writes of their operation succeeded.
    ``on_webhook_received`` receives every parsed webhook event.
    """

    on_customer_created: Optional[EventCallback] = None
    on_customer_updated: Optional[EventCallback] = None
    on_customer_deleted: Optional[EventCallback] = None

    on_subscription_created: Optional[EventCallback] = None
    on_subscription_updated: Optional[EventCallback] = None
    on_subscription_canceled: Optional[EventCallback] = None
    on_subscription_deleted: Optional[EventCallback] = None
    on_subscription_trial_will_end: Optional[EventCallback] = None

    on_invoice_payment_succeeded: Optional[EventCallback] = None
    on_invoice_payment_failed: Optional[EventCallback] = None

    on_plan_created: Optional[EventCallback] = None
    on_plan_updated: Optional[EventCallback] = None
    on_plan_deleted: Optional[EventCallback] = None

    on_price_created: Optional[EventCallback] = None
    on_price_updated: Optional[EventCallback] = None
    on_price_deleted: Optional[EventCallback] = None

    on_webhook_received: Optional[EventCallback] = None

    @classmethod
    def hook_names(cls) -> list[str]:
        """Names of all hooks."""
        return [field.name for field in fields(cls)]

    async def emit(self, hook: str, payload: Any) -> None:
        """Invoke a hook if it is registered."""
        callback = getattr(self, hook)
        if callback is not None:
            await callback(payload)
