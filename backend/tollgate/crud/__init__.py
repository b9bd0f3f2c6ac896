"""CRUD operations for the application."""

from .crud_customer import customer
from .crud_plan import plan
from .crud_price import price
from .crud_subscription import subscription
from .crud_webhook_event import webhook_event

__all__ = [
    "customer",
    "plan",
    "price",
    "subscription",
    "webhook_event",
]
