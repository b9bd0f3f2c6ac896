"""Models for the application."""

from ._base import Base
from .customer import Customer
from .lead import Lead
from .membership import Membership
from .plan import Plan
from .price import Price
from .submission import Submission
from .subscription import Subscription
from .webhook_event import WebhookEvent

__all__ = [
    "Base",
    "Customer",
    "Lead",
    "Membership",
    "Plan",
    "Price",
    "Submission",
    "Subscription",
    "WebhookEvent",
]
