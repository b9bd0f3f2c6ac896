"""Normalized webhook events.

Vendor adapters translate their own webhook payloads into exactly one of the
variants below; the payment facade dispatches on the variant class.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from tollgate.schemas.billing import CyclePeriod, SubscriptionStatus


class WebhookErrorData(BaseModel):
    """Why a webhook could not be verified or parsed."""

    message: str


class CustomerEventData(BaseModel):
    """Customer fields carried by customer.created and customer.updated."""

    provider_id: str
    organization_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CustomerDeletedData(BaseModel):
    """Customer reference carried by customer.deleted."""

    provider_id: str
    organization_id: Optional[str] = None


class PlanEventData(BaseModel):
    """Product fields carried by plan events."""

    provider_id: str
    slug: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    active: bool = True


class PriceEventData(BaseModel):
    """Price fields carried by price events."""

    provider_id: str
    plan_provider_id: Optional[str] = None
    slug: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    interval: Optional[CyclePeriod] = None
    interval_count: int = 1
    active: bool = True


class SubscriptionEventData(BaseModel):
    """Subscription fields carried by subscription created and updated events."""

    provider_id: str
    customer_provider_id: str
    price_provider_id: Optional[str] = None
    status: SubscriptionStatus
    quantity: int = 1
    trial_days: Optional[int] = None
    billing_cycle_anchor: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionDeletedData(BaseModel):
    """Subscription reference carried by subscription deleted events."""

    provider_id: str
    customer_provider_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.CANCELED


class SubscriptionTrialWillEndData(BaseModel):
    """Subscription reference carried by trial_will_end events."""

    provider_id: str
    customer_provider_id: Optional[str] = None
    trial_end: Optional[datetime] = None


class InvoiceEventData(BaseModel):
    """Invoice fields carried by invoice payment events."""

    provider_id: str
    customer_provider_id: Optional[str] = None
    subscription_provider_id: Optional[str] = None
    amount: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    paid: bool = False


class _EventBase(BaseModel):
    event_id: Optional[str] = Field(None, description="Vendor event id, used for deduplication")


class WebhookErrorEvent(_EventBase):
    """Signature verification or payload parsing failed."""

    event: Literal["error"] = "error"
    data: WebhookErrorData


class CustomerCreatedEvent(_EventBase):
    """A customer was created on the vendor side."""

    event: Literal["customer.created"] = "customer.created"
    data: CustomerEventData


class CustomerUpdatedEvent(_EventBase):
    """A customer was updated on the vendor side."""

    event: Literal["customer.updated"] = "customer.updated"
    data: CustomerEventData


class CustomerDeletedEvent(_EventBase):
    """A customer was deleted on the vendor side."""

    event: Literal["customer.deleted"] = "customer.deleted"
    data: CustomerDeletedData


class PlanCreatedEvent(_EventBase):
    """A plan was created on the vendor side."""

    event: Literal["plan.created"] = "plan.created"
    data: PlanEventData


class PlanUpdatedEvent(_EventBase):
    """A plan was updated on the vendor side."""

    event: Literal["plan.updated"] = "plan.updated"
    data: PlanEventData


class PlanDeletedEvent(_EventBase):
    """A plan was deleted on the vendor side."""

    event: Literal["plan.deleted"] = "plan.deleted"
    data: PlanEventData


class PriceCreatedEvent(_EventBase):
    """A price was created on the vendor side."""

    event: Literal["price.created"] = "price.created"
    data: PriceEventData


class PriceUpdatedEvent(_EventBase):
    """A price was updated on the vendor side."""

    event: Literal["price.updated"] = "price.updated"
    data: PriceEventData


class PriceDeletedEvent(_EventBase):
    """A price was deleted on the vendor side."""

    event: Literal["price.deleted"] = "price.deleted"
    data: PriceEventData


class SubscriptionCreatedEvent(_EventBase):
    """A subscription was created, e.g. by a completed checkout."""

    event: Literal["customer.subscription.created"] = "customer.subscription.created"
    data: SubscriptionEventData


class SubscriptionUpdatedEvent(_EventBase):
    """A subscription changed price, quantity or status."""

    event: Literal["customer.subscription.updated"] = "customer.subscription.updated"
    data: SubscriptionEventData


class SubscriptionDeletedEvent(_EventBase):
    """A subscription ended."""

    event: Literal["customer.subscription.deleted"] = "customer.subscription.deleted"
    data: SubscriptionDeletedData


class SubscriptionTrialWillEndEvent(_EventBase):
    """A trial ends soon."""

    event: Literal["customer.subscription.trial_will_end"] = (
        "customer.subscription.trial_will_end"
    )
    data: SubscriptionTrialWillEndData


class InvoicePaymentSucceededEvent(_EventBase):
    """An invoice was paid."""

    event: Literal["invoice.payment_succeeded"] = "invoice.payment_succeeded"
    data: InvoiceEventData


class InvoicePaymentFailedEvent(_EventBase):
    """An invoice payment attempt failed."""

    event: Literal["invoice.payment_failed"] = "invoice.payment_failed"
    data: InvoiceEventData


EVENT_VARIANTS = (
    WebhookErrorEvent,
    CustomerCreatedEvent,
    CustomerUpdatedEvent,
    CustomerDeletedEvent,
    PlanCreatedEvent,
    PlanUpdatedEvent,
    PlanDeletedEvent,
    PriceCreatedEvent,
    PriceUpdatedEvent,
    PriceDeletedEvent,
    SubscriptionCreatedEvent,
    SubscriptionUpdatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionTrialWillEndEvent,
    InvoicePaymentSucceededEvent,
    InvoicePaymentFailedEvent,
)

NormalizedEvent = Annotated[
    Union[
        WebhookErrorEvent,
        CustomerCreatedEvent,
        CustomerUpdatedEvent,
        CustomerDeletedEvent,
        PlanCreatedEvent,
        PlanUpdatedEvent,
        PlanDeletedEvent,
        PriceCreatedEvent,
        PriceUpdatedEvent,
        PriceDeletedEvent,
        SubscriptionCreatedEvent,
        SubscriptionUpdatedEvent,
        SubscriptionDeletedEvent,
        SubscriptionTrialWillEndEvent,
        InvoicePaymentSucceededEvent,
        InvoicePaymentFailedEvent,
    ],
    Field(discriminator="event"),
]


class WebhookResult(BaseModel):
    """HTTP status and body the webhook route responds with."""

    status_code: int = 200
    body: Dict[str, Any] = Field(default_factory=dict)
