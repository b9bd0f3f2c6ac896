"""Billing domain schemas.

Shapes shared by the payment facade and both of its adapters. Everything here is
plain pydantic and JSON-serializable; the vendor and the database are translated
into these types at the adapter boundary.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class CyclePeriod(str, Enum):
    """Billing interval and usage reset cycle."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, Enum):
    """Subscription status as reported by the payment vendor."""

    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class ProrationBehavior(str, Enum):
    """How plan changes and cancellations are prorated."""

    CREATE_PRORATIONS = "create_prorations"
    NONE = "none"


# Statuses that make a subscription the customer's current one
ACTIVE_SUBSCRIPTION_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.UNPAID,
    }
)


# ---------------------------------------------------------------------------
# Plan features
# ---------------------------------------------------------------------------


class PlanFeatureBase(BaseModel):
    """Fields shared by every feature kind."""

    slug: str = Field(..., description="Stable feature key, e.g. 'leads'")
    name: str = Field(..., description="Display name")
    description: Optional[str] = None
    enabled: bool = Field(default=True, description="A disabled feature blocks usage")


class MeteredFeature(PlanFeatureBase):
    """A feature whose usage is counted against an optional limit.

    Usage is the number of rows in ``table`` owned by the organization, created
    inside the current ``cycle`` window when a cycle is set. No limit means unlimited.
    """

    kind: Literal["metered"] = "metered"
    table: Optional[str] = Field(None, description="Usage counter name in the registry")
    limit: Optional[int] = Field(None, ge=0, description="Maximum usage per cycle")
    cycle: Optional[CyclePeriod] = Field(None, description="Usage reset cycle")


class ToggleFeature(PlanFeatureBase):
    """An on/off capability without usage accounting."""

    kind: Literal["toggle"] = "toggle"


PlanFeature = Annotated[Union[MeteredFeature, ToggleFeature], Field(discriminator="kind")]

_METERED_KEYS = ("table", "limit", "cycle")


def infer_feature_kind(raw: Any) -> Any:
    """Tag a stored feature that predates the ``kind`` discriminator."""
    if isinstance(raw, dict) and "kind" not in raw:
        is_metered = any(raw.get(key) is not None for key in _METERED_KEYS)
        return {**raw, "kind": "metered" if is_metered else "toggle"}
    return raw


class PlanMetadata(BaseModel):
    """Structured plan metadata: the ordered feature list plus free-form extras."""

    model_config = {"extra": "allow"}

    features: List[PlanFeature] = Field(default_factory=list)

    @field_validator("features", mode="before")
    @classmethod
    def tag_features(cls, v: Any) -> Any:
        """Classify features stored without a ``kind``."""
        if v is None:
            return []
        if isinstance(v, list):
            return [infer_feature_kind(item) for item in v]
        return v

    def get_feature(self, slug: str) -> Optional[Union[MeteredFeature, ToggleFeature]]:
        """Return the feature with the given slug, a missing feature counts as disabled."""
        return next((feature for feature in self.features if feature.slug == slug), None)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Price(BaseModel):
    """A recurring price.

    Vendor-side lookups return prices without a local ``id`` or ``plan_id``.
    """

    id: Optional[UUID] = None
    provider_id: Optional[str] = None
    plan_id: Optional[UUID] = None
    plan_provider_id: Optional[str] = None
    slug: str
    amount: int = Field(..., ge=0, description="Amount in minor currency units")
    currency: str
    interval: CyclePeriod
    interval_count: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True
    created_at: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        """Currencies are compared case-insensitively."""
        return v.lower()

    @property
    def signature(self) -> tuple:
        """Identity of a price for reconciliation purposes."""
        return price_signature(self.amount, self.currency, self.interval, self.interval_count)


def price_signature(
    amount: int, currency: str, interval: Union[CyclePeriod, str], interval_count: int
) -> tuple:
    """Build the (amount, currency, interval, interval_count) reconciliation key."""
    return (amount, currency.lower(), CyclePeriod(interval).value, interval_count)


class Plan(BaseModel):
    """A subscription plan with its prices."""

    id: Optional[UUID] = None
    provider_id: Optional[str] = None
    slug: str
    name: str
    description: Optional[str] = None
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)
    prices: List[Price] = Field(default_factory=list)
    archived: bool = False
    created_at: Optional[datetime] = None


class Subscription(BaseModel):
    """A subscription of a customer to a price."""

    id: Optional[UUID] = None
    provider_id: Optional[str] = None
    customer_id: UUID
    price_id: UUID
    quantity: int = 1
    trial_days: Optional[int] = None
    status: SubscriptionStatus
    billing_cycle_anchor: Optional[datetime] = None
    proration_behavior: Optional[ProrationBehavior] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class Usage(BaseModel):
    """Computed usage of one metered feature in its current cycle window."""

    slug: str
    name: str
    description: Optional[str] = None
    usage: int = 0
    limit: Optional[int] = None
    cycle: Optional[CyclePeriod] = None
    last_reset: datetime
    next_reset: datetime


class CustomerPlan(BaseModel):
    """The plan of a customer's active subscription, with the subscribed price."""

    id: UUID
    provider_id: Optional[str] = None
    slug: str
    name: str
    description: Optional[str] = None
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)
    price: Price


class CustomerSubscription(BaseModel):
    """A customer's active subscription with its usage computed inline."""

    id: UUID
    provider_id: Optional[str] = None
    status: SubscriptionStatus
    trial_days: Optional[int] = None
    usage: List[Usage] = Field(default_factory=list)
    plan: CustomerPlan


class Customer(BaseModel):
    """A billable organization.

    ``id`` is None for customers read back from the vendor.
    """

    id: Optional[UUID] = None
    provider_id: Optional[str] = None
    organization_id: str
    name: str
    email: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    subscription: Optional[CustomerSubscription] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Write models
# ---------------------------------------------------------------------------


class CustomerDTO(BaseModel):
    """Customer creation payload, ``reference_id`` is the organization id."""

    provider_id: Optional[str] = None
    reference_id: str
    name: str
    email: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CustomerUpdate(BaseModel):
    """Customer update schema."""

    name: Optional[str] = None
    email: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class DeclaredPrice(BaseModel):
    """A price declared in the plan catalog."""

    slug: str
    amount: int = Field(..., ge=0)
    currency: str
    interval: CyclePeriod = CyclePeriod.MONTH
    interval_count: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        """Currencies are compared case-insensitively."""
        return v.lower()

    @property
    def signature(self) -> tuple:
        """Identity of a price for reconciliation purposes."""
        return price_signature(self.amount, self.currency, self.interval, self.interval_count)


class DeclaredPlan(BaseModel):
    """A plan declared in the plan catalog, the source of truth for sync."""

    slug: str
    name: str
    description: Optional[str] = None
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)
    prices: List[DeclaredPrice] = Field(default_factory=list)


class PlanDTO(BaseModel):
    """Plan creation payload for the database."""

    provider_id: Optional[str] = None
    slug: str
    name: str
    description: Optional[str] = None
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)


class PlanUpdate(BaseModel):
    """Plan update schema."""

    provider_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[PlanMetadata] = None
    archived: Optional[bool] = None


class PriceDTO(BaseModel):
    """Price creation payload.

    The vendor needs ``plan_provider_id``; the database needs ``plan_id``.
    """

    provider_id: Optional[str] = None
    plan_id: Optional[UUID] = None
    plan_provider_id: Optional[str] = None
    slug: str
    amount: int = Field(..., ge=0)
    currency: str
    interval: CyclePeriod
    interval_count: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True


class PriceUpdate(BaseModel):
    """Price update schema, a price's amount and interval never change."""

    metadata: Optional[Dict[str, Any]] = None
    active: Optional[bool] = None


class SubscriptionDTO(BaseModel):
    """Subscription creation payload.

    Carries local ids for the database and vendor ids for the payment vendor.
    """

    provider_id: Optional[str] = None
    customer_id: UUID
    customer_provider_id: Optional[str] = None
    price_id: UUID
    price_provider_id: Optional[str] = None
    quantity: int = 1
    trial_days: Optional[int] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    billing_cycle_anchor: Optional[datetime] = None
    proration_behavior: Optional[ProrationBehavior] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionUpdate(BaseModel):
    """Subscription update schema, any status is accepted."""

    price_id: Optional[UUID] = None
    price_provider_id: Optional[str] = None
    quantity: Optional[int] = None
    trial_days: Optional[int] = None
    status: Optional[SubscriptionStatus] = None
    billing_cycle_anchor: Optional[datetime] = None
    proration_behavior: Optional[ProrationBehavior] = None
    metadata: Optional[Dict[str, Any]] = None


class CreateSubscriptionParams(BaseModel):
    """Parameters of PaymentProvider.create_subscription."""

    customer_id: str = Field(..., description="Local id, organization id or vendor id")
    plan: str = Field(..., description="Plan slug")
    cycle: CyclePeriod = CyclePeriod.MONTH
    quantity: int = 1
    trial_days: Optional[int] = Field(None, ge=0)
    billing_cycle_anchor: Optional[datetime] = None
    proration_behavior: Optional[ProrationBehavior] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CancelSubscriptionParams(BaseModel):
    """Immediate cancellation, or a scheduled one when ``cancel_at`` is set."""

    cancel_at: Optional[datetime] = None
    invoice_now: bool = False
    prorate: bool = False


class CheckoutSessionParams(BaseModel):
    """Parameters of PaymentProvider.create_checkout_session."""

    customer_id: str
    plan: str
    cycle: CyclePeriod = CyclePeriod.MONTH
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class QuotaInfo(BaseModel):
    """Quota of one feature for one customer."""

    feature: str
    enabled: bool
    limit: Optional[int] = None
    usage: int = 0
    remaining: Optional[int] = None
    unlimited: bool = False


class QueryParams(BaseModel):
    """Filter, sort and paginate shape of the list operations.

    ``where`` is an equality filter over entity fields.
    """

    where: Dict[str, Any] = Field(default_factory=dict)
    order_by: Optional[str] = None
    order_direction: Literal["asc", "desc"] = "asc"
    limit: int = Field(10, ge=0)
    offset: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Facade options
# ---------------------------------------------------------------------------


class TrialOptions(BaseModel):
    """Trial applied to the starter subscription."""

    enabled: bool = False
    duration: int = Field(0, ge=0, description="Trial length in days")


class PlanCatalog(BaseModel):
    """Declared plans and the slug new customers are subscribed to."""

    default: Optional[str] = None
    options: List[DeclaredPlan] = Field(default_factory=list)

    def get(self, slug: str) -> Optional[DeclaredPlan]:
        """Return the declared plan with the given slug."""
        return next((plan for plan in self.options if plan.slug == slug), None)

    def feature_slugs(self) -> set[str]:
        """Every feature slug declared across the catalog."""
        return {feature.slug for plan in self.options for feature in plan.metadata.features}


class SubscriptionOptions(BaseModel):
    """Subscription provisioning options."""

    enabled: bool = False
    trial: TrialOptions = Field(default_factory=TrialOptions)
    plans: PlanCatalog = Field(default_factory=PlanCatalog)


class BillingPaths(BaseModel):
    """Absolute redirect URLs used by checkout and portal sessions."""

    checkout_success_url: Optional[str] = None
    checkout_cancel_url: Optional[str] = None
    portal_return_url: Optional[str] = None
    end_subscription_url: Optional[str] = None


class PaymentOptions(BaseModel):
    """Options of the payment facade."""

    subscriptions: SubscriptionOptions = Field(default_factory=SubscriptionOptions)
    paths: BillingPaths = Field(default_factory=BillingPaths)


class SyncReport(BaseModel):
    """Writes performed by one plan sync."""

    plans_created: int = 0
    plans_updated: int = 0
    prices_created: int = 0
    prices_updated: int = 0

    @property
    def total_writes(self) -> int:
        """Number of plan and price writes."""
        return self.plans_created + self.plans_updated + self.prices_created + self.prices_updated


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class CheckoutSessionRequest(BaseModel):
    """Request to start a checkout for a plan."""

    plan: str = Field(..., description="Plan slug")
    cycle: CyclePeriod = CyclePeriod.MONTH
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    """Checkout URL to redirect the user to."""

    checkout_url: str


class CustomerPortalRequest(BaseModel):
    """Request to open the billing portal."""

    return_url: Optional[str] = None


class CustomerPortalResponse(BaseModel):
    """Billing portal URL to redirect the user to."""

    portal_url: str


class FeatureAccess(BaseModel):
    """Whether the caller's plan enables a feature."""

    feature: str
    enabled: bool


class SubscriptionInfo(BaseModel):
    """The caller's customer record and the plans it can move to."""

    customer: Customer
    plans: List[Plan] = Field(default_factory=list)
    upgrade_url: Optional[str] = Field(
        None, description="Where to send a customer whose subscription has ended"
    )


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
