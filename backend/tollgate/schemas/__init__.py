# flake8: noqa: F401
"""Schemas for the application."""

from .billing import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    BillingPaths,
    CancelSubscriptionParams,
    CheckoutSessionParams,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CreateSubscriptionParams,
    Customer,
    CustomerDTO,
    CustomerPlan,
    CustomerPortalRequest,
    CustomerPortalResponse,
    CustomerSubscription,
    CustomerUpdate,
    CyclePeriod,
    DeclaredPlan,
    DeclaredPrice,
    FeatureAccess,
    MessageResponse,
    MeteredFeature,
    PaymentOptions,
    Plan,
    PlanCatalog,
    PlanDTO,
    PlanFeature,
    PlanMetadata,
    PlanUpdate,
    Price,
    PriceDTO,
    PriceUpdate,
    ProrationBehavior,
    QueryParams,
    QuotaInfo,
    Subscription,
    SubscriptionDTO,
    SubscriptionInfo,
    SubscriptionOptions,
    SubscriptionStatus,
    SubscriptionUpdate,
    SyncReport,
    ToggleFeature,
    TrialOptions,
    Usage,
)
from .billing_events import (
    EVENT_VARIANTS,
    CustomerCreatedEvent,
    CustomerDeletedEvent,
    CustomerUpdatedEvent,
    InvoicePaymentFailedEvent,
    InvoicePaymentSucceededEvent,
    NormalizedEvent,
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
