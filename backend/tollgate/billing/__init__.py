"""Billing module for Tollgate.

A vendor-agnostic payment facade over two adapters:
- A payment vendor adapter (Stripe) that owns money movement and webhooks
- A persistence adapter (SQLAlchemy) that mirrors billing state locally

Usage:
    from tollgate.billing import PaymentProvider

    provider = PaymentProvider(adapter=vendor, database=persistence, options=options)
    customer = await provider.create_customer(customer_in)
"""

from tollgate.billing.catalog import DEFAULT_PLANS, build_payment_options, load_catalog
from tollgate.billing.events import PaymentEvents
from tollgate.billing.provider import PaymentProvider
from tollgate.billing.usage import UsageRegistry, cycle_window, default_usage_registry

__all__ = [
    "DEFAULT_PLANS",
    "PaymentEvents",
    "PaymentProvider",
    "UsageRegistry",
    "build_payment_options",
    "cycle_window",
    "default_usage_registry",
    "load_catalog",
]
