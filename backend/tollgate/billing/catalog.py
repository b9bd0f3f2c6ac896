"""Built-in plan catalog and facade options.

The catalog is configuration as code: ``PaymentProvider.sync`` makes the vendor
and the database match it. Deployments can replace it with a JSON file through
``BILLING_PLANS_FILE``.
"""

import json
from pathlib import Path
from typing import Any, Union

from pydantic import ValidationError

from tollgate.core.config import Settings
from tollgate.core.exceptions import TollgateException, unpack_validation_error
from tollgate.core.logging import logger
from tollgate.schemas.billing import (
    BillingPaths,
    DeclaredPlan,
    PaymentOptions,
    PlanCatalog,
    SubscriptionOptions,
    TrialOptions,
)


def _features(seats: int, leads: int, submissions: int, chat: bool, integrations: bool) -> list:
    return [
        {
            "slug": "seats",
            "name": "Seats",
            "description": f"Up to {seats} team members",
            "table": "member",
            "limit": seats,
        },
        {
            "slug": "leads",
            "name": "Leads",
            "description": f"Capture and manage up to {leads} leads per month",
            "table": "lead",
            "limit": leads,
            "cycle": "month",
        },
        {
            "slug": "submissions",
            "name": "Submissions",
            "description": f"Receive up to {submissions} form submissions per month",
            "table": "submission",
            "limit": submissions,
            "cycle": "month",
        },
        {
            "slug": "mail-support",
            "name": "Email Support",
            "description": "Email support during business hours",
            "enabled": True,
        },
        {
            "slug": "chat-support",
            "name": "Chat Support",
            "description": "Real-time chat support",
            "enabled": chat,
        },
        {
            "slug": "integrations",
            "name": "Advanced Integrations",
            "description": "Connect with other tools and automate your processes",
            "enabled": integrations,
        },
    ]


def _prices(slug: str, monthly: int, yearly: int) -> list:
    return [
        {"slug": f"{slug}-monthly", "amount": monthly, "currency": "usd", "interval": "month"},
        {"slug": f"{slug}-yearly", "amount": yearly, "currency": "usd", "interval": "year"},
    ]


FREE_PLAN = DeclaredPlan.model_validate(
    {
        "slug": "free",
        "name": "Free",
        "description": "Start for free and explore the essential features",
        "metadata": {"features": _features(1, 100, 1000, chat=False, integrations=False)},
        "prices": _prices("free", 0, 0),
    }
)

PLUS_PLAN = DeclaredPlan.model_validate(
    {
        "slug": "plus",
        "name": "Plus",
        "description": "For small teams getting started and needing more power",
        "metadata": {"features": _features(5, 2500, 25000, chat=True, integrations=False)},
        "prices": _prices("plus", 2000, 20000),
    }
)

PRO_PLAN = DeclaredPlan.model_validate(
    {
        "slug": "pro",
        "name": "Pro",
        "description": "Enhanced limits and integrations for growing teams",
        "metadata": {"features": _features(20, 10000, 100000, chat=True, integrations=True)},
        "prices": _prices("pro", 9900, 99000),
    }
)

DEFAULT_PLANS = [FREE_PLAN, PLUS_PLAN, PRO_PLAN]


def load_catalog(path: Union[str, Path]) -> list[DeclaredPlan]:
    """Load declared plans from a JSON file.

    The file holds either a list of plans or an object with a ``plans`` list.

    Args:
    ----
        path (Union[str, Path]): Path of the JSON file.

    Returns:
    -------
        list[DeclaredPlan]: The declared plans, in file order.

    Raises:
    ------
        TollgateException: If the file cannot be read or does not describe plans.

    """
    try:
        raw: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise TollgateException(f"Could not read plan catalog {path}: {e}") from e

    if isinstance(raw, dict):
        raw = raw.get("plans", [])
    if not isinstance(raw, list):
        raise TollgateException(f"Plan catalog {path} must contain a list of plans")

    try:
        plans = [DeclaredPlan.model_validate(item) for item in raw]
    except ValidationError as e:
        raise TollgateException(
            f"Invalid plan catalog {path}: {unpack_validation_error(e)}"
        ) from e

    slugs = [plan.slug for plan in plans]
    duplicates = sorted({slug for slug in slugs if slugs.count(slug) > 1})
    if duplicates:
        raise TollgateException(f"Duplicate plan slugs in {path}: {', '.join(duplicates)}")

    logger.info(f"Loaded {len(plans)} plans from {path}")
    return plans


def build_payment_options(settings: Settings) -> PaymentOptions:
    """Build the facade options from application settings."""
    plans = load_catalog(settings.BILLING_PLANS_FILE) if settings.BILLING_PLANS_FILE else None

    return PaymentOptions(
        subscriptions=SubscriptionOptions(
            enabled=settings.BILLING_SUBSCRIPTIONS_ENABLED,
            trial=TrialOptions(
                enabled=settings.BILLING_TRIAL_ENABLED,
                duration=settings.BILLING_TRIAL_DURATION_DAYS,
            ),
            plans=PlanCatalog(
                default=settings.BILLING_DEFAULT_PLAN,
                options=plans if plans is not None else DEFAULT_PLANS,
            ),
        ),
        paths=BillingPaths(
            checkout_success_url=settings.absolute_url(settings.CHECKOUT_SUCCESS_URL),
            checkout_cancel_url=settings.absolute_url(settings.CHECKOUT_CANCEL_URL),
            portal_return_url=settings.absolute_url(settings.PORTAL_RETURN_URL),
            end_subscription_url=settings.absolute_url(settings.END_SUBSCRIPTION_URL),
        ),
    )
