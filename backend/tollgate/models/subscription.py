"""Subscription model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import Base


class Subscription(Base):
    """A customer's subscription to a price.

    ``status`` is whatever the vendor last reported; no transition is validated here.
    """

    __tablename__ = "subscription"

    customer_id: Mapped[UUID] = mapped_column(
        ForeignKey("customer.id", ondelete="CASCADE"), nullable=False
    )
    price_id: Mapped[UUID] = mapped_column(ForeignKey("price.id"), nullable=False)

    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    status: Mapped[str] = mapped_column(String(50), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    trial_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    billing_cycle_anchor: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    proration_behavior: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    subscription_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True, default=dict
    )

    __table_args__ = (
        Index("idx_subscription_customer", "customer_id"),
        Index("idx_subscription_status", "status"),
    )
