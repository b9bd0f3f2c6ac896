"""Price model."""

from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import Base


class Price(Base):
    """A recurring price of a plan.

    Rows are never deleted by plan sync; a changed amount, currency or interval
    produces a new row and the old one stays for historical invoices.
    """

    __tablename__ = "price"

    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("plan.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    slug: Mapped[str] = mapped_column(String(100), nullable=False)

    # Minor currency units
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    interval: Mapped[str] = mapped_column(String(10), nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    price_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True, default=dict
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
