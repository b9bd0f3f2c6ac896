"""Plan model."""

from typing import Optional

from sqlalchemy import JSON, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import Base


class Plan(Base):
    """A subscription plan.

    The slug is the stable external key; ``provider_id`` maps it to the vendor product.
    Features live in ``plan_metadata["features"]``.
    """

    __tablename__ = "plan"

    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    plan_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True, default=dict
    )

    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
