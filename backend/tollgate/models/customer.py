"""Customer model."""

from typing import Optional

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import Base


class Customer(Base):
    """A billable organization mirrored from the payment vendor."""

    __tablename__ = "customer"

    # The organization this customer bills for, used as the vendor reference id
    organization_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    provider_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)

    customer_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True, default=dict
    )
