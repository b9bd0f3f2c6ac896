"""Lead model."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import OrganizationScopedBase


class Lead(OrganizationScopedBase):
    """A contact captured by an organization."""

    __tablename__ = "lead"

    email: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
