"""Membership model."""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import OrganizationScopedBase


class Membership(OrganizationScopedBase):
    """A seat held by a user inside an organization."""

    __tablename__ = "membership"

    user_email: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="member", nullable=False)

    __table_args__ = (UniqueConstraint("organization_id", "user_email"),)
