"""Submission model."""

from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import OrganizationScopedBase


class Submission(OrganizationScopedBase):
    """A form submission received by an organization."""

    __tablename__ = "submission"

    lead_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("lead.id", ondelete="SET NULL"), nullable=True
    )
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
