"""Declarative bases shared by the billing and usage models."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from tollgate.core.datetime_utils import utc_now_naive


class Base(DeclarativeBase):
    """Every table gets a UUID key and naive UTC creation and modification times."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, onupdate=utc_now_naive, nullable=False
    )


class OrganizationScopedBase(Base):
    """Rows owned by an organization, counted against plan quotas by ``created_at``."""

    __abstract__ = True

    @declared_attr
    def organization_id(cls) -> Mapped[str]:
        """Opaque reference to the owning organization."""
        return mapped_column(String(255), nullable=False, index=True)
