"""Models that only exist in tests."""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import OrganizationScopedBase


class Export(OrganizationScopedBase):
    """A data export, metered by the ``exports`` feature in tests."""

    __tablename__ = "export"

    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
