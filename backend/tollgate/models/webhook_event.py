"""Processed webhook event model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tollgate.models._base import Base


class WebhookEvent(Base):
    """Vendor events that were already applied, used to drop redeliveries."""

    __tablename__ = "webhook_event"

    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
