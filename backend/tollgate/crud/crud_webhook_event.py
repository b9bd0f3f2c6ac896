"""CRUD operations for processed webhook events."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.crud._base import CRUDBase
from tollgate.models import WebhookEvent


class CRUDWebhookEvent(CRUDBase[WebhookEvent]):
    """CRUD operations for processed webhook events."""

    async def get_by_event_id(self, db: AsyncSession, *, event_id: str) -> Optional[WebhookEvent]:
        """Get a processed event by its vendor event ID.

        Args:
            db: Database session
            event_id: Vendor event ID

        Returns:
            WebhookEvent or None
        """
        result = await db.execute(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
        return result.scalar_one_or_none()


webhook_event = CRUDWebhookEvent(WebhookEvent)
