"""CRUD operations for subscriptions."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.crud._base import CRUDBase
from tollgate.models import Subscription
from tollgate.schemas.billing import ACTIVE_SUBSCRIPTION_STATUSES


class CRUDSubscription(CRUDBase[Subscription]):
    """CRUD operations for subscriptions."""

    field_aliases = {"metadata": "subscription_metadata"}

    async def get_active_for_customer(
        self, db: AsyncSession, *, customer_id: UUID
    ) -> Optional[Subscription]:
        """Get the newest subscription of a customer whose status counts as active.

        Args:
            db: Database session
            customer_id: Customer ID

        Returns:
            Subscription or None
        """
        query = (
            select(Subscription)
            .where(
                Subscription.customer_id == customer_id,
                Subscription.status.in_([status.value for status in ACTIVE_SUBSCRIPTION_STATUSES]),
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()


subscription = CRUDSubscription(Subscription)
