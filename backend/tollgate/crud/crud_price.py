"""CRUD operations for prices."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.crud._base import CRUDBase
from tollgate.models import Price


class CRUDPrice(CRUDBase[Price]):
    """CRUD operations for prices."""

    field_aliases = {"metadata": "price_metadata"}

    async def get_by_plan(self, db: AsyncSession, *, plan_id: UUID) -> list[Price]:
        """Get all prices of a plan, oldest first.

        Args:
            db: Database session
            plan_id: Plan ID

        Returns:
            List of prices
        """
        query = select(Price).where(Price.plan_id == plan_id).order_by(Price.created_at)
        result = await db.execute(query)
        return list(result.scalars().all())


price = CRUDPrice(Price)
