"""CRUD operations for plans."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.crud._base import CRUDBase
from tollgate.models import Plan


class CRUDPlan(CRUDBase[Plan]):
    """CRUD operations for plans."""

    field_aliases = {"metadata": "plan_metadata"}

    async def get_by_slug(self, db: AsyncSession, *, slug: str) -> Optional[Plan]:
        """Get plan by slug.

        Args:
            db: Database session
            slug: Plan slug

        Returns:
            Plan or None
        """
        result = await db.execute(select(Plan).where(Plan.slug == slug))
        return result.scalar_one_or_none()


plan = CRUDPlan(Plan)
