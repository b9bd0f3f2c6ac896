"""CRUD operations for billing customers."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.crud._base import CRUDBase
from tollgate.models import Customer


class CRUDCustomer(CRUDBase[Customer]):
    """CRUD operations for billing customers."""

    field_aliases = {"metadata": "customer_metadata", "updated_at": "modified_at"}

    async def get_by_organization(
        self, db: AsyncSession, *, organization_id: str
    ) -> Optional[Customer]:
        """Get customer by organization ID.

        Args:
            db: Database session
            organization_id: Organization ID

        Returns:
            Customer or None
        """
        query = select(Customer).where(Customer.organization_id == organization_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()


customer = CRUDCustomer(Customer)
