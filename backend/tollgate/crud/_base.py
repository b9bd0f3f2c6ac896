"""Base CRUD class for billing tables."""

import uuid
from enum import Enum
from typing import Any, Generic, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import Uuid, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.models._base import Base

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    """CRUD base class for tables without user or organization access control.

    Access control is the caller's concern; the billing layer only ever runs
    on behalf of the system.
    """

    # Maps public field names to model attributes, e.g. "metadata" -> "plan_metadata"
    field_aliases: dict[str, str] = {}

    def __init__(self, model: Type[ModelType]):
        """CRUD object with default methods.

        Args:
        ----
            model (Type[ModelType]): The model to be used in the CRUD operations.

        """
        self.model = model

    def _column(self, field: str) -> Any:
        attribute = self.field_aliases.get(field, field)
        column = getattr(self.model, attribute, None)
        if column is None or not hasattr(column, "expression"):
            raise ValueError(f"Unknown field '{field}' for {self.model.__tablename__}")
        return column

    def _coerce(self, column: Any, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, str) and isinstance(column.type, Uuid):
            return uuid.UUID(value)
        return value

    async def get(self, db: AsyncSession, id: UUID) -> Optional[ModelType]:
        """Get a single object by ID.

        Args:
        ----
            db (AsyncSession): The database session.
            id (UUID): The UUID of the object to get.

        Returns:
        -------
            Optional[ModelType]: The object with the given ID.

        """
        result = await db.execute(select(self.model).where(self.model.id == id))
        return result.unique().scalar_one_or_none()

    async def get_by_provider_id(self, db: AsyncSession, provider_id: str) -> Optional[ModelType]:
        """Get a single object by its payment vendor id.

        Args:
        ----
            db (AsyncSession): The database session.
            provider_id (str): The vendor-assigned id.

        Returns:
        -------
            Optional[ModelType]: The object mapped to the vendor id.

        """
        result = await db.execute(select(self.model).where(self.model.provider_id == provider_id))
        return result.unique().scalar_one_or_none()

    async def get_multi(
        self,
        db: AsyncSession,
        *,
        where: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        order_direction: str = "asc",
        limit: Optional[int] = 10,
        offset: int = 0,
    ) -> list[ModelType]:
        """Get objects matching an equality filter.

        Args:
        ----
            db (AsyncSession): The database session.
            where (dict, optional): Field name to value, all must match.
            order_by (str, optional): Field to sort on, defaults to ``created_at``.
            order_direction (str): ``asc`` or ``desc``.
            limit (int, optional): Maximum number of objects, None for all of them.
            offset (int): Number of objects to skip.

        Returns:
        -------
            list[ModelType]: The matching objects.

        Raises:
        ------
            ValueError: If a field does not exist on the model.

        """
        query = select(self.model)
        for field, value in (where or {}).items():
            column = self._column(field)
            query = query.where(column == self._coerce(column, value))

        sort_column = self._column(order_by or "created_at")
        query = query.order_by(sort_column.desc() if order_direction == "desc" else sort_column)

        query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        result = await db.execute(query)
        return list(result.unique().scalars().all())

    async def create(
        self, db: AsyncSession, *, obj_in: Union[BaseModel, dict[str, Any]]
    ) -> ModelType:
        """Create a new object.

        Args:
        ----
            db (AsyncSession): The database session.
            obj_in (Union[BaseModel, dict]): The column values of the new object.

        Returns:
        -------
            ModelType: The created object.

        """
        if not isinstance(obj_in, dict):
            obj_in = obj_in.model_dump()
        db_obj = self.model(**obj_in)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        *,
        db_obj: ModelType,
        obj_in: Union[BaseModel, dict[str, Any]],
    ) -> ModelType:
        """Update an object.

        Args:
        ----
            db (AsyncSession): The database session.
            db_obj (ModelType): The object to update.
            obj_in (Union[BaseModel, dict]): The new values, unset fields are left alone.

        Returns:
        -------
            ModelType: The updated object

        """
        if not isinstance(obj_in, dict):
            obj_in = obj_in.model_dump(exclude_unset=True)

        for key, value in obj_in.items():
            if hasattr(db_obj, key):
                setattr(db_obj, key, value)
        db.add(db_obj)
        await db.commit()
        await db.refresh(db_obj)
        return db_obj

    async def remove(self, db: AsyncSession, *, id: UUID) -> Optional[ModelType]:
        """Delete an object.

        Args:
        ----
            db (AsyncSession): The database session.
            id (UUID): The UUID of the object to delete.

        Returns:
        -------
            Optional[ModelType]: The deleted object.

        """
        db_obj = await self.get(db, id)
        if db_obj is None:
            return None

        await db.delete(db_obj)
        await db.commit()
        return db_obj
