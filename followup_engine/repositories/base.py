"""
Base repository with generic CRUD operations.
"""
import uuid
from typing import TypeVar, Generic, Type, Optional, List

from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from followup_engine.core.clock import utcnow

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository with CRUD operations.
    Inherit and specify the model class.

    Models with a ``deleted_at`` column are soft-deleted; such rows are
    invisible to get/list/count.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    @property
    def soft_deletes(self) -> bool:
        return hasattr(self.model, "deleted_at")

    def _base_query(self, query=None):
        query = select(self.model) if query is None else query
        if self.soft_deletes:
            query = query.where(self.model.deleted_at.is_(None))
        return query

    def _apply_filters(self, query, filters: Optional[dict]):
        if filters:
            for field, value in filters.items():
                if hasattr(self.model, field) and value is not None:
                    query = query.where(getattr(self.model, field) == value)
        return query

    async def create(self, obj_in: dict) -> ModelType:
        """Create a new record."""
        db_obj = self.model(**obj_in)
        return await self.save(db_obj)

    async def save(self, db_obj: ModelType) -> ModelType:
        """Persist an already-mutated record."""
        if hasattr(db_obj, "updated_at"):
            db_obj.updated_at = utcnow()
        self.session.add(db_obj)
        await self.session.commit()
        await self.session.refresh(db_obj)
        return db_obj

    async def get(self, id: uuid.UUID) -> Optional[ModelType]:
        """Get a record by ID."""
        db_obj = await self.session.get(self.model, id)
        if db_obj is not None and self.soft_deletes and db_obj.deleted_at is not None:
            return None
        return db_obj

    async def list(
        self,
        filters: Optional[dict] = None,
        order_by: str = "created_at",
        order_desc: bool = True
    ) -> List[ModelType]:
        """List all records with optional filters."""
        query = self._apply_filters(self._base_query(), filters)

        if hasattr(self.model, order_by):
            order_column = getattr(self.model, order_by)
            query = query.order_by(order_column.desc() if order_desc else order_column)

        result = await self.session.exec(query)
        return result.all()

    async def update(self, id: uuid.UUID, obj_in: dict) -> Optional[ModelType]:
        """Update a record. None values are skipped."""
        db_obj = await self.get(id)
        if not db_obj:
            return None

        for field, value in obj_in.items():
            if hasattr(db_obj, field) and value is not None:
                setattr(db_obj, field, value)

        return await self.save(db_obj)

    async def soft_delete(self, id: uuid.UUID) -> bool:
        """Mark a record deleted, or remove it if the model has no deleted_at."""
        db_obj = await self.get(id)
        if not db_obj:
            return False

        if self.soft_deletes:
            db_obj.deleted_at = utcnow()
            await self.save(db_obj)
        else:
            await self.session.delete(db_obj)
            await self.session.commit()
        return True

    async def exists(self, id: uuid.UUID) -> bool:
        """Check if a record exists."""
        obj = await self.get(id)
        return obj is not None
