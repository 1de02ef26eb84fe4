"""
Repository Pattern for Database Operations
Provides clean data access layer
"""

from typing import Generic, Optional, Type, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations"""

    def __init__(self, model: Type[T], db: AsyncSession):
        self.model = model
        self.db = db

    async def get_by_id(self, id: str) -> Optional[T]:
        """Get record by ID"""
        result = await self.db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def create(self, **kwargs) -> T:
        """Create new record"""
        instance = self.model(**kwargs)
        self.db.add(instance)
        await self.db.flush()
        return instance

    async def delete_by_id(self, id: str) -> bool:
        """Hard delete; True if a row was removed"""
        result = await self.db.execute(delete(self.model).where(self.model.id == id))
        return result.rowcount > 0
