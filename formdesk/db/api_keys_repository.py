"""
Repository Pattern for Database Operations
Provides clean data access layer
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from formdesk.db.base_repository import BaseRepository
from formdesk.models.api_key_model import ApiKey
from formdesk.utils.exceptions import ValidationError

# Mutable field -> column, fixed at definition time
UPDATABLE_COLUMNS = {
    "name": ApiKey.name,
    "permissions": ApiKey.permissions,
    "is_active": ApiKey.is_active,
    "rate_limit_per_hour": ApiKey.rate_limit_per_hour,
    "expires_at": ApiKey.expires_at,
}


class APIKeyRepository(BaseRepository[ApiKey]):
    """Repository for API Key operations"""

    async def get_active_keys(self) -> List[ApiKey]:
        """All active keys, most recently created first"""
        result = await self.db.execute(
            select(ApiKey)
            .where(ApiKey.is_active.is_(True))
            .order_by(ApiKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_keys(
        self, limit: int = 50, offset: int = 0, active_only: bool = False
    ) -> List[ApiKey]:
        """Keys newest first with pagination"""
        query = select(ApiKey)

        if active_only:
            query = query.where(ApiKey.is_active.is_(True))

        result = await self.db.execute(
            query.order_by(ApiKey.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def update_fields(
        self, key_id: str, fields: Dict[str, Any]
    ) -> Optional[ApiKey]:
        """
        Apply a partial update in one UPDATE ... RETURNING statement

        Raises:
            ValidationError: If fields is empty or names a non-updatable field
        """
        if not fields:
            raise ValidationError("No fields to update")

        unknown = sorted(set(fields) - set(UPDATABLE_COLUMNS))
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(unknown)}")

        values = {UPDATABLE_COLUMNS[name].key: value for name, value in fields.items()}
        values[ApiKey.updated_at.key] = datetime.now(timezone.utc)

        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .values(**values)
            .returning(ApiKey)
        )
        return result.scalar_one_or_none()

    async def deactivate(self, key_id: str) -> bool:
        """Soft-disable a key; True if a row was affected"""
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .values(is_active=False, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount > 0

    async def replace_hash(self, key_id: str, key_hash: str) -> bool:
        result = await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .values(key_hash=key_hash, updated_at=datetime.now(timezone.utc))
        )
        return result.rowcount > 0

    async def touch_last_used(self, key_id: str, used_at: datetime) -> None:
        """Record a successful authentication against this exact key id"""
        await self.db.execute(
            update(ApiKey)
            .where(ApiKey.id == key_id)
            .values(last_used_at=used_at)
        )


def get_api_key_repository(db: AsyncSession) -> APIKeyRepository:
    """Get APIKeyRepository instance"""
    return APIKeyRepository(ApiKey, db)
