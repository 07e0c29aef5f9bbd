from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update

from leadsignal.models.organization import ApiKey
from leadsignal.repositories.base import BaseRepository


class ApiKeyRepository(BaseRepository):
    """Lookups against ``api_keys``."""

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        result = await self._db.execute(
            select(ApiKey).where(ApiKey.key_hash == key_hash)
        )
        return result.scalar_one_or_none()

    async def touch(self, api_key_id) -> None:
        """Record that the key was just used."""
        await self._db.execute(
            update(ApiKey)
            .where(ApiKey.id == api_key_id)
            .values(last_used_at=datetime.now(timezone.utc))
        )
