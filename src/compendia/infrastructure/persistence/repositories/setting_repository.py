"""Setting repository for database operations."""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compendia.infrastructure.persistence.models.setting import SettingModel


class SettingRepository:
    """Repository for named setting entries."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: str) -> Optional[SettingModel]:
        """Get a setting entry by key."""
        result = await self.session.execute(select(SettingModel).where(SettingModel.key == key))
        return result.scalar_one_or_none()

    async def upsert(self, key: str, value: Any) -> SettingModel:
        """Create or replace a setting entry."""
        setting = await self.get(key)
        if setting is None:
            setting = SettingModel(key=key, value=value)
            self.session.add(setting)
        else:
            setting.value = value
        await self.session.flush()
        return setting
