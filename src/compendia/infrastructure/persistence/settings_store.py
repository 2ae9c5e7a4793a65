"""Named setting entries, such as the compendium configuration.

Stores make no exclusivity promise: writers re-read an entry before
merging into it.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Any, Optional

from compendia.infrastructure.persistence.database import DatabaseManager
from compendia.infrastructure.persistence.repositories.setting_repository import (
    SettingRepository,
)


class SettingsStore(ABC):
    """Abstract base class for setting stores."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return a copy of the stored value, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Replace the stored value."""
        ...


class InMemorySettingsStore(SettingsStore):
    """Process-local settings store."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._values: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        await asyncio.sleep(0)
        return copy.deepcopy(self._values.get(key))

    async def set(self, key: str, value: Any) -> None:
        await asyncio.sleep(0)
        self._values[key] = copy.deepcopy(value)


class SqlSettingsStore(SettingsStore):
    """Settings store backed by the ``settings`` table."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get(self, key: str) -> Optional[Any]:
        async with self.db.session() as session:
            setting = await SettingRepository(session).get(key)
            return copy.deepcopy(setting.value) if setting is not None else None

    async def set(self, key: str, value: Any) -> None:
        async with self.db.session() as session:
            await SettingRepository(session).upsert(key, copy.deepcopy(value))
            await session.commit()
