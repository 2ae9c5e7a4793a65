"""Pytest configuration for all tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from compendia.application.services.collection_registry import CollectionRegistry
from compendia.core.config import Settings
from compendia.core.hooks import HookRegistry
from compendia.core.logging import get_logger
from compendia.domain.entities.permission import UserRole
from compendia.domain.entities.user import User
from compendia.infrastructure.persistence.backend import InMemoryBackend
from compendia.infrastructure.persistence.database import DatabaseManager
from compendia.infrastructure.persistence.settings_store import InMemorySettingsStore
from sample_documents import Actor, FakeClock, Item

logger = get_logger(__name__)


@pytest.fixture
def settings() -> Settings:
    """Test settings with the default five-minute cache lifetime."""
    return Settings(
        environment="testing",
        compendium_cache_lifetime_seconds=300,
        compendium_sweep_interval_seconds=60,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def settings_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def hooks() -> HookRegistry:
    return HookRegistry()


@pytest.fixture
def gamemaster() -> User:
    return User(id="gm", name="Gamemaster", role=UserRole.GAMEMASTER)


@pytest.fixture
def player() -> User:
    return User(id="player1", name="Player One", role=UserRole.PLAYER)


@pytest.fixture
def other_player() -> User:
    return User(id="player2", name="Player Two", role=UserRole.PLAYER)


@pytest_asyncio.fixture
async def registry(
    backend, settings_store, hooks, settings, clock, gamemaster, player, other_player
) -> AsyncGenerator[CollectionRegistry, None]:
    """A registry with the sample document classes and users registered."""
    registry = CollectionRegistry(
        backend, settings_store, hooks=hooks, settings=settings, clock=clock
    )
    registry.register_document_class(Actor)
    registry.register_document_class(Item)
    for user in (gamemaster, player, other_player):
        registry.register_user(user)
    yield registry
    await registry.close()


@pytest_asyncio.fixture
async def db_manager() -> AsyncGenerator[DatabaseManager, None]:
    """A DatabaseManager over a shared in-memory SQLite database."""
    db = DatabaseManager("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    await db.create_tables()
    yield db
    await db.drop_tables()
    await db.disconnect()
