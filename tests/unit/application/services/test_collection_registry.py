"""Unit tests for CollectionRegistry."""

import pytest

from compendia.application.services.collection_registry import CollectionRegistry
from compendia.core.exceptions import DocumentNotFoundError, DocumentPermissionError
from compendia.domain.entities.compendium import CompendiumMetadata
from compendia.domain.entities.folder import Folder
from sample_documents import Actor, Effect, Item


class TestRegistryClasses:
    def test_document_classes_include_embedded_types(self, registry) -> None:
        assert registry.document_class("Actor") is Actor
        assert registry.document_class("Item") is Item
        assert registry.document_class("ActiveEffect") is Effect
        assert registry.document_class("Folder") is Folder
        with pytest.raises(KeyError):
            registry.document_class("Scene")

    def test_users(self, registry, player) -> None:
        assert registry.get_user("player1") is player
        assert registry.get_user("ghost") is None
        assert len(registry.users) == 3

    def test_world_collections_are_created_once(self, registry) -> None:
        actors = registry.world("Actor")
        assert registry.world("Actor") is actors
        assert actors.registry is registry
        assert actors.hooks is registry.hooks
        assert registry.world_or_none("Scene") is None

    def test_default_settings_and_hooks(self, backend, settings_store) -> None:
        registry = CollectionRegistry(backend, settings_store)
        assert registry.settings.world_package == "world"
        assert registry.hooks is not None


class TestRegistryPacks:
    """Tests for pack registration, creation and deletion."""

    @pytest.mark.asyncio
    async def test_add_pack_twice_is_rejected(self, registry) -> None:
        metadata = CompendiumMetadata(name="monsters", package="world", document_name="Actor")
        pack = await registry.add_pack(metadata)

        assert registry.pack("world.monsters") is pack
        assert registry.packs == [pack]
        with pytest.raises(ValueError):
            await registry.add_pack(metadata)

    @pytest.mark.asyncio
    async def test_create_compendium_requires_gamemaster(self, registry, player) -> None:
        metadata = CompendiumMetadata(name="notes", package="world", document_name="Item")
        with pytest.raises(DocumentPermissionError):
            await registry.create_compendium(metadata, player)

    @pytest.mark.asyncio
    async def test_create_compendium_only_in_world_package(self, registry, gamemaster) -> None:
        metadata = CompendiumMetadata(name="notes", package="srd", document_name="Item")
        with pytest.raises(ValueError):
            await registry.create_compendium(metadata, gamemaster)

    @pytest.mark.asyncio
    async def test_created_compendium_is_unlocked(self, registry, gamemaster) -> None:
        pack = await registry.create_compendium(
            CompendiumMetadata(name="notes", package="world", document_name="Item"), gamemaster
        )
        assert pack.locked is False
        assert await pack.create_document({"name": "Note"}, gamemaster) is not None

    @pytest.mark.asyncio
    async def test_delete_compendium_requires_gamemaster(self, registry, gamemaster, player) -> None:
        pack = await registry.create_compendium(
            CompendiumMetadata(name="notes", package="world", document_name="Item"), gamemaster
        )
        with pytest.raises(DocumentPermissionError):
            await registry.delete_compendium(pack, player)
        assert registry.pack("world.notes") is pack

    @pytest.mark.asyncio
    async def test_close_stops_sweepers_and_drops_state(self, backend, settings_store, settings, clock) -> None:
        registry = CollectionRegistry(backend, settings_store, settings=settings, clock=clock)
        registry.register_document_class(Actor)
        pack = await registry.add_pack(
            CompendiumMetadata(name="monsters", package="world", document_name="Actor")
        )
        registry.start_sweepers(0.01)
        sweeper = pack._sweeper

        await registry.close()

        assert sweeper.done()
        assert registry.packs == []


class TestResolveUuid:
    """Tests for uuid resolution."""

    @pytest.mark.asyncio
    async def test_resolve_world_and_embedded_uuids(self, registry, gamemaster) -> None:
        hero = await registry.world("Actor").create_document(
            {"name": "Hero", "items": [{"name": "Ring", "effects": [{"name": "Glow"}]}]}, gamemaster
        )
        (ring,) = hero.get_embedded_collection("Item")
        (glow,) = ring.get_embedded_collection("ActiveEffect")

        assert await registry.resolve_uuid(hero.uuid) is hero
        assert await registry.resolve_uuid(ring.uuid) is ring
        assert await registry.resolve_uuid(glow.uuid) is glow

    @pytest.mark.asyncio
    async def test_resolve_compendium_uuid_fetches(self, registry, backend) -> None:
        await backend.create_documents(
            "Actor",
            [{"_id": "abc", "name": "Goblin", "items": [{"_id": "club1", "name": "Club"}]}],
            pack="world.monsters",
        )
        await registry.add_pack(CompendiumMetadata(name="monsters", package="world", document_name="Actor"))

        club = await registry.resolve_uuid("Compendium.world.monsters.abc.Item.club1")

        assert club.name == "Club"
        assert club.uuid == "Compendium.world.monsters.abc.Item.club1"

    @pytest.mark.asyncio
    async def test_malformed_and_unknown_uuids(self, registry) -> None:
        with pytest.raises(ValueError):
            await registry.resolve_uuid("Actor")
        with pytest.raises(ValueError):
            await registry.resolve_uuid("Compendium.world")
        with pytest.raises(ValueError):
            await registry.resolve_uuid("Actor.abc.Item")
        with pytest.raises(DocumentNotFoundError):
            await registry.resolve_uuid("Actor.missing")
