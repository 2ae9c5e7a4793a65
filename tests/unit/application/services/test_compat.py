"""Unit tests for the deprecated entity adapters."""

import pytest

from compendia.application.services.compat import LegacyCompendiumAdapter, LegacyDocumentAdapter
from compendia.domain.entities.compendium import CompendiumMetadata
from compendia.domain.entities.user import User


@pytest.fixture
async def legacy(registry, backend, gamemaster) -> LegacyCompendiumAdapter:
    await backend.create_documents("Item", [{"_id": "torch1", "name": "Torch"}], pack="world.gear")
    pack = await registry.add_pack(CompendiumMetadata(name="gear", package="world", document_name="Item"))
    return LegacyCompendiumAdapter(pack, gamemaster)


class TestLegacyCompendiumAdapter:
    def test_entity(self, legacy) -> None:
        with pytest.warns(DeprecationWarning, match="document_name"):
            assert legacy.entity == "Item"

    @pytest.mark.asyncio
    async def test_reads(self, legacy) -> None:
        with pytest.warns(DeprecationWarning):
            (torch,) = await legacy.content()
        with pytest.warns(DeprecationWarning):
            assert await legacy.get_entity("torch1") is torch
        with pytest.warns(DeprecationWarning):
            assert legacy.get_entry("torch1") == {"_id": "torch1", "name": "Torch"}

    @pytest.mark.asyncio
    async def test_writes(self, legacy) -> None:
        with pytest.warns(DeprecationWarning):
            lamp = await legacy.create_entity({"name": "Lamp"})
        with pytest.warns(DeprecationWarning):
            await legacy.update_entity({"_id": lamp.id, "weight": 2})
        assert lamp.source_data["weight"] == 2
        with pytest.warns(DeprecationWarning):
            assert await legacy.delete_entity(lamp.id) is lamp
        assert lamp.id not in legacy.pack.index

    @pytest.mark.asyncio
    async def test_import_entity(self, legacy, registry, gamemaster) -> None:
        world_item = await registry.world("Item").create_document({"name": "Rope"}, gamemaster)
        with pytest.warns(DeprecationWarning):
            imported = await legacy.import_entity(world_item)
        assert imported.pack == "world.gear"


class TestLegacyDocumentAdapter:
    @pytest.mark.asyncio
    async def test_properties(self, legacy) -> None:
        torch = await legacy.pack.get_document("torch1")
        adapter = LegacyDocumentAdapter(torch, User(id="player9"))

        with pytest.warns(DeprecationWarning):
            assert adapter.entity == "Item"
        with pytest.warns(DeprecationWarning):
            assert adapter._id == "torch1"
        with pytest.warns(DeprecationWarning):
            assert adapter.owner is False
