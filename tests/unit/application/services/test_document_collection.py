"""Unit tests for DocumentCollection."""

from unittest.mock import AsyncMock

import pytest

from compendia.application.services.document_collection import DocumentCollection
from compendia.core.exceptions import (
    BackendError,
    DocumentNotFoundError,
    DocumentPermissionError,
    DocumentValidationError,
)
from compendia.core.hooks import HookEvent
from compendia.domain.entities.hook_context import AbortHookException
from compendia.domain.entities.permission import PermissionLevel, UserRole
from compendia.domain.entities.user import User
from sample_documents import Actor, Item, RecordingObserver


@pytest.fixture
def actors(registry):
    return registry.world("Actor")


@pytest.fixture
async def hero(actors, gamemaster):
    return await actors.create_document(
        {
            "name": "Hero",
            "hp": 10,
            "permission": {"default": PermissionLevel.LIMITED, "player2": PermissionLevel.OWNER},
            "items": [{"name": "Sword", "weight": 3}],
        },
        gamemaster,
    )


class TestDocumentCollectionMap:
    """Tests for the in-memory map."""

    def test_set_get_delete(self, backend) -> None:
        collection = DocumentCollection(Item, backend)
        item = Item({"_id": "item1", "name": "Torch"})

        collection.set("item1", item)

        assert collection.get("item1") is item
        assert item.collection is collection
        assert "item1" in collection
        assert len(collection) == 1
        assert collection.delete("item1") is item
        assert item.collection is None
        assert collection.get("item1") is None

    def test_set_rejects_mismatched_id(self, backend) -> None:
        collection = DocumentCollection(Item, backend)
        with pytest.raises(ValueError):
            collection.set("other", Item({"_id": "item1", "name": "Torch"}))

    def test_strict_get_raises(self, backend) -> None:
        with pytest.raises(DocumentNotFoundError):
            DocumentCollection(Item, backend).get("missing", strict=True)

    def test_contents_keep_insertion_order(self, backend) -> None:
        collection = DocumentCollection(Item, backend)
        for document_id in ("b", "a", "c"):
            collection.set(document_id, Item({"_id": document_id, "name": document_id}))
        assert [item.id for item in collection.contents] == ["b", "a", "c"]
        assert [item.id for item in collection] == ["b", "a", "c"]

    @pytest.mark.asyncio
    async def test_load_fetches_and_prepares(self, backend) -> None:
        await backend.create_documents("Item", [{"_id": "torch1", "name": "Torch", "weight": 1}])
        collection = DocumentCollection(Item, backend)

        (torch,) = await collection.load()

        assert torch.derived_data["total_weight"] == 1
        assert collection.get("torch1") is torch
        assert await collection.load({"_id": "torch1"}) == [torch]


class TestCreateDocuments:
    """Tests for create."""

    @pytest.mark.asyncio
    async def test_create_assigns_ids_and_prepares(self, actors, hero, backend) -> None:
        assert hero.id and hero.id.isalnum()
        assert hero.derived_data["item_count"] == 1
        assert hero.derived_data["encumbrance"] == 3
        assert actors.get(hero.id) is hero
        (record,) = await backend.get_documents("Actor")
        assert record["items"][0]["_id"] == hero.get_embedded_collection("Item")[0].id

    @pytest.mark.asyncio
    async def test_player_creator_becomes_owner(self, actors, player) -> None:
        actor = await actors.create_document({"name": "Mine"}, player)
        assert actor.permission_map == {"player1": PermissionLevel.OWNER}
        assert actor.is_owner(player)

    @pytest.mark.asyncio
    async def test_ids_are_replaced_unless_kept(self, actors, gamemaster) -> None:
        replaced = await actors.create_document({"_id": "fixedId", "name": "A"}, gamemaster)
        kept = await actors.create_document({"_id": "keptId", "name": "B"}, gamemaster, keep_id=True)
        assert replaced.id != "fixedId"
        assert kept.id == "keptId"

    @pytest.mark.asyncio
    async def test_user_without_role_cannot_create(self, actors, backend) -> None:
        with pytest.raises(DocumentPermissionError):
            await actors.create_document({"name": "A"}, User(id="nobody", role=UserRole.NONE))
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_invalid_data_never_reaches_backend(self, actors, gamemaster, backend) -> None:
        with pytest.raises(DocumentValidationError):
            await actors.create_document({"name": "A", "hp": "lots"}, gamemaster)
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_before_hook_can_veto(self, actors, gamemaster, hooks, backend) -> None:
        async def veto(event, data, context):
            raise AbortHookException("no")

        hooks.register(HookEvent.ON_DOCUMENT_BEFORE_CREATE, veto, filters={"document_type": "Actor"})

        assert await actors.create_document({"name": "A"}, gamemaster) is None
        assert backend.calls == []
        assert len(actors) == 0

    @pytest.mark.asyncio
    async def test_after_hook_sees_prepared_documents(self, actors, gamemaster, hooks) -> None:
        seen = []

        async def inspect(event, data, context):
            seen.append((context.user_id, [d.derived_data["hp_max"] for d in data["documents"]]))

        hooks.register(HookEvent.ON_DOCUMENT_AFTER_CREATE, inspect)

        await actors.create_documents([{"name": "A", "hp": 3}, {"name": "B", "hp": 4}], gamemaster)

        assert seen == [("gm", [6, 8])]

    @pytest.mark.asyncio
    async def test_collection_observers_render(self, actors, gamemaster) -> None:
        observer = RecordingObserver(app_id=1)
        actors.register_observer(observer)

        await actors.create_document({"name": "A"}, gamemaster)

        assert observer.renders == [(False, {})]
        assert actors.unregister_observer(observer) is True


class TestUpdateDocuments:
    """Tests for update."""

    @pytest.mark.asyncio
    async def test_owner_update_is_applied(self, actors, hero, other_player, backend) -> None:
        updated = await actors.update_document(hero.id, {"hp": 20}, other_player)

        assert updated is hero
        assert hero.derived_data["hp_max"] == 40
        (record,) = await backend.get_documents("Actor")
        assert record["hp"] == 20

    @pytest.mark.asyncio
    async def test_limited_user_update_is_rejected(self, actors, hero, player, backend) -> None:
        backend.calls.clear()
        before = hero.source_data

        with pytest.raises(DocumentPermissionError):
            await actors.update_document(hero.id, {"hp": 1}, player)

        assert backend.calls == []
        assert hero.source_data == before
        assert actors.contents == [hero]

    @pytest.mark.asyncio
    async def test_noop_update_returns_none(self, actors, hero, gamemaster, backend) -> None:
        backend.calls.clear()
        assert await actors.update_document(hero.id, {"name": "Hero"}, gamemaster) is None
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_dotted_keys_are_expanded(self, actors, hero, gamemaster) -> None:
        await actors.update_document(hero.id, {"flags.core.sheet": "basic"}, gamemaster)
        assert hero.source_data["flags"] == {"core": {"sheet": "basic"}}

    @pytest.mark.asyncio
    async def test_embedded_keys_are_rejected(self, actors, hero, gamemaster) -> None:
        with pytest.raises(DocumentValidationError):
            await actors.update_document(hero.id, {"items": []}, gamemaster)

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_batch_are_rejected(self, actors, hero, gamemaster) -> None:
        with pytest.raises(DocumentValidationError):
            await actors.update_documents(
                [{"_id": hero.id, "hp": 1}, {"_id": hero.id, "hp": 2}], gamemaster
            )

    @pytest.mark.asyncio
    async def test_before_hook_can_rewrite_changes(self, actors, hero, gamemaster, hooks) -> None:
        async def cap_hp(event, data, context):
            for change in data["data"]:
                change["hp"] = min(change.get("hp", 0), 50)

        hooks.register(HookEvent.ON_DOCUMENT_BEFORE_UPDATE, cap_hp)

        await actors.update_document(hero.id, {"hp": 999}, gamemaster)

        assert hero.source_data["hp"] == 50

    @pytest.mark.asyncio
    async def test_hook_cannot_add_unrequested_document(self, actors, hero, other_player, gamemaster, hooks, backend) -> None:
        bystander = await actors.create_document({"name": "Bystander", "hp": 5}, gamemaster)
        backend.calls.clear()

        async def widen(event, data, context):
            return {**data, "data": [*data["data"], {"_id": bystander.id, "hp": 0}]}

        hooks.register(HookEvent.ON_DOCUMENT_BEFORE_UPDATE, widen)

        with pytest.raises(DocumentValidationError):
            await actors.update_document(hero.id, {"hp": 20}, other_player)

        assert backend.calls == []
        assert bystander.source_data["hp"] == 5
        assert hero.source_data["hp"] == 10

    @pytest.mark.asyncio
    async def test_hook_cannot_add_unrequested_deletion(self, actors, hero, other_player, gamemaster, hooks) -> None:
        bystander = await actors.create_document({"name": "Bystander"}, gamemaster)

        async def widen(event, data, context):
            return {**data, "data": [*data["data"], bystander.id]}

        hooks.register(HookEvent.ON_DOCUMENT_BEFORE_DELETE, widen)

        with pytest.raises(DocumentValidationError):
            await actors.delete_document(hero.id, other_player)

        assert bystander.id in actors
        assert hero.id in actors

    @pytest.mark.asyncio
    async def test_backend_failure_leaves_collection_unchanged(self, actors, hero, gamemaster, backend) -> None:
        backend.update_documents = AsyncMock(side_effect=RuntimeError("connection reset"))
        before = hero.derived_data

        with pytest.raises(BackendError):
            await actors.update_document(hero.id, {"hp": 1}, gamemaster)

        assert hero.source_data["hp"] == 10
        assert hero.derived_data is before
        assert not actors.is_in_flight(hero.id)

    @pytest.mark.asyncio
    async def test_unknown_id_raises(self, actors, gamemaster) -> None:
        with pytest.raises(DocumentNotFoundError):
            await actors.update_document("missing", {"hp": 1}, gamemaster)

    @pytest.mark.asyncio
    async def test_document_update_shortcut(self, hero, gamemaster) -> None:
        await hero.update({"name": "Renamed"}, gamemaster)
        assert hero.name == "Renamed"


class TestDeleteDocuments:
    """Tests for delete."""

    @pytest.mark.asyncio
    async def test_delete_detaches_document(self, actors, hero, gamemaster, backend, hooks) -> None:
        after = []
        hooks.register(HookEvent.ON_DOCUMENT_AFTER_DELETE, lambda e, d, c: after.append(d["ids"]))
        hero_id = hero.id

        deleted = await hero.delete(gamemaster)

        assert deleted is hero
        assert hero.collection is None
        assert hero_id not in actors
        assert await backend.get_documents("Actor") == []
        assert after == [[hero_id]]

    @pytest.mark.asyncio
    async def test_limited_user_cannot_delete(self, actors, hero, player) -> None:
        with pytest.raises(DocumentPermissionError):
            await actors.delete_document(hero.id, player)
        assert hero.id in actors


class TestEmbeddedThroughCollection:
    """Embedded operations on documents held by a collection."""

    @pytest.mark.asyncio
    async def test_embedded_create_persists_in_parent_record(self, hero, other_player, backend) -> None:
        (shield,) = await hero.create_embedded_documents("Item", [{"name": "Shield", "weight": 5}], other_player)

        assert shield.collection is hero.collection
        assert hero.derived_data["encumbrance"] == 8
        (record,) = await backend.get_documents("Actor")
        assert [item["name"] for item in record["items"]] == ["Sword", "Shield"]

    @pytest.mark.asyncio
    async def test_limited_user_cannot_create_embedded(self, hero, player) -> None:
        with pytest.raises(DocumentPermissionError):
            await hero.create_embedded_documents("Item", [{"name": "Shield"}], player)
        assert len(hero.get_embedded_collection("Item")) == 1


class TestFromCompendium:
    def test_from_compendium_sets_source_id(self, actors) -> None:
        source = Actor({"_id": "src1", "name": "Goblin", "folder": "f1", "permission": {"default": 2}})

        data = actors.from_compendium(source)

        assert "_id" not in data
        assert "folder" not in data
        assert "permission" not in data
        assert data["flags"]["core"]["sourceId"] == "Actor.src1"
        assert actors.from_compendium(source, keep_id=True)["_id"] == "src1"
