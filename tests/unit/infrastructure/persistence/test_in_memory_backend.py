"""Unit tests for the in-memory document backend and its list helpers."""

import pytest

from compendia.core.exceptions import BackendError, DocumentNotFoundError
from compendia.infrastructure.persistence.backend import (
    InMemoryBackend,
    ParentRef,
    migrate_records,
    resolve_embedded_list,
)


@pytest.fixture
async def seeded() -> InMemoryBackend:
    backend = InMemoryBackend()
    await backend.create_documents(
        "Actor",
        [
            {"_id": "a1", "name": "Hero", "hp": 10, "items": [{"_id": "i1", "name": "Sword"}]},
            {"_id": "a2", "name": "Villain", "hp": 20},
        ],
    )
    await backend.create_documents("Actor", [{"_id": "a1", "name": "Goblin"}], pack="srd.monsters")
    backend.calls.clear()
    return backend


class TestInMemoryBackendReads:
    @pytest.mark.asyncio
    async def test_world_and_pack_records_are_separate(self, seeded) -> None:
        world = await seeded.get_documents("Actor")
        pack = await seeded.get_documents("Actor", pack="srd.monsters")

        assert [r["name"] for r in world] == ["Hero", "Villain"]
        assert [r["name"] for r in pack] == ["Goblin"]
        assert seeded.calls == [("get", "Actor", None), ("get", "Actor", "srd.monsters")]

    @pytest.mark.asyncio
    async def test_query_and_projection(self, seeded) -> None:
        records = await seeded.get_documents("Actor", {"hp": 20}, index_fields=["name"])
        assert records == [{"_id": "a2", "name": "Villain"}]

    @pytest.mark.asyncio
    async def test_results_are_copies(self, seeded) -> None:
        (record, _) = await seeded.get_documents("Actor")
        record["name"] = "Changed"
        (again, _) = await seeded.get_documents("Actor")
        assert again["name"] == "Hero"


class TestInMemoryBackendWrites:
    @pytest.mark.asyncio
    async def test_create_assigns_missing_ids(self, seeded) -> None:
        (created,) = await seeded.create_documents("Item", [{"name": "Torch"}])
        assert created["_id"].isalnum()

    @pytest.mark.asyncio
    async def test_duplicate_create_is_all_or_nothing(self, seeded) -> None:
        with pytest.raises(BackendError):
            await seeded.create_documents("Actor", [{"_id": "a3", "name": "New"}, {"_id": "a1", "name": "Dup"}])
        assert len(await seeded.get_documents("Actor")) == 2

    @pytest.mark.asyncio
    async def test_update_merges_dotted_changes(self, seeded) -> None:
        await seeded.update_documents("Actor", [{"_id": "a2", "flags.core.sheet": "x"}])
        (record,) = await seeded.get_documents("Actor", {"_id": "a2"})
        assert record["flags"] == {"core": {"sheet": "x"}}

    @pytest.mark.asyncio
    async def test_update_unknown_id_changes_nothing(self, seeded) -> None:
        with pytest.raises(DocumentNotFoundError):
            await seeded.update_documents("Actor", [{"_id": "a1", "hp": 1}, {"_id": "zz", "hp": 1}])
        (record,) = await seeded.get_documents("Actor", {"_id": "a1"})
        assert record["hp"] == 10

    @pytest.mark.asyncio
    async def test_delete(self, seeded) -> None:
        assert await seeded.delete_documents("Actor", ["a1"]) == ["a1"]
        with pytest.raises(DocumentNotFoundError):
            await seeded.delete_documents("Actor", ["a1"])

    @pytest.mark.asyncio
    async def test_embedded_operations_use_parent_ref(self, seeded) -> None:
        parent = ParentRef("Actor", "a1", embedded_key="items")

        await seeded.create_documents("Item", [{"_id": "i2", "name": "Shield"}], parent=parent)
        await seeded.update_documents("Item", [{"_id": "i1", "weight": 3}], parent=parent)
        await seeded.delete_documents("Item", ["i2"], parent=parent)

        (record,) = await seeded.get_documents("Actor", {"_id": "a1"})
        assert record["items"] == [{"_id": "i1", "name": "Sword", "weight": 3}]

    @pytest.mark.asyncio
    async def test_embedded_operation_on_missing_parent(self, seeded) -> None:
        with pytest.raises(DocumentNotFoundError):
            await seeded.create_documents("Item", [{"name": "X"}], parent=ParentRef("Actor", "nope", embedded_key="items"))

    @pytest.mark.asyncio
    async def test_migrate_and_delete_pack(self, seeded) -> None:
        def rename(record):
            record["name"] = record["name"].upper()

        await seeded.migrate_pack("Actor", "srd.monsters", {"transform": rename})
        assert [r["name"] for r in await seeded.get_documents("Actor", pack="srd.monsters")] == ["GOBLIN"]

        await seeded.delete_pack("Actor", "srd.monsters")
        assert await seeded.get_documents("Actor", pack="srd.monsters") == []
        assert len(await seeded.get_documents("Actor")) == 2


class TestListHelpers:
    def test_resolve_nested_embedded_list(self) -> None:
        root = {"_id": "a1", "items": [{"_id": "i1", "effects": [{"_id": "e1"}]}]}
        ref = ParentRef("Actor", "a1", path=(("items", "i1"),), embedded_key="effects")
        assert resolve_embedded_list(root, ref) == [{"_id": "e1"}]

    def test_resolve_missing_step(self) -> None:
        ref = ParentRef("Actor", "a1", path=(("items", "zz"),), embedded_key="effects")
        with pytest.raises(DocumentNotFoundError):
            resolve_embedded_list({"_id": "a1", "items": []}, ref)

    def test_migration_may_not_change_ids(self) -> None:
        records = [{"_id": "a1"}]
        with pytest.raises(BackendError):
            migrate_records(records, {"transform": lambda r: {**r, "_id": "b1"}})
        assert records == [{"_id": "a1"}]

    def test_migration_without_transform_copies(self) -> None:
        records = [{"_id": "a1", "name": "x"}]
        migrated = migrate_records(records, None)
        assert migrated == records
        assert migrated[0] is not records[0]
