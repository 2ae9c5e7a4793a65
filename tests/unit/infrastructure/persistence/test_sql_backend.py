"""Integration tests for the SQLAlchemy document backend over in-memory SQLite."""

import pytest

from compendia.core.exceptions import BackendError, DocumentNotFoundError
from compendia.infrastructure.persistence.backend import ParentRef
from compendia.infrastructure.persistence.repositories.document_repository import DocumentRepository
from compendia.infrastructure.persistence.sql_backend import SqlDocumentBackend


@pytest.fixture
async def sql_backend(db_manager) -> SqlDocumentBackend:
    backend = SqlDocumentBackend(db_manager)
    await backend.create_documents(
        "Actor",
        [
            {"_id": "a1", "name": "Hero", "hp": 10, "items": [{"_id": "i1", "name": "Sword"}]},
            {"_id": "a2", "name": "Villain", "hp": 20},
        ],
    )
    await backend.create_documents("Actor", [{"_id": "g1", "name": "Goblin", "hp": 7}], pack="srd.monsters")
    return backend


class TestSqlDocumentBackend:
    @pytest.mark.asyncio
    async def test_get_documents_in_insertion_order(self, sql_backend) -> None:
        records = await sql_backend.get_documents("Actor")
        assert [r["_id"] for r in records] == ["a1", "a2"]
        assert records[0]["items"] == [{"_id": "i1", "name": "Sword"}]

    @pytest.mark.asyncio
    async def test_get_by_id_and_projection(self, sql_backend) -> None:
        assert await sql_backend.get_documents("Actor", {"_id": "a2"}, index_fields=["hp"]) == [
            {"_id": "a2", "hp": 20}
        ]
        assert await sql_backend.get_documents("Actor", {"_id": "zz"}) == []
        assert [r["_id"] for r in await sql_backend.get_documents("Actor", pack="srd.monsters")] == ["g1"]

    @pytest.mark.asyncio
    async def test_create_rejects_existing_ids(self, sql_backend) -> None:
        with pytest.raises(BackendError):
            await sql_backend.create_documents("Actor", [{"_id": "a1", "name": "Again"}])

    @pytest.mark.asyncio
    async def test_update_is_persisted(self, sql_backend) -> None:
        applied = await sql_backend.update_documents("Actor", [{"_id": "a2", "hp": 25, "system.level": 3}])

        assert applied == [{"_id": "a2", "hp": 25, "system.level": 3}]
        (record,) = await sql_backend.get_documents("Actor", {"_id": "a2"})
        assert record["hp"] == 25
        assert record["system"] == {"level": 3}

    @pytest.mark.asyncio
    async def test_failed_update_rolls_back(self, sql_backend) -> None:
        with pytest.raises(DocumentNotFoundError):
            await sql_backend.update_documents("Actor", [{"_id": "a1", "hp": 1}, {"_id": "zz", "hp": 1}])
        (record,) = await sql_backend.get_documents("Actor", {"_id": "a1"})
        assert record["hp"] == 10

    @pytest.mark.asyncio
    async def test_embedded_operations(self, sql_backend) -> None:
        parent = ParentRef("Actor", "a1", embedded_key="items")

        (shield,) = await sql_backend.create_documents("Item", [{"name": "Shield"}], parent=parent)
        await sql_backend.update_documents("Item", [{"_id": "i1", "weight": 4}], parent=parent)
        await sql_backend.delete_documents("Item", [shield["_id"]], parent=parent)

        (record,) = await sql_backend.get_documents("Actor", {"_id": "a1"})
        assert record["items"] == [{"_id": "i1", "name": "Sword", "weight": 4}]

    @pytest.mark.asyncio
    async def test_nested_embedded_create(self, sql_backend) -> None:
        parent = ParentRef("Actor", "a1", path=(("items", "i1"),), embedded_key="effects")

        await sql_backend.create_documents("ActiveEffect", [{"_id": "e1", "name": "Sharp"}], parent=parent)

        (record,) = await sql_backend.get_documents("Actor", {"_id": "a1"})
        assert record["items"][0]["effects"] == [{"_id": "e1", "name": "Sharp"}]

    @pytest.mark.asyncio
    async def test_embedded_on_missing_parent(self, sql_backend) -> None:
        with pytest.raises(DocumentNotFoundError):
            await sql_backend.create_documents(
                "Item", [{"name": "X"}], parent=ParentRef("Actor", "zz", embedded_key="items")
            )

    @pytest.mark.asyncio
    async def test_delete_documents(self, sql_backend, db_manager) -> None:
        assert await sql_backend.delete_documents("Actor", ["a1"]) == ["a1"]
        with pytest.raises(DocumentNotFoundError):
            await sql_backend.delete_documents("Actor", ["a1"])
        async with db_manager.session() as session:
            assert await DocumentRepository(session).count("Actor", "") == 1

    @pytest.mark.asyncio
    async def test_migrate_and_delete_pack(self, sql_backend, db_manager) -> None:
        def heal(record):
            record["hp"] += 1

        await sql_backend.migrate_pack("Actor", "srd.monsters", {"transform": heal})
        (goblin,) = await sql_backend.get_documents("Actor", pack="srd.monsters")
        assert goblin["hp"] == 8

        await sql_backend.delete_pack("Actor", "srd.monsters")
        async with db_manager.session() as session:
            assert await DocumentRepository(session).count("Actor", "srd.monsters") == 0
            assert await DocumentRepository(session).count("Actor", "") == 2
