"""SQLAlchemy implementation of the document backend.

Every call runs in its own session and commits once, so a failing batch
leaves the stored records untouched.
"""

import copy
from typing import Any, Mapping, Optional

from compendia.core.exceptions import DocumentNotFoundError
from compendia.core.logging import get_logger
from compendia.infrastructure.persistence.backend import (
    WORLD_PACK,
    DocumentBackend,
    ParentRef,
    create_in_list,
    delete_from_list,
    migrate_records,
    resolve_embedded_list,
    select_records,
    update_in_list,
)
from compendia.infrastructure.persistence.database import DatabaseManager
from compendia.infrastructure.persistence.models.document import DocumentModel
from compendia.infrastructure.persistence.repositories.document_repository import (
    DocumentRepository,
)

logger = get_logger(__name__)


class SqlDocumentBackend(DocumentBackend):
    """Stores document records as JSON rows in the ``documents`` table."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def get_documents(
        self,
        document_type: str,
        query: Optional[Mapping[str, Any]] = None,
        *,
        pack: Optional[str] = None,
        index_fields: Optional[list[str]] = None,
    ) -> list[dict[str, Any]]:
        async with self.db.session() as session:
            repo = DocumentRepository(session)
            document_id = (query or {}).get("_id")
            if isinstance(document_id, str):
                row = await repo.get(document_type, pack or WORLD_PACK, document_id)
                rows = [row] if row is not None else []
            else:
                rows = await repo.list_documents(document_type, pack or WORLD_PACK)
            return select_records([row.data for row in rows], query, index_fields)

    async def create_documents(
        self,
        document_type: str,
        data: list[dict[str, Any]],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        async with self.db.session() as session:
            repo = DocumentRepository(session)
            if parent is not None:
                row, record = await self._load_parent(repo, parent, pack)
                created = create_in_list(resolve_embedded_list(record, parent), data, document_type)
                row.data = record
            else:
                given_ids = [entry["_id"] for entry in data if entry.get("_id")]
                existing = await repo.get_many(document_type, pack or WORLD_PACK, given_ids)
                created = create_in_list([row.data for row in existing], data, document_type)
                for record in created:
                    await repo.create(
                        DocumentModel(
                            id=record["_id"],
                            document_type=document_type,
                            pack=pack or WORLD_PACK,
                            data=copy.deepcopy(record),
                        )
                    )
            await session.commit()

        logger.debug("Records created", document_type=document_type, pack=pack, count=len(created))
        return created

    async def update_documents(
        self,
        document_type: str,
        updates: list[dict[str, Any]],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        async with self.db.session() as session:
            repo = DocumentRepository(session)
            if parent is not None:
                row, record = await self._load_parent(repo, parent, pack)
                applied = update_in_list(resolve_embedded_list(record, parent), updates, document_type)
                row.data = record
            else:
                rows = await repo.get_many(
                    document_type, pack or WORLD_PACK, [u.get("_id") for u in updates]
                )
                records = {row.id: copy.deepcopy(row.data) for row in rows}
                applied = update_in_list(list(records.values()), updates, document_type)
                for row in rows:
                    row.data = records[row.id]
            await session.commit()
        return applied

    async def delete_documents(
        self,
        document_type: str,
        ids: list[str],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        async with self.db.session() as session:
            repo = DocumentRepository(session)
            if parent is not None:
                row, record = await self._load_parent(repo, parent, pack)
                deleted = delete_from_list(resolve_embedded_list(record, parent), ids, document_type)
                row.data = record
            else:
                rows = await repo.get_many(document_type, pack or WORLD_PACK, ids)
                deleted = delete_from_list([row.data for row in rows], ids, document_type)
                await repo.delete_many(document_type, pack or WORLD_PACK, deleted)
            await session.commit()
        return deleted

    async def migrate_pack(
        self,
        document_type: str,
        pack: str,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        async with self.db.session() as session:
            repo = DocumentRepository(session)
            rows = await repo.list_documents(document_type, pack)
            migrated = migrate_records([row.data for row in rows], options)
            for row, record in zip(rows, migrated):
                row.data = record
            await session.commit()
        logger.info("Pack migrated", document_type=document_type, pack=pack, count=len(rows))

    async def delete_pack(self, document_type: str, pack: str) -> None:
        async with self.db.session() as session:
            count = await DocumentRepository(session).delete_pack(document_type, pack)
            await session.commit()
        logger.info("Pack records deleted", document_type=document_type, pack=pack, count=count)

    async def _load_parent(
        self, repo: DocumentRepository, parent: ParentRef, pack: Optional[str]
    ) -> tuple[DocumentModel, dict[str, Any]]:
        row = await repo.get(parent.document_type, pack or WORLD_PACK, parent.document_id)
        if row is None:
            raise DocumentNotFoundError(parent.document_type, parent.document_id)
        return row, copy.deepcopy(row.data)
