"""Document repository for database operations."""

from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from compendia.infrastructure.persistence.models.document import DocumentModel


class DocumentRepository:
    """Repository for document record database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def create(self, document: DocumentModel) -> DocumentModel:
        """Add a new document row and flush it."""
        self.session.add(document)
        await self.session.flush()
        return document

    async def get(self, document_type: str, pack: str, document_id: str) -> Optional[DocumentModel]:
        """Get one document row by type, pack and id."""
        result = await self.session.execute(
            select(DocumentModel).where(
                DocumentModel.document_type == document_type,
                DocumentModel.pack == pack,
                DocumentModel.id == document_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_documents(self, document_type: str, pack: str) -> Sequence[DocumentModel]:
        """List every row of a type and pack in insertion order."""
        result = await self.session.execute(
            select(DocumentModel)
            .where(DocumentModel.document_type == document_type, DocumentModel.pack == pack)
            .order_by(DocumentModel.row_id)
        )
        return result.scalars().all()

    async def get_many(
        self, document_type: str, pack: str, document_ids: list[str]
    ) -> Sequence[DocumentModel]:
        """Get the rows with the given ids."""
        result = await self.session.execute(
            select(DocumentModel).where(
                DocumentModel.document_type == document_type,
                DocumentModel.pack == pack,
                DocumentModel.id.in_(document_ids),
            )
        )
        return result.scalars().all()

    async def delete_many(self, document_type: str, pack: str, document_ids: list[str]) -> int:
        """Delete the rows with the given ids. Returns the number deleted."""
        result = await self.session.execute(
            delete(DocumentModel).where(
                DocumentModel.document_type == document_type,
                DocumentModel.pack == pack,
                DocumentModel.id.in_(document_ids),
            )
        )
        return result.rowcount

    async def delete_pack(self, document_type: str, pack: str) -> int:
        """Delete every row of a pack. Returns the number deleted."""
        result = await self.session.execute(
            delete(DocumentModel).where(
                DocumentModel.document_type == document_type,
                DocumentModel.pack == pack,
            )
        )
        return result.rowcount

    async def count(self, document_type: str, pack: str) -> int:
        """Count the rows of a type and pack."""
        result = await self.session.execute(
            select(func.count())
            .select_from(DocumentModel)
            .where(DocumentModel.document_type == document_type, DocumentModel.pack == pack)
        )
        return result.scalar_one()
