"""Deprecated "entity" API.

Thin adapters mapping the old entity-centric method names onto the current
document calls. Every access emits a ``DeprecationWarning``.
"""

import warnings
from typing import Any, Mapping, Optional

from compendia.application.services.compendium_collection import CompendiumCollection
from compendia.domain.entities.document import Document
from compendia.domain.entities.user import User


def _deprecated(old: str, new: str) -> None:
    warnings.warn(
        f"{old} is deprecated, use {new} instead",
        DeprecationWarning,
        stacklevel=3,
    )


class LegacyCompendiumAdapter:
    """Entity-named access to a CompendiumCollection."""

    def __init__(self, pack: CompendiumCollection, user: User) -> None:
        self.pack = pack
        self.user = user

    @property
    def entity(self) -> str:
        _deprecated("CompendiumCollection.entity", "CompendiumCollection.document_name")
        return self.pack.document_name

    async def content(self) -> list[Document]:
        _deprecated("CompendiumCollection.content", "CompendiumCollection.get_documents")
        return await self.pack.get_documents()

    async def get_entity(self, document_id: str) -> Document:
        _deprecated("CompendiumCollection.get_entity", "CompendiumCollection.get_document")
        return await self.pack.get_document(document_id)

    def get_entry(self, document_id: str) -> Optional[dict[str, Any]]:
        _deprecated("CompendiumCollection.get_entry", "CompendiumCollection.index")
        return self.pack.index.get(document_id)

    async def import_entity(self, document: Document) -> Optional[Document]:
        _deprecated("CompendiumCollection.import_entity", "CompendiumCollection.import_document")
        return await self.pack.import_document(document, self.user)

    async def create_entity(self, data: Mapping[str, Any], **options: Any) -> Optional[Document]:
        _deprecated("CompendiumCollection.create_entity", "CompendiumCollection.create_document")
        return await self.pack.create_document(data, self.user, **options)

    async def update_entity(self, data: Mapping[str, Any], **options: Any) -> Optional[Document]:
        _deprecated("CompendiumCollection.update_entity", "CompendiumCollection.update_document")
        changes = dict(data)
        document_id = changes.pop("_id")
        return await self.pack.update_document(document_id, changes, self.user, **options)

    async def delete_entity(self, document_id: str, **options: Any) -> Optional[Document]:
        _deprecated("CompendiumCollection.delete_entity", "CompendiumCollection.delete_document")
        return await self.pack.delete_document(document_id, self.user, **options)


class LegacyDocumentAdapter:
    """Entity-named access to a Document, as seen by one user."""

    def __init__(self, document: Document, user: User) -> None:
        self.document = document
        self.user = user

    @property
    def entity(self) -> str:
        _deprecated("Document.entity", "Document.document_name")
        return self.document.document_name

    @property
    def owner(self) -> bool:
        _deprecated("Document.owner", "Document.is_owner(user)")
        return self.document.is_owner(self.user)

    @property
    def _id(self) -> Optional[str]:
        _deprecated("Document._id", "Document.id")
        return self.document.id
