"""Folder entity used to organise world documents."""

from typing import Optional

from pydantic import field_validator

from compendia.domain.entities.document import Document, DocumentSchema


class FolderSchema(DocumentSchema):
    """Source data of a Folder."""

    name: str
    type: str
    parent: Optional[str] = None
    color: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Folder name cannot be empty")
        return v


class Folder(Document):
    """A Folder groups world documents of one ``type``."""

    document_name = "Folder"
    schema = FolderSchema

    @property
    def type(self) -> Optional[str]:
        return self._source.get("type")

    def contents(self) -> list[Document]:
        """World documents of this folder's type filed under it."""
        collection = self.collection
        if collection is None or collection.registry is None or not self.type:
            return []
        documents = collection.registry.world_or_none(self.type)
        if documents is None:
            return []
        return [document for document in documents.contents if document._source.get("folder") == self.id]
