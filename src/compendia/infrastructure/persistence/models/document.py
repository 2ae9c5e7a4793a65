"""SQLAlchemy model for the documents table.

Each row stores one top-level document record, embedded arrays included,
as JSON. World documents use the empty string as their pack.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from compendia.infrastructure.persistence.database import Base


class DocumentModel(Base):
    """SQLAlchemy model for the documents table.

    Attributes:
        row_id: Auto-incrementing surrogate key; preserves insertion order.
        id: Document id, unique per (document_type, pack).
        document_type: Document type name (e.g., "Actor").
        pack: Compendium collection name, or "" for world documents.
        data: The full persisted record.
        created_at: Timestamp when the record was created.
        updated_at: Timestamp when the record was last updated.
    """

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("document_type", "pack", "id", name="uq_documents_type_pack_id"),
    )

    row_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Document id",
    )
    document_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Document type name",
    )
    pack: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        index=True,
        comment="Compendium collection name, empty for world documents",
    )
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Full persisted record",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Document(type='{self.document_type}', pack='{self.pack}', id='{self.id}')>"
