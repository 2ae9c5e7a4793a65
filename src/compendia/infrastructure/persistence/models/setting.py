"""SQLAlchemy model for the settings table.

Holds named JSON setting entries, such as the compendium configuration.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from compendia.infrastructure.persistence.database import Base


class SettingModel(Base):
    """SQLAlchemy model for the settings table.

    Attributes:
        key: Setting name.
        value: JSON value.
        updated_at: Timestamp when the entry was last written.
    """

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Setting name",
    )
    value: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
        comment="Setting value",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Setting(key='{self.key}')>"
