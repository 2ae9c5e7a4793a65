"""Repository implementations for data access."""

from compendia.infrastructure.persistence.repositories.document_repository import (
    DocumentRepository,
)
from compendia.infrastructure.persistence.repositories.setting_repository import (
    SettingRepository,
)

__all__ = [
    "DocumentRepository",
    "SettingRepository",
]
