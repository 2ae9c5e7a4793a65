"""SQLAlchemy models for Compendia storage tables.

All models inherit from the Base class defined in database.py.
"""

from compendia.infrastructure.persistence.models.document import DocumentModel
from compendia.infrastructure.persistence.models.setting import SettingModel

__all__ = [
    "DocumentModel",
    "SettingModel",
]
