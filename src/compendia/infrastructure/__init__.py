"""Infrastructure layer - persistence backends and stores.

This layer contains the external dependencies:
- Database adapters (SQLAlchemy)
- Document backends and the compendium configuration store
"""

from compendia.infrastructure.persistence.database import (
    Base,
    DatabaseManager,
    init_database,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "init_database",
]
