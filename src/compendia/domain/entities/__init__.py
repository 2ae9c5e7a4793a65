"""Domain entities for Compendia.

Documents live in ``compendia.domain.entities.document``; the entities
exported here are the plain value types they depend on.
"""

from compendia.domain.entities.compendium import CompendiumConfiguration, CompendiumMetadata
from compendia.domain.entities.hook_context import (
    AbortHookException,
    HookContext,
    HookResult,
)
from compendia.domain.entities.permission import PermissionLevel, UserRole
from compendia.domain.entities.user import User

__all__ = [
    "AbortHookException",
    "CompendiumConfiguration",
    "CompendiumMetadata",
    "HookContext",
    "HookResult",
    "PermissionLevel",
    "User",
    "UserRole",
]
