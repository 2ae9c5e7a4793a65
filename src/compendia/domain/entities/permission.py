"""Permission levels and user roles.

Levels are ordered so that comparisons express "at least": a document a
user OWNS is also OBSERVED and LIMITED for that user.
"""

from enum import IntEnum

# Key of the fallback entry in a document's permission map
DEFAULT_PERMISSION_KEY = "default"


class PermissionLevel(IntEnum):
    """Permission a user holds over a document."""

    NONE = 0
    LIMITED = 1
    OBSERVER = 2
    OWNER = 3


class UserRole(IntEnum):
    """Platform-level role of a user."""

    NONE = 0
    PLAYER = 1
    TRUSTED = 2
    ASSISTANT = 3
    GAMEMASTER = 4


# Roles at or above this level bypass document permission maps entirely
GAMEMASTER_THRESHOLD = UserRole.ASSISTANT
