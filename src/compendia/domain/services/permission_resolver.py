"""Permission resolution service.

Computes the effective permission level a user holds over a document.

Resolution order:
1. Gamemaster-equivalent users resolve to OWNER, bypassing the map
2. Explicit per-user entry in the document's permission map
3. The map's "default" entry
4. The level resolved for the document's parent (recursively)
5. NONE

Resolution is pure: nothing is cached and the document is never mutated,
so callers decide how often to resolve (once per access, once per pass).
"""

from typing import Any, Iterable, Mapping, Optional, Protocol

from compendia.core.exceptions import DocumentPermissionError
from compendia.core.logging import get_logger
from compendia.domain.entities.permission import DEFAULT_PERMISSION_KEY, PermissionLevel
from compendia.domain.entities.user import User

logger = get_logger(__name__)


class Permissioned(Protocol):
    """Anything that carries a permission map and an optional parent."""

    @property
    def permission_map(self) -> Mapping[str, int]: ...

    @property
    def parent(self) -> Optional["Permissioned"]: ...


def _coerce_level(value: Any) -> PermissionLevel:
    level = int(value)
    if level <= PermissionLevel.NONE:
        return PermissionLevel.NONE
    if level >= PermissionLevel.OWNER:
        return PermissionLevel.OWNER
    return PermissionLevel(level)


def permission_level(user: Optional[User], document: Optional[Permissioned]) -> PermissionLevel:
    """Resolve the permission level ``user`` holds over ``document``."""
    if user is None:
        return PermissionLevel.NONE
    if user.is_gamemaster:
        return PermissionLevel.OWNER

    node = document
    seen: set[int] = set()
    while node is not None and id(node) not in seen:
        seen.add(id(node))
        permissions = node.permission_map or {}
        if user.id in permissions:
            return _coerce_level(permissions[user.id])
        if DEFAULT_PERMISSION_KEY in permissions:
            return _coerce_level(permissions[DEFAULT_PERMISSION_KEY])
        node = node.parent
    return PermissionLevel.NONE


class PermissionResolver:
    """Stateless accessor facade over :func:`permission_level`."""

    def permission_level(self, user: Optional[User], document: Optional[Permissioned]) -> PermissionLevel:
        return permission_level(user, document)

    def is_owner(self, user: Optional[User], document: Permissioned) -> bool:
        return self.permission_level(user, document) >= PermissionLevel.OWNER

    def is_limited(self, user: Optional[User], document: Permissioned) -> bool:
        """Exactly LIMITED, not "at least"."""
        return self.permission_level(user, document) == PermissionLevel.LIMITED

    def is_visible(self, user: Optional[User], document: Permissioned) -> bool:
        return self.permission_level(user, document) >= PermissionLevel.LIMITED

    def has_player_owner(self, document: Permissioned, users: Iterable[User]) -> bool:
        """Whether any non-gamemaster user owns the document."""
        return any(
            not user.is_gamemaster and self.is_owner(user, document) for user in users
        )

    def require(
        self,
        user: Optional[User],
        document: Permissioned,
        level: PermissionLevel,
        action: str,
    ) -> PermissionLevel:
        """Resolve and raise DocumentPermissionError when below ``level``.

        Returns:
            The resolved level.
        """
        actual = self.permission_level(user, document)
        if actual < level:
            user_id = user.id if user is not None else None
            logger.warning(
                "Permission denied",
                user_id=user_id,
                action=action,
                required=level.name,
                actual=actual.name,
            )
            raise DocumentPermissionError(
                f"User {user_id} lacks {level.name} permission to {action}",
                user_id=user_id,
                required=int(level),
                actual=int(actual),
            )
        return actual
