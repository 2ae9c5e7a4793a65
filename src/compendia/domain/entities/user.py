"""User entity for permission resolution."""

from dataclasses import dataclass

from compendia.domain.entities.permission import GAMEMASTER_THRESHOLD, UserRole


@dataclass
class User:
    """An acting user.

    Attributes:
        id: Unique identifier, used as the key in document permission maps.
        name: Display name.
        role: Platform-level role.
    """

    id: str
    name: str = ""
    role: UserRole = UserRole.PLAYER

    def __post_init__(self) -> None:
        """Validate user data after initialization."""
        if not self.id:
            raise ValueError("User ID is required")
        self.role = UserRole(self.role)

    @property
    def is_gamemaster(self) -> bool:
        """Whether the user holds gamemaster-equivalent privilege."""
        return self.role >= GAMEMASTER_THRESHOLD

    def has_role(self, role: UserRole) -> bool:
        """Whether the user's role is at least ``role``."""
        return self.role >= role
