"""Compendium pack identity and configuration entities."""

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class CompendiumMetadata:
    """Immutable identity of a compendium pack.

    Attributes:
        name: Pack name, unique within its package.
        package: Name of the package (or world) that provides the pack.
        document_name: Document type stored in the pack.
        label: Human-readable title.
        path: Optional storage location hint for the backend.
        ownership: Pack-level permission map keyed by user id or "default".
    """

    name: str
    package: str
    document_name: str
    label: str = ""
    path: str | None = None
    ownership: Mapping[str, int] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Compendium name is required")
        if not self.package:
            raise ValueError("Compendium package is required")
        if not self.document_name:
            raise ValueError("Compendium document type is required")
        if "." in self.name:
            raise ValueError("Compendium name cannot contain '.'")

    @property
    def collection(self) -> str:
        """Canonical pack name: originating package plus pack name."""
        return f"{self.package}.{self.name}"

    @property
    def title(self) -> str:
        return self.label or self.name


@dataclass
class CompendiumConfiguration:
    """Externally persisted {private, locked} flags of a pack."""

    private: bool = False
    locked: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"private": self.private, "locked": self.locked}

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any] | None, default_locked: bool = False
    ) -> "CompendiumConfiguration":
        """Build from a stored entry, filling absent flags with defaults."""
        data = data or {}
        return cls(
            private=bool(data.get("private", False)),
            locked=bool(data.get("locked", default_locked)),
        )
