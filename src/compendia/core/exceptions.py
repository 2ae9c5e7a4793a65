"""Exceptions raised by the document lifecycle and compendium layers."""

from dataclasses import dataclass
from typing import Any


@dataclass
class FieldError:
    """A single source-data validation error."""

    field: str
    message: str
    code: str


class CompendiaError(Exception):
    """Base class for all Compendia errors."""

    pass


class DocumentValidationError(CompendiaError):
    """Raised when source data fails schema or shape constraints.

    Raised by the base phase of the preparation pipeline and always before
    any backend mutation is attempted.
    """

    def __init__(self, message: str, errors: list[FieldError] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, document_name: str, exc: Any) -> "DocumentValidationError":
        """Build from a ``pydantic.ValidationError``."""
        errors = [
            FieldError(
                field=".".join(str(part) for part in error.get("loc", ())) or "__root__",
                message=error.get("msg", "Invalid value"),
                code=error.get("type", "invalid"),
            )
            for error in exc.errors()
        ]
        summary = "; ".join(f"{e.field}: {e.message}" for e in errors)
        return cls(f"Invalid {document_name} data: {summary}", errors)


class DocumentPermissionError(CompendiaError, PermissionError):
    """Raised when the acting user's resolved permission level is insufficient."""

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        required: int | None = None,
        actual: int | None = None,
    ) -> None:
        self.user_id = user_id
        self.required = required
        self.actual = actual
        super().__init__(message)


class LockedPackError(CompendiaError):
    """Raised when a mutation is attempted on a locked compendium pack."""

    def __init__(self, collection: str) -> None:
        self.collection = collection
        super().__init__(f"Compendium pack {collection} is locked and cannot be modified")


class DocumentNotFoundError(CompendiaError, LookupError):
    """Raised when a document id is absent from both the cache and the backend."""

    def __init__(self, document_name: str, document_id: str) -> None:
        self.document_name = document_name
        self.document_id = document_id
        super().__init__(f"{document_name} {document_id} does not exist")


class DocumentStateError(CompendiaError):
    """Raised when a document is used in a state that does not permit the access."""

    pass


class BackendError(CompendiaError):
    """Raised when the persistence backend rejects or fails a request."""

    pass
