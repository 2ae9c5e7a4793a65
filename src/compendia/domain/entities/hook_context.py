"""Hook context and exceptions for the hook system.

Contains the core data structures used by the hook system:
- HookContext: Context passed to all hook callbacks
- AbortHookException: Raised by before-hooks to veto a batch
- HookResult: Result of a hook trigger operation
"""

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from compendia.domain.entities.user import User


class AbortHookException(Exception):
    """Raised by before-hooks to veto an operation.

    A vetoed batch is short-circuited without error: the operation returns
    an empty result and nothing is persisted.

    Example:
        @hooks.on_document_before_create("Item")
        async def reject_unnamed(event, data, context):
            if not all(d.get("name") for d in data["data"]):
                raise AbortHookException("Every item needs a name")
            return data
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


@dataclass
class HookContext:
    """Context passed to all hook callbacks.

    Attributes:
        registry: The CollectionRegistry the operation runs in, if any.
        user: The acting user.
        options: Options which modify the operation.
        pack: Collection name of the compendium pack involved, if any.
        request_id: Correlation ID for logging and tracing.
    """

    registry: Any = None
    user: Optional["User"] = None
    options: dict[str, Any] = field(default_factory=dict)
    pack: Optional[str] = None
    request_id: str = ""

    def __post_init__(self) -> None:
        if not self.request_id:
            self.request_id = f"hk_{uuid.uuid4().hex[:12]}"

    @property
    def user_id(self) -> Optional[str]:
        """ID of the acting user, if any."""
        return self.user.id if self.user is not None else None


@dataclass
class HookResult:
    """Result of a hook trigger operation.

    Attributes:
        success: Whether all hooks executed successfully.
        aborted: Whether the operation was vetoed by a hook.
        abort_message: Message from AbortHookException if aborted.
        errors: List of error messages from hooks that failed.
        data: Modified data from the hook chain.
    """

    success: bool = True
    aborted: bool = False
    abort_message: Optional[str] = None
    errors: list[str] = field(default_factory=list)
    data: Optional[dict[str, Any]] = None
