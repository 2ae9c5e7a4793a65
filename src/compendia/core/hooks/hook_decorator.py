"""Hook decorator API for user-friendly hook registration.

Enables the ``@hooks.on_embedded_before_create("Item")`` syntax on top of a
HookRegistry.
"""

from typing import Any, Callable, Optional, TypeVar

from compendia.core.hooks.hook_events import HookEvent
from compendia.core.hooks.hook_registry import HookRegistry

F = TypeVar("F", bound=Callable[..., Any])


class HookDecorator:
    """Provides decorator syntax for hook registration.

    Example:
        hooks = HookDecorator(registry)

        @hooks.on_embedded_before_create("Item", priority=10)
        async def strip_duplicates(event, data, context):
            seen = set()
            data["data"][:] = [d for d in data["data"] if not (d["name"] in seen or seen.add(d["name"]))]
            return data
    """

    def __init__(self, registry: HookRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> HookRegistry:
        """Get the underlying hook registry."""
        return self._registry

    def on(
        self,
        event: str,
        document_type: Optional[str] = None,
        priority: int = 0,
        stop_on_error: bool = False,
    ) -> Callable[[F], F]:
        """Register a hook for an arbitrary event."""
        return self._create_decorator(event, document_type, priority, stop_on_error)

    # =========================================================================
    # Document Operation Hooks
    # =========================================================================

    def on_document_before_create(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before top-level documents are created. Can modify data or veto."""
        return self._create_decorator(
            HookEvent.ON_DOCUMENT_BEFORE_CREATE, document_type, priority, stop_on_error
        )

    def on_document_after_create(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After top-level documents are created and prepared."""
        return self._create_decorator(
            HookEvent.ON_DOCUMENT_AFTER_CREATE, document_type, priority, stop_on_error
        )

    def on_document_before_update(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before top-level documents are updated. Can modify data or veto."""
        return self._create_decorator(
            HookEvent.ON_DOCUMENT_BEFORE_UPDATE, document_type, priority, stop_on_error
        )

    def on_document_after_update(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After top-level documents are updated and re-prepared."""
        return self._create_decorator(
            HookEvent.ON_DOCUMENT_AFTER_UPDATE, document_type, priority, stop_on_error
        )

    def on_document_before_delete(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before top-level documents are deleted. Can veto."""
        return self._create_decorator(
            HookEvent.ON_DOCUMENT_BEFORE_DELETE, document_type, priority, stop_on_error
        )

    def on_document_after_delete(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After top-level documents are deleted and detached."""
        return self._create_decorator(
            HookEvent.ON_DOCUMENT_AFTER_DELETE, document_type, priority, stop_on_error
        )

    # =========================================================================
    # Embedded Operation Hooks
    # =========================================================================

    def on_embedded_before_create(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before embedded documents are created in a parent."""
        return self._create_decorator(
            HookEvent.ON_EMBEDDED_BEFORE_CREATE, document_type, priority, stop_on_error
        )

    def on_embedded_after_create(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After embedded documents are created and the parent re-prepared."""
        return self._create_decorator(
            HookEvent.ON_EMBEDDED_AFTER_CREATE, document_type, priority, stop_on_error
        )

    def on_embedded_before_update(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before embedded documents are updated."""
        return self._create_decorator(
            HookEvent.ON_EMBEDDED_BEFORE_UPDATE, document_type, priority, stop_on_error
        )

    def on_embedded_after_update(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After embedded documents are updated and the parent re-prepared."""
        return self._create_decorator(
            HookEvent.ON_EMBEDDED_AFTER_UPDATE, document_type, priority, stop_on_error
        )

    def on_embedded_before_delete(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before embedded documents are deleted."""
        return self._create_decorator(
            HookEvent.ON_EMBEDDED_BEFORE_DELETE, document_type, priority, stop_on_error
        )

    def on_embedded_after_delete(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After embedded documents are deleted and the parent re-prepared."""
        return self._create_decorator(
            HookEvent.ON_EMBEDDED_AFTER_DELETE, document_type, priority, stop_on_error
        )

    # =========================================================================
    # Compendium Hooks
    # =========================================================================

    def on_compendium_before_import(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """Before a document is imported into a compendium pack."""
        return self._create_decorator(
            HookEvent.ON_COMPENDIUM_BEFORE_IMPORT, document_type, priority, stop_on_error
        )

    def on_compendium_after_import(
        self, document_type: Optional[str] = None, priority: int = 0, stop_on_error: bool = False
    ) -> Callable[[F], F]:
        """After a document is imported into a compendium pack."""
        return self._create_decorator(
            HookEvent.ON_COMPENDIUM_AFTER_IMPORT, document_type, priority, stop_on_error
        )

    def _create_decorator(
        self,
        event: str,
        document_type: Optional[str],
        priority: int,
        stop_on_error: bool,
    ) -> Callable[[F], F]:
        filters = {"document_type": document_type} if document_type else None

        def decorator(func: F) -> F:
            self._registry.register(
                event=event,
                callback=func,
                filters=filters,
                priority=priority,
                stop_on_error=stop_on_error,
            )
            return func

        return decorator
