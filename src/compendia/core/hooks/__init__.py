"""Hook system core module.

Event-based extension points around document, embedded-document and
compendium operations.

Example usage:
    from compendia.core.hooks import HookRegistry, HookDecorator, HookEvent

    registry = HookRegistry()
    hooks = HookDecorator(registry)

    @hooks.on_embedded_after_create("Item")
    async def announce(event, data, context):
        logger.info("Items created", ids=[d["_id"] for d in data["result"]])
"""

from compendia.core.hooks.hook_decorator import HookDecorator
from compendia.core.hooks.hook_events import (
    EVENT_CATEGORIES,
    HookCategory,
    HookEvent,
    get_all_events,
    is_after_event,
    is_before_event,
)
from compendia.core.hooks.hook_registry import HookRegistry, RegisteredHook

__all__ = [
    "HookRegistry",
    "RegisteredHook",
    "HookDecorator",
    "HookCategory",
    "HookEvent",
    "EVENT_CATEGORIES",
    "get_all_events",
    "is_before_event",
    "is_after_event",
]
