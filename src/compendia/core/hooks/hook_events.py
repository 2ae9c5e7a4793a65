"""Hook event definitions and categories.

Before-events receive the proposed payload and may modify it in place,
return a replacement, or abort the whole batch. After-events are called
once per batch after the in-memory state reflects the operation.
"""


class HookCategory:
    """Categories for organizing hooks."""

    DOCUMENT_OPERATIONS = "document_operations"
    EMBEDDED_OPERATIONS = "embedded_operations"
    COMPENDIUM_OPERATIONS = "compendium_operations"


class HookEvent:
    """Hook event names.

    Attributes in format: ON_<CATEGORY>_<TIMING>_<OPERATION>
    """

    # Top-level document operations (collection create/update/delete)
    ON_DOCUMENT_BEFORE_CREATE = "on_document_before_create"
    ON_DOCUMENT_AFTER_CREATE = "on_document_after_create"
    ON_DOCUMENT_BEFORE_UPDATE = "on_document_before_update"
    ON_DOCUMENT_AFTER_UPDATE = "on_document_after_update"
    ON_DOCUMENT_BEFORE_DELETE = "on_document_before_delete"
    ON_DOCUMENT_AFTER_DELETE = "on_document_after_delete"

    # Embedded document operations (children of a parent document)
    ON_EMBEDDED_BEFORE_CREATE = "on_embedded_before_create"
    ON_EMBEDDED_AFTER_CREATE = "on_embedded_after_create"
    ON_EMBEDDED_BEFORE_UPDATE = "on_embedded_before_update"
    ON_EMBEDDED_AFTER_UPDATE = "on_embedded_after_update"
    ON_EMBEDDED_BEFORE_DELETE = "on_embedded_before_delete"
    ON_EMBEDDED_AFTER_DELETE = "on_embedded_after_delete"

    # Compendium pack operations
    ON_COMPENDIUM_BEFORE_IMPORT = "on_compendium_before_import"
    ON_COMPENDIUM_AFTER_IMPORT = "on_compendium_after_import"
    ON_COMPENDIUM_BEFORE_MIGRATE = "on_compendium_before_migrate"
    ON_COMPENDIUM_AFTER_MIGRATE = "on_compendium_after_migrate"
    ON_COMPENDIUM_BEFORE_CONFIGURE = "on_compendium_before_configure"
    ON_COMPENDIUM_AFTER_CONFIGURE = "on_compendium_after_configure"


EVENT_CATEGORIES: dict[str, str] = {
    HookEvent.ON_DOCUMENT_BEFORE_CREATE: HookCategory.DOCUMENT_OPERATIONS,
    HookEvent.ON_DOCUMENT_AFTER_CREATE: HookCategory.DOCUMENT_OPERATIONS,
    HookEvent.ON_DOCUMENT_BEFORE_UPDATE: HookCategory.DOCUMENT_OPERATIONS,
    HookEvent.ON_DOCUMENT_AFTER_UPDATE: HookCategory.DOCUMENT_OPERATIONS,
    HookEvent.ON_DOCUMENT_BEFORE_DELETE: HookCategory.DOCUMENT_OPERATIONS,
    HookEvent.ON_DOCUMENT_AFTER_DELETE: HookCategory.DOCUMENT_OPERATIONS,
    HookEvent.ON_EMBEDDED_BEFORE_CREATE: HookCategory.EMBEDDED_OPERATIONS,
    HookEvent.ON_EMBEDDED_AFTER_CREATE: HookCategory.EMBEDDED_OPERATIONS,
    HookEvent.ON_EMBEDDED_BEFORE_UPDATE: HookCategory.EMBEDDED_OPERATIONS,
    HookEvent.ON_EMBEDDED_AFTER_UPDATE: HookCategory.EMBEDDED_OPERATIONS,
    HookEvent.ON_EMBEDDED_BEFORE_DELETE: HookCategory.EMBEDDED_OPERATIONS,
    HookEvent.ON_EMBEDDED_AFTER_DELETE: HookCategory.EMBEDDED_OPERATIONS,
    HookEvent.ON_COMPENDIUM_BEFORE_IMPORT: HookCategory.COMPENDIUM_OPERATIONS,
    HookEvent.ON_COMPENDIUM_AFTER_IMPORT: HookCategory.COMPENDIUM_OPERATIONS,
    HookEvent.ON_COMPENDIUM_BEFORE_MIGRATE: HookCategory.COMPENDIUM_OPERATIONS,
    HookEvent.ON_COMPENDIUM_AFTER_MIGRATE: HookCategory.COMPENDIUM_OPERATIONS,
    HookEvent.ON_COMPENDIUM_BEFORE_CONFIGURE: HookCategory.COMPENDIUM_OPERATIONS,
    HookEvent.ON_COMPENDIUM_AFTER_CONFIGURE: HookCategory.COMPENDIUM_OPERATIONS,
}


def get_all_events() -> list[str]:
    """Get all available hook event names."""
    return [
        value
        for name, value in vars(HookEvent).items()
        if not name.startswith("_") and isinstance(value, str)
    ]


def is_before_event(event: str) -> bool:
    """Check if an event is a 'before' event (can modify data/abort)."""
    return "_before_" in event


def is_after_event(event: str) -> bool:
    """Check if an event is an 'after' event."""
    return "_after_" in event
