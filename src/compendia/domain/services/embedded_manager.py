"""Embedded collection manager.

Orchestrates create/update/delete of documents embedded inside a parent
document. Every batch runs the same sequence under the parent's lock:

1. Permission check (OWNER on the parent, pack lock for compendium content)
2. Pre-hooks: the parent's ``_pre_*_embedded_documents`` then registry
   ``ON_EMBEDDED_BEFORE_*`` hooks; an emptied batch returns ``[]``
3. Validation
4. Backend mutation
5. In-memory apply and re-preparation of the parent
6. Post-hooks: child ``_on_*``, the parent's ``_on_*_embedded_documents``,
   then registry ``ON_EMBEDDED_AFTER_*`` hooks
7. Observer render

Pre- and post-hooks run exactly once per batch.
"""

import contextlib
import copy
from typing import TYPE_CHECKING, Any, Mapping, Optional

from compendia.core.exceptions import (
    BackendError,
    CompendiaError,
    DocumentNotFoundError,
    DocumentStateError,
    DocumentValidationError,
    FieldError,
)
from compendia.core.hooks.hook_events import HookEvent
from compendia.core.hooks.hook_registry import HookRegistry
from compendia.core.logging import get_logger
from compendia.domain.entities.hook_context import HookContext
from compendia.domain.entities.permission import PermissionLevel
from compendia.domain.entities.user import User
from compendia.domain.services.id_generator import generate_id
from compendia.infrastructure.persistence.backend import DocumentBackend, ParentRef

if TYPE_CHECKING:
    from compendia.domain.entities.document import Document

logger = get_logger(__name__)


def parent_ref_for(parent: "Document", embedded_key: str) -> ParentRef:
    """Build the backend locator of ``parent``'s embedded list ``embedded_key``."""
    steps: list[tuple[str, str]] = []
    node = parent
    while node.parent is not None:
        owner = node.parent
        steps.append((owner.embedded_spec(owner._embedded_name_of(node)).key, node.id))
        node = owner
    return ParentRef(
        document_type=node.document_name,
        document_id=node.id,
        path=tuple(reversed(steps)),
        embedded_key=embedded_key,
    )


def require_checked_id(document_id: Any, checked: set[str]) -> str:
    """Reject an id a before-hook added to a batch after the permission check."""
    if document_id not in checked:
        logger.warning("Hook added an unchecked document to a batch", document_id=document_id)
        raise DocumentValidationError(
            f"Document {document_id} was not part of the original request",
            [FieldError(field="_id", message="not part of the original request", code="unchecked_id")],
        )
    return document_id


class EmbeddedCollectionManager:
    """CRUD orchestration for the embedded collections of one parent document."""

    def __init__(
        self,
        parent: "Document",
        backend: Optional[DocumentBackend] = None,
        hooks: Optional[HookRegistry] = None,
    ) -> None:
        self.parent = parent
        collection = parent.collection
        self.collection = collection
        self.backend = backend if backend is not None else getattr(collection, "backend", None)
        self.hooks = hooks if hooks is not None else getattr(collection, "hooks", None)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_embedded_documents(
        self,
        embedded_name: str,
        data: list[Mapping[str, Any]],
        user: User,
        **options: Any,
    ) -> list["Document"]:
        """Create embedded children of ``embedded_name`` inside the parent."""
        parent = self.parent
        spec = parent.embedded_spec(embedded_name)
        document_class = spec.document_class
        parent._warn_if_notifying("create_embedded")

        async with parent._lock:
            self._assert_can_modify(user, "create")
            with self._mutating():
                proposed = [copy.deepcopy(dict(entry)) for entry in data]
                if parent._pre_create_embedded_documents(embedded_name, proposed, options, user.id) is False:
                    proposed = []
                proposed = await self._trigger_before(
                    HookEvent.ON_EMBEDDED_BEFORE_CREATE, embedded_name, proposed, user, options
                )
                if not proposed:
                    logger.info("Embedded create vetoed", parent=parent.uuid, embedded=embedded_name)
                    return []

                existing = {child.id for child in parent.get_embedded_collection(embedded_name)}
                for entry in proposed:
                    if not entry.get("_id"):
                        entry["_id"] = generate_id()
                    if entry["_id"] in existing:
                        raise DocumentValidationError(
                            f"{document_class.document_name} {entry['_id']} already exists in {parent.uuid}",
                            [FieldError(field="_id", message="duplicate id", code="duplicate_id")],
                        )
                    existing.add(entry["_id"])
                    document_class.assign_embedded_ids(entry)
                    document_class.validate_source(entry)

                records = await self._call_backend(
                    "create_documents", document_class.document_name, proposed, spec.key, options
                )
                created = []
                for record in records:
                    child = document_class(record, parent=parent)
                    parent._attach_embedded(embedded_name, child)
                    child.prepare_data()
                    created.append(child)
                parent.prepare_data()

                for child, record in zip(created, records):
                    child._on_create(record, options, user.id)
                parent._on_create_embedded_documents(embedded_name, created, records, options, user.id)
                await self._trigger_after(
                    HookEvent.ON_EMBEDDED_AFTER_CREATE, embedded_name, created, records, user, options
                )

            logger.debug(
                "Embedded documents created",
                parent=parent.uuid,
                embedded=embedded_name,
                count=len(created),
            )
            for child in created:
                child.render()
            parent.render()
            return created

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_embedded_documents(
        self,
        embedded_name: str,
        updates: list[Mapping[str, Any]],
        user: User,
        **options: Any,
    ) -> list["Document"]:
        """Apply incremental updates, keyed by ``_id``, to embedded children."""
        parent = self.parent
        spec = parent.embedded_spec(embedded_name)
        document_class = spec.document_class
        parent._warn_if_notifying("update_embedded")

        async with parent._lock:
            self._assert_can_modify(user, "update")
            with self._mutating():
                proposed = []
                seen: set[str] = set()
                for change in updates:
                    child = self._require_child(embedded_name, change.get("_id"))
                    if child.id in seen:
                        raise DocumentValidationError(
                            f"{document_class.document_name} {child.id} appears twice in one update",
                            [FieldError(field="_id", message="duplicate id", code="duplicate_id")],
                        )
                    seen.add(child.id)
                    diff = child._diff(change)
                    if diff:
                        diff["_id"] = child.id
                        proposed.append(diff)
                if not proposed:
                    return []

                if parent._pre_update_embedded_documents(embedded_name, proposed, options, user.id) is False:
                    proposed = []
                proposed = await self._trigger_before(
                    HookEvent.ON_EMBEDDED_BEFORE_UPDATE, embedded_name, proposed, user, options
                )
                if not proposed:
                    logger.info("Embedded update vetoed", parent=parent.uuid, embedded=embedded_name)
                    return []

                targets = []
                for diff in proposed:
                    child = self._require_child(embedded_name, require_checked_id(diff.get("_id"), seen))
                    changes = {k: v for k, v in diff.items() if k != "_id"}
                    document_class.validate_source(child._candidate_source(changes))
                    targets.append((child, changes))

                results = await self._call_backend(
                    "update_documents", document_class.document_name, proposed, spec.key, options
                )
                for child, changes in targets:
                    child._apply_changes(changes)
                # The parent pass re-prepares every child with the new ancestor state.
                parent.prepare_data()

                updated = [child for child, _ in targets]
                for child, changes in targets:
                    child._on_update(changes, options, user.id)
                parent._on_update_embedded_documents(embedded_name, updated, results, options, user.id)
                await self._trigger_after(
                    HookEvent.ON_EMBEDDED_AFTER_UPDATE, embedded_name, updated, results, user, options
                )

            for child in updated:
                child.render()
            parent.render()
            return updated

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_embedded_documents(
        self,
        embedded_name: str,
        ids: list[str],
        user: User,
        **options: Any,
    ) -> list["Document"]:
        """Delete embedded children by id."""
        parent = self.parent
        spec = parent.embedded_spec(embedded_name)
        document_class = spec.document_class
        parent._warn_if_notifying("delete_embedded")

        async with parent._lock:
            self._assert_can_modify(user, "delete")
            with self._mutating():
                proposed: list[str] = []
                for document_id in ids:
                    child = self._require_child(embedded_name, document_id)
                    if child.id not in proposed:
                        proposed.append(child.id)
                checked = set(proposed)

                if parent._pre_delete_embedded_documents(embedded_name, proposed, options, user.id) is False:
                    proposed = []
                proposed = await self._trigger_before(
                    HookEvent.ON_EMBEDDED_BEFORE_DELETE, embedded_name, proposed, user, options
                )
                if not proposed:
                    logger.info("Embedded delete vetoed", parent=parent.uuid, embedded=embedded_name)
                    return []
                targets = [
                    self._require_child(embedded_name, require_checked_id(document_id, checked))
                    for document_id in proposed
                ]

                results = await self._call_backend(
                    "delete_documents", document_class.document_name, proposed, spec.key, options
                )
                for child in targets:
                    child._clear_parent()
                    parent._remove_embedded(embedded_name, child.id)
                parent.prepare_data()

                for child in targets:
                    child._on_delete(options, user.id)
                parent._on_delete_embedded_documents(embedded_name, targets, results, options, user.id)
                await self._trigger_after(
                    HookEvent.ON_EMBEDDED_AFTER_DELETE, embedded_name, targets, results, user, options
                )

            for child in targets:
                child.render(action="delete")
                child._release_observers()
            parent.render()
            return targets

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _assert_can_modify(self, user: User, action: str) -> None:
        if self.backend is None:
            raise DocumentStateError(
                f"{self.parent.uuid} does not belong to a collection; "
                f"cannot {action} its embedded documents"
            )
        if self.collection is not None and self.parent.collection is not self.collection:
            raise DocumentStateError(f"{self.parent.uuid} was removed from {self.collection.collection}")
        if self.collection is not None:
            self.collection.assert_can_modify(user, self.parent, action=action)
        else:
            self.parent.resolver.require(
                user, self.parent, PermissionLevel.OWNER, f"{action} embedded documents"
            )

    def _require_child(self, embedded_name: str, document_id: Optional[str]) -> "Document":
        child = self.parent.get_embedded_document(embedded_name, document_id) if document_id else None
        if child is None:
            raise DocumentNotFoundError(
                self.parent.embedded_spec(embedded_name).document_class.document_name,
                str(document_id),
            )
        return child

    def _mutating(self) -> contextlib.AbstractContextManager:
        node = self.parent
        while node.parent is not None:
            node = node.parent
        if self.collection is None:
            return contextlib.nullcontext()
        return self.collection._mutating([node.id])

    async def _call_backend(
        self,
        method: str,
        document_type: str,
        payload: list[Any],
        embedded_key: str,
        options: dict[str, Any],
    ) -> list[Any]:
        try:
            return await getattr(self.backend, method)(
                document_type,
                payload,
                pack=self.parent.pack,
                parent=parent_ref_for(self.parent, embedded_key),
                options=options,
            )
        except CompendiaError:
            raise
        except Exception as e:
            logger.error(
                "Backend rejected embedded operation",
                method=method,
                parent=self.parent.uuid,
                error=str(e),
            )
            raise BackendError(f"{method} failed for {document_type}: {e}") from e

    def _hook_context(self, user: User, options: dict[str, Any]) -> HookContext:
        return HookContext(
            registry=getattr(self.collection, "registry", None),
            user=user,
            options=options,
            pack=self.parent.pack,
        )

    async def _trigger_before(
        self,
        event: str,
        embedded_name: str,
        proposed: list[Any],
        user: User,
        options: dict[str, Any],
    ) -> list[Any]:
        if self.hooks is None or not proposed:
            return proposed
        document_type = self.parent.embedded_spec(embedded_name).document_class.document_name
        result = await self.hooks.trigger(
            event,
            data={
                "document_type": document_type,
                "parent": self.parent,
                "embedded_name": embedded_name,
                "data": proposed,
            },
            context=self._hook_context(user, options),
            filters={"document_type": document_type},
        )
        if result.aborted or not result.success:
            return []
        return list((result.data or {}).get("data") or [])

    async def _trigger_after(
        self,
        event: str,
        embedded_name: str,
        documents: list["Document"],
        results: list[Any],
        user: User,
        options: dict[str, Any],
    ) -> None:
        if self.hooks is None:
            return
        document_type = self.parent.embedded_spec(embedded_name).document_class.document_name
        await self.hooks.trigger(
            event,
            data={
                "document_type": document_type,
                "parent": self.parent,
                "embedded_name": embedded_name,
                "ids": [document.id for document in documents],
                "documents": documents,
                "result": results,
            },
            context=self._hook_context(user, options),
            filters={"document_type": document_type},
        )
