"""Document collection service.

A DocumentCollection is an insertion-ordered, in-memory set of top-level
documents of one type, backed by the persistence backend. Mutating
operations follow a fixed order:

permission -> validation -> pre-hooks -> backend -> reconcile ->
``_on_*_documents`` -> post-hooks -> render

A backend failure leaves the in-memory map untouched.
"""

import copy
import weakref
from collections import Counter
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, ClassVar, Iterator, Mapping, Optional

from compendia.core.exceptions import (
    BackendError,
    CompendiaError,
    DocumentNotFoundError,
    DocumentPermissionError,
    DocumentValidationError,
    FieldError,
)
from compendia.core.hooks.hook_events import HookEvent
from compendia.core.hooks.hook_registry import HookRegistry
from compendia.core.logging import get_logger
from compendia.domain.entities.document import Document, Renderable
from compendia.domain.entities.hook_context import HookContext
from compendia.domain.entities.permission import PermissionLevel, UserRole
from compendia.domain.entities.user import User
from compendia.domain.services.embedded_manager import require_checked_id
from compendia.infrastructure.persistence.backend import DocumentBackend

if TYPE_CHECKING:
    from compendia.application.services.collection_registry import CollectionRegistry

logger = get_logger(__name__)


class DocumentCollection:
    """Indexed, ordered set of top-level documents of one type."""

    is_compendium: ClassVar[bool] = False

    def __init__(
        self,
        document_class: type[Document],
        backend: DocumentBackend,
        *,
        hooks: Optional[HookRegistry] = None,
        registry: Optional["CollectionRegistry"] = None,
        name: Optional[str] = None,
    ) -> None:
        self.document_class = document_class
        self.backend = backend
        self.hooks = hooks
        self.name = name or document_class.document_name
        self._registry_ref = weakref.ref(registry) if registry is not None else None
        self._documents: dict[str, Document] = {}
        self._observers: "weakref.WeakValueDictionary[Any, Renderable]" = (
            weakref.WeakValueDictionary()
        )
        self._in_flight: Counter[str] = Counter()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.collection} size={len(self._documents)}>"

    @property
    def registry(self) -> Optional["CollectionRegistry"]:
        return self._registry_ref() if self._registry_ref is not None else None

    @property
    def document_name(self) -> str:
        return self.document_class.document_name

    @property
    def collection(self) -> str:
        return self.name

    @property
    def resolver(self):
        return self.document_class.resolver

    @property
    def backend_pack(self) -> Optional[str]:
        """The pack argument passed to the backend; None for world collections."""
        return None

    # ------------------------------------------------------------------
    # In-memory map
    # ------------------------------------------------------------------

    def get(self, document_id: str, strict: bool = False) -> Optional[Document]:
        document = self._documents.get(document_id)
        if document is None and strict:
            raise DocumentNotFoundError(self.document_name, document_id)
        return document

    def set(self, document_id: str, document: Document) -> None:
        if document.id != document_id:
            raise ValueError(f"Cannot store {document!r} under id {document_id}")
        document._bind_collection(self)
        self._documents[document_id] = document

    def delete(self, document_id: str) -> Optional[Document]:
        document = self._documents.pop(document_id, None)
        if document is not None:
            document._unbind_collection()
        return document

    @property
    def contents(self) -> list[Document]:
        return list(self._documents.values())

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(list(self._documents.values()))

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    async def load(self, query: Optional[Mapping[str, Any]] = None) -> list[Document]:
        """Fetch matching records from the backend into this collection."""
        records = await self._call_backend("get_documents", query, index_fields=None)
        return [self._upsert(record) for record in records]

    def _upsert(self, record: Mapping[str, Any]) -> Document:
        existing = self._documents.get(record.get("_id"))
        if existing is not None:
            existing.reset(record)
            return existing
        document = self.document_class(record, collection=self)
        document.prepare_data()
        self.set(document.id, document)
        return document

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def register_observer(self, observer: Renderable) -> Any:
        key = getattr(observer, "app_id", None) or id(observer)
        self._observers[key] = observer
        return key

    def unregister_observer(self, observer: Any) -> bool:
        key = getattr(observer, "app_id", None) or id(observer)
        for candidate in (observer, key):
            try:
                if candidate in self._observers:
                    del self._observers[candidate]
                    return True
            except TypeError:
                continue
        return False

    def render(self, force: bool = False, **options: Any) -> None:
        """Render every observer registered against the collection itself."""
        for observer in list(self._observers.values()):
            try:
                observer.render(force, **options)
            except Exception as e:
                logger.error(
                    "Collection observer render failed",
                    collection=self.collection,
                    observer=type(observer).__name__,
                    error=str(e),
                )

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def assert_can_modify(
        self, user: Optional[User], document: Optional[Document] = None, action: str = "update"
    ) -> None:
        """Require a real user to create, and OWNER on ``document`` for anything else."""
        if document is None:
            if user is None or user.role <= UserRole.NONE:
                user_id = user.id if user is not None else None
                logger.warning("Permission denied", user_id=user_id, action=action, collection=self.collection)
                raise DocumentPermissionError(
                    f"User {user_id} cannot {action} {self.document_name} documents",
                    user_id=user_id,
                )
            return
        self.resolver.require(user, document, PermissionLevel.OWNER, f"{action} {document.uuid}")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_documents(
        self, data: list[Mapping[str, Any]], user: User, **options: Any
    ) -> list[Document]:
        """Create new documents of this collection's type."""
        self.assert_can_modify(user, None, action="create")

        proposed = []
        for entry in data:
            record = copy.deepcopy(dict(entry))
            if not options.get("keep_id"):
                record.pop("_id", None)
            if not user.is_gamemaster:
                record.setdefault("permission", {}).setdefault(user.id, int(PermissionLevel.OWNER))
            self.document_class.assign_embedded_ids(record)
            self.document_class.validate_source(record)
            proposed.append(record)

        proposed = await self._trigger_before(HookEvent.ON_DOCUMENT_BEFORE_CREATE, proposed, user, options)
        if not proposed:
            logger.info("Document create vetoed", collection=self.collection)
            return []
        for record in proposed:
            self.document_class.validate_source(record)

        records = await self._call_backend("create_documents", proposed, options=options)
        created = []
        for record in records:
            document = self.document_class(record, collection=self)
            document.prepare_data()
            created.append(document)
        for document in created:
            self.set(document.id, document)

        for document, record in zip(created, records):
            document._on_create(record, options, user.id)
        self._on_create_documents(created, records, options, user.id)
        await self._trigger_after(HookEvent.ON_DOCUMENT_AFTER_CREATE, created, records, user, options)

        logger.info("Documents created", collection=self.collection, count=len(created), user_id=user.id)
        for document in created:
            document.render()
        self.render()
        return created

    async def update_documents(
        self, updates: list[Mapping[str, Any]], user: User, **options: Any
    ) -> list[Document]:
        """Apply incremental updates, keyed by ``_id``, to documents in this collection."""
        with self._mutating([str(change.get("_id")) for change in updates]):
            documents = [self._require(change.get("_id")) for change in updates]
            for document in documents:
                self.assert_can_modify(user, document, action="update")
                document._warn_if_notifying("update")
            checked = {document.id for document in documents}

            async with self._locked(documents):
                proposed = []
                seen: set[str] = set()
                for document, change in zip(documents, updates):
                    if document.id in seen:
                        raise DocumentValidationError(
                            f"{self.document_name} {document.id} appears twice in one update",
                            [FieldError(field="_id", message="duplicate id", code="duplicate_id")],
                        )
                    seen.add(document.id)
                    diff = document._diff(change)
                    if diff:
                        document.validate_source(document._candidate_source(diff))
                        diff["_id"] = document.id
                        proposed.append(diff)
                if not proposed:
                    return []

                proposed = await self._trigger_before(HookEvent.ON_DOCUMENT_BEFORE_UPDATE, proposed, user, options)
                if not proposed:
                    logger.info("Document update vetoed", collection=self.collection)
                    return []
                targets = []
                for diff in proposed:
                    document = self._require(require_checked_id(diff.get("_id"), checked))
                    changes = {k: v for k, v in diff.items() if k != "_id"}
                    document.validate_source(document._candidate_source(changes))
                    targets.append((document, changes))

                results = await self._call_backend("update_documents", proposed, options=options)
                for document, changes in targets:
                    document._apply_changes(changes)
                    document.prepare_data()

                updated = [document for document, _ in targets]
                for document, changes in targets:
                    document._on_update(changes, options, user.id)
                self._on_update_documents(updated, results, options, user.id)
                await self._trigger_after(HookEvent.ON_DOCUMENT_AFTER_UPDATE, updated, results, user, options)

        for document in updated:
            document.render()
        self.render()
        return updated

    async def delete_documents(self, ids: list[str], user: User, **options: Any) -> list[Document]:
        """Delete documents of this collection by id."""
        with self._mutating([str(document_id) for document_id in ids]):
            documents = []
            for document_id in ids:
                document = self._require(document_id)
                if document not in documents:
                    documents.append(document)
            for document in documents:
                self.assert_can_modify(user, document, action="delete")
                document._warn_if_notifying("delete")
            checked = {document.id for document in documents}

            async with self._locked(documents):
                proposed = await self._trigger_before(
                    HookEvent.ON_DOCUMENT_BEFORE_DELETE, [d.id for d in documents], user, options
                )
                if not proposed:
                    logger.info("Document delete vetoed", collection=self.collection)
                    return []
                targets = [self._require(require_checked_id(document_id, checked)) for document_id in proposed]

                results = await self._call_backend("delete_documents", proposed, options=options)
                for document in targets:
                    self.delete(document.id)

                for document in targets:
                    document._on_delete(options, user.id)
                self._on_delete_documents(targets, results, options, user.id)
                await self._trigger_after(HookEvent.ON_DOCUMENT_AFTER_DELETE, targets, results, user, options)

        logger.info("Documents deleted", collection=self.collection, count=len(targets), user_id=user.id)
        for document in targets:
            document.render(action="delete")
            document._release_observers()
        self.render()
        return targets

    async def create_document(self, data: Mapping[str, Any], user: User, **options: Any) -> Optional[Document]:
        created = await self.create_documents([data], user, **options)
        return created[0] if created else None

    async def update_document(
        self, document_id: str, changes: Mapping[str, Any], user: User, **options: Any
    ) -> Optional[Document]:
        updated = await self.update_documents([{**changes, "_id": document_id}], user, **options)
        return updated[0] if updated else None

    async def delete_document(self, document_id: str, user: User, **options: Any) -> Optional[Document]:
        deleted = await self.delete_documents([document_id], user, **options)
        return deleted[0] if deleted else None

    def from_compendium(self, document: Document, keep_id: bool = False) -> dict[str, Any]:
        """Prepare a compendium document's data for creation in this collection."""
        data = document.to_object()
        if not keep_id:
            data.pop("_id", None)
        for key in ("folder", "permission"):
            data.pop(key, None)
        data.setdefault("flags", {}).setdefault("core", {})["sourceId"] = document.uuid
        return data

    # ------------------------------------------------------------------
    # Lifecycle callbacks
    # ------------------------------------------------------------------

    def _on_create_documents(
        self, documents: list[Document], result: list[dict[str, Any]], options: dict[str, Any], user_id: str
    ) -> None:
        """Called after documents are created in this collection."""

    def _on_update_documents(
        self, documents: list[Document], result: list[dict[str, Any]], options: dict[str, Any], user_id: str
    ) -> None:
        """Called after documents in this collection are updated."""

    def _on_delete_documents(
        self, documents: list[Document], result: list[str], options: dict[str, Any], user_id: str
    ) -> None:
        """Called after documents are deleted from this collection."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, document_id: Optional[str]) -> Document:
        return self.get(str(document_id), strict=True)

    def is_in_flight(self, document_id: str) -> bool:
        """Whether a mutating operation currently involves ``document_id``."""
        return self._in_flight[document_id] > 0

    @contextmanager
    def _mutating(self, document_ids: list[str]) -> Iterator[None]:
        self._in_flight.update(document_ids)
        try:
            yield
        finally:
            self._in_flight.subtract(document_ids)
            for document_id in document_ids:
                if self._in_flight[document_id] <= 0:
                    del self._in_flight[document_id]

    @asynccontextmanager
    async def _locked(self, documents: list[Document]) -> AsyncIterator[None]:
        """Hold the locks of ``documents``, acquired in id order."""
        unique = {id(document): document for document in documents}
        async with AsyncExitStack() as stack:
            for document in sorted(unique.values(), key=lambda d: d.id):
                await stack.enter_async_context(document._lock)
            yield

    @contextmanager
    def _backend_errors(self, method: str) -> Iterator[None]:
        """Re-raise transport failures as BackendError."""
        try:
            yield
        except CompendiaError:
            raise
        except Exception as e:
            logger.error(
                "Backend request failed",
                method=method,
                collection=self.collection,
                error=str(e),
            )
            raise BackendError(f"{method} failed for {self.collection}: {e}") from e

    async def _call_backend(self, method: str, payload: Any, **kwargs: Any) -> Any:
        with self._backend_errors(method):
            return await getattr(self.backend, method)(
                self.document_name, payload, pack=self.backend_pack, **kwargs
            )

    def _hook_context(self, user: User, options: dict[str, Any]) -> HookContext:
        return HookContext(
            registry=self.registry,
            user=user,
            options=options,
            pack=self.collection if self.is_compendium else None,
        )

    async def _trigger_before(
        self, event: str, proposed: list[Any], user: User, options: dict[str, Any]
    ) -> list[Any]:
        if self.hooks is None or not proposed:
            return proposed
        result = await self.hooks.trigger(
            event,
            data={"document_type": self.document_name, "collection": self.collection, "data": proposed},
            context=self._hook_context(user, options),
            filters={"document_type": self.document_name},
        )
        if result.aborted or not result.success:
            return []
        return list((result.data or {}).get("data") or [])

    async def _trigger_after(
        self,
        event: str,
        documents: list[Document],
        results: list[Any],
        user: User,
        options: dict[str, Any],
    ) -> None:
        if self.hooks is None:
            return
        await self.hooks.trigger(
            event,
            data={
                "document_type": self.document_name,
                "collection": self.collection,
                "ids": [document.id for document in documents],
                "documents": documents,
                "result": results,
            },
            context=self._hook_context(user, options),
            filters={"document_type": self.document_name},
        )
