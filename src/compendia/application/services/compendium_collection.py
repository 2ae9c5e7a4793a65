"""Compendium collection service.

A CompendiumCollection is a DocumentCollection over one named pack. It
keeps a lightweight index of every record and a time-bounded cache of
full documents:

- ``get_index`` replaces the index wholesale from the backend
- ``get_document`` serves cache hits (extending their expiry) and shares
  one backend fetch between concurrent requests for the same id
- expired documents are dropped lazily on access or by ``sweep``; a
  document involved in an in-flight mutation is never dropped
- every mutating entry point calls ``assert_user_can_modify`` first; a
  locked pack rejects mutation regardless of permission
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Mapping, Optional

from compendia.application.services.document_collection import DocumentCollection
from compendia.core.config import Settings, get_settings
from compendia.core.exceptions import (
    DocumentNotFoundError,
    DocumentStateError,
    DocumentValidationError,
    FieldError,
    LockedPackError,
)
from compendia.core.hooks.hook_events import HookEvent
from compendia.core.hooks.hook_registry import HookRegistry
from compendia.core.logging import LoggingContext, get_logger
from compendia.domain.entities.compendium import CompendiumConfiguration, CompendiumMetadata
from compendia.domain.entities.document import Document
from compendia.domain.entities.hook_context import HookContext, HookResult
from compendia.domain.entities.permission import PermissionLevel
from compendia.domain.entities.user import User
from compendia.domain.services.data_utils import project
from compendia.infrastructure.persistence.backend import DocumentBackend
from compendia.infrastructure.persistence.settings_store import SettingsStore

if TYPE_CHECKING:
    from compendia.application.services.collection_registry import CollectionRegistry

logger = get_logger(__name__)

CONFIGURABLE_KEYS = frozenset({"private", "locked"})


@dataclass(frozen=True)
class PackOwnership:
    """Permission target for pack-level checks; a pack has no parent."""

    permission_map: Mapping[str, int] = field(default_factory=dict)
    parent: None = None


class CompendiumCollection(DocumentCollection):
    """A DocumentCollection over a compendium pack with TTL caching and locking."""

    is_compendium: ClassVar[bool] = True

    def __init__(
        self,
        metadata: CompendiumMetadata,
        document_class: type[Document],
        backend: DocumentBackend,
        settings_store: SettingsStore,
        *,
        hooks: Optional[HookRegistry] = None,
        registry: Optional["CollectionRegistry"] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        lifetime: Optional[float] = None,
    ) -> None:
        if metadata.document_name != document_class.document_name:
            raise ValueError(
                f"Pack {metadata.collection} holds {metadata.document_name}, "
                f"not {document_class.document_name}"
            )
        super().__init__(
            document_class, backend, hooks=hooks, registry=registry, name=metadata.collection
        )
        self.metadata = metadata
        self.settings_store = settings_store
        self._settings = settings or get_settings()
        self.lifetime = float(
            lifetime if lifetime is not None else self._settings.compendium_cache_lifetime_seconds
        )
        self._clock = clock
        self.index: dict[str, dict[str, Any]] = {}
        self._expiry: dict[str, float] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self._ownership = PackOwnership(dict(metadata.ownership))
        self._config = CompendiumConfiguration.from_dict(None, default_locked=self._default_locked)
        self.index_fields = list(
            dict.fromkeys(
                ["_id", "name", *self._settings.default_index_fields, *document_class.index_fields]
            )
        )

    # ------------------------------------------------------------------
    # Identity and configuration
    # ------------------------------------------------------------------

    @property
    def collection(self) -> str:
        return self.metadata.collection

    @property
    def title(self) -> str:
        return self.metadata.title

    @property
    def document_name(self) -> str:
        return self.metadata.document_name

    @property
    def backend_pack(self) -> Optional[str]:
        return self.metadata.collection

    @property
    def config(self) -> CompendiumConfiguration:
        return self._config

    @property
    def locked(self) -> bool:
        return self._config.locked

    @property
    def private(self) -> bool:
        return self._config.private

    @property
    def _default_locked(self) -> bool:
        # Packs shipped by packages are locked unless configured otherwise
        return self.metadata.package != self._settings.world_package

    async def refresh_configuration(self) -> CompendiumConfiguration:
        """Re-read this pack's entry from the configuration store."""
        stored = await self.settings_store.get(self._settings.compendium_config_setting) or {}
        self._config = CompendiumConfiguration.from_dict(
            stored.get(self.collection), default_locked=self._default_locked
        )
        return self._config

    async def configure(self, user: User, **settings: Any) -> CompendiumConfiguration:
        """Read, merge and write this pack's ``{private, locked}`` configuration entry."""
        self.assert_user_can_modify(user, require_unlocked=False)
        unknown = sorted(set(settings) - CONFIGURABLE_KEYS)
        if unknown:
            raise DocumentValidationError(
                f"Unknown compendium settings: {', '.join(unknown)}",
                [
                    FieldError(field=key, message="not configurable", code="unknown_setting")
                    for key in unknown
                ],
            )

        context = self._hook_context(user, {})
        result = await self._trigger_pack_event(
            HookEvent.ON_COMPENDIUM_BEFORE_CONFIGURE, context, settings=settings
        )
        if result is not None:
            if result.aborted or not result.success:
                return self._config
            settings = dict((result.data or {}).get("settings") or {})

        key = self._settings.compendium_config_setting
        stored = await self.settings_store.get(key) or {}
        entry = CompendiumConfiguration.from_dict(
            stored.get(self.collection), default_locked=self._default_locked
        ).to_dict()
        entry.update({k: bool(v) for k, v in settings.items() if k in CONFIGURABLE_KEYS})
        stored[self.collection] = entry
        await self.settings_store.set(key, stored)
        self._config = CompendiumConfiguration.from_dict(entry)

        logger.info("Compendium configured", collection=self.collection, user_id=user.id, **entry)
        await self._trigger_pack_event(HookEvent.ON_COMPENDIUM_AFTER_CONFIGURE, context, settings=entry)
        self.render()
        return self._config

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def assert_user_can_modify(self, user: Optional[User], require_unlocked: bool = True) -> None:
        """Reject a locked pack first, then any user below OWNER of the pack."""
        if require_unlocked and self.locked:
            logger.warning(
                "Locked compendium modification rejected",
                collection=self.collection,
                user_id=user.id if user is not None else None,
            )
            raise LockedPackError(self.collection)
        self.resolver.require(
            user, self._ownership, PermissionLevel.OWNER, f"modify compendium {self.collection}"
        )

    def assert_can_modify(
        self, user: Optional[User], document: Optional[Document] = None, action: str = "update"
    ) -> None:
        self.assert_user_can_modify(user)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _touch(self, document_id: str) -> None:
        self._expiry[document_id] = self._clock() + self.lifetime

    def _is_expired(self, document_id: str) -> bool:
        return self._expiry.get(document_id, float("-inf")) <= self._clock()

    def get(self, document_id: str, strict: bool = False) -> Optional[Document]:
        """Return a cached document, extending its expiry, or None once expired."""
        document = self._documents.get(document_id)
        if document is not None and self._is_expired(document_id):
            if self._evict(document_id):
                document = None
        if document is None:
            if strict:
                raise DocumentNotFoundError(self.document_name, document_id)
            return None
        self._touch(document_id)
        return document

    def set(self, document_id: str, document: Document) -> None:
        super().set(document_id, document)
        self._touch(document_id)
        self.index[document_id] = self._index_entry(document)

    def delete(self, document_id: str) -> Optional[Document]:
        document = super().delete(document_id)
        self._expiry.pop(document_id, None)
        self.index.pop(document_id, None)
        return document

    def _evict(self, document_id: str) -> bool:
        """Drop a cached document without touching the backend or the index."""
        if self.is_in_flight(document_id):
            return False
        document = self._documents.pop(document_id, None)
        self._expiry.pop(document_id, None)
        if document is not None:
            document._unbind_collection()
            logger.debug("Compendium document evicted", collection=self.collection, document_id=document_id)
        return True

    def sweep(self) -> int:
        """Evict every expired document. Returns the number evicted."""
        expired = [document_id for document_id in self._documents if self._is_expired(document_id)]
        evicted = sum(1 for document_id in expired if self._evict(document_id))
        if evicted:
            logger.debug("Compendium cache swept", collection=self.collection, evicted=evicted)
        return evicted

    def flush(self) -> int:
        """Evict every cached document that is not being mutated."""
        return sum(1 for document_id in list(self._documents) if self._evict(document_id))

    def start_sweeper(self, interval: Optional[float] = None) -> asyncio.Task:
        """Start the periodic sweep task on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper
        interval = interval or self._settings.compendium_sweep_interval_seconds
        self._sweeper = asyncio.create_task(self._sweep_periodically(interval))
        logger.debug("Compendium sweeper started", collection=self.collection, interval=interval)
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the periodic sweep task and wait for it to finish."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        await asyncio.wait([task])
        logger.debug("Compendium sweeper stopped", collection=self.collection)

    async def _sweep_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_index(self, fields: Optional[list[str]] = None) -> dict[str, dict[str, Any]]:
        """Fetch the index projection from the backend and replace the index wholesale."""
        if fields:
            self.index_fields = list(dict.fromkeys([*self.index_fields, *fields]))
        records = await self._call_backend("get_documents", None, index_fields=self.index_fields)
        self.index = {record["_id"]: record for record in records}
        for document_id, document in list(self._documents.items()):
            if document_id in self.index:
                continue
            if not self._evict(document_id):
                self.index[document_id] = self._index_entry(document)
        logger.debug("Compendium index loaded", collection=self.collection, size=len(self.index))
        return self.index

    async def get_document(self, document_id: str) -> Document:
        """Return one document, from cache if fresh, otherwise fetched once from the backend."""
        document = self.get(document_id)
        if document is not None:
            return document

        pending = self._pending.get(document_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_document(document_id))
            self._pending[document_id] = pending
            pending.add_done_callback(partial(self._fetch_done, document_id))
        # An abandoned awaiter must not cancel the shared fetch
        return await asyncio.shield(pending)

    def _fetch_done(self, document_id: str, future: asyncio.Future) -> None:
        if self._pending.get(document_id) is future:
            del self._pending[document_id]
        if not future.cancelled() and future.exception() is not None:
            logger.warning(
                "Compendium fetch failed",
                collection=self.collection,
                document_id=document_id,
                error=str(future.exception()),
            )

    async def _fetch_document(self, document_id: str) -> Document:
        records = await self._call_backend("get_documents", {"_id": document_id}, index_fields=None)
        if not records:
            raise DocumentNotFoundError(self.document_name, document_id)
        existing = self._documents.get(document_id)
        if existing is not None:
            self._touch(document_id)
            return existing
        document = self.document_class(records[0], collection=self)
        document.prepare_data()
        self.set(document_id, document)
        logger.debug("Compendium document fetched", collection=self.collection, document_id=document_id)
        return document

    async def get_documents(self, query: Optional[Mapping[str, Any]] = None) -> list[Document]:
        """Query the backend and merge the results into the cache and index."""
        return await self.load(query)

    def _upsert(self, record: Mapping[str, Any]) -> Document:
        document = super()._upsert(record)
        self._touch(document.id)
        self.index[document.id] = self._index_entry(document)
        return document

    def _index_entry(self, document: Document) -> dict[str, Any]:
        return project(document.to_object(), self.index_fields)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def index_document(self, document: Document, user: User) -> None:
        """Write ``document``'s projection into the index."""
        self.assert_user_can_modify(user, require_unlocked=False)
        self._index_document(document)

    def _index_document(self, document: Document) -> None:
        self.index[document.id] = self._index_entry(document)

    async def create_documents(
        self, data: list[Mapping[str, Any]], user: User, **options: Any
    ) -> list[Document]:
        self.assert_user_can_modify(user)
        return await super().create_documents(data, user, **options)

    async def update_documents(
        self, updates: list[Mapping[str, Any]], user: User, **options: Any
    ) -> list[Document]:
        self.assert_user_can_modify(user)
        ids = [change.get("_id") for change in updates]
        with self._mutating([str(document_id) for document_id in ids]):
            await self._ensure_cached(ids)
            return await super().update_documents(updates, user, **options)

    async def delete_documents(self, ids: list[str], user: User, **options: Any) -> list[Document]:
        self.assert_user_can_modify(user)
        with self._mutating([str(document_id) for document_id in ids]):
            await self._ensure_cached(ids)
            return await super().delete_documents(ids, user, **options)

    async def _ensure_cached(self, ids: list[Optional[str]]) -> None:
        for document_id in ids:
            if document_id is None:
                raise DocumentNotFoundError(self.document_name, "None")
            if document_id not in self._documents:
                await self.get_document(document_id)

    def _require(self, document_id: Optional[str]) -> Document:
        # Mutations target cached instances even past their expiry
        document = self._documents.get(str(document_id))
        if document is None:
            raise DocumentNotFoundError(self.document_name, str(document_id))
        self._touch(document.id)
        return document

    def _on_create_documents(self, documents, result, options, user_id) -> None:
        self._on_modify_contents(documents, options, user_id)

    def _on_update_documents(self, documents, result, options, user_id) -> None:
        self._on_modify_contents(documents, options, user_id)

    def _on_delete_documents(self, documents, result, options, user_id) -> None:
        self._on_modify_contents(documents, options, user_id)

    def _on_modify_contents(self, documents: list[Document], options: dict[str, Any], user_id: str) -> None:
        """Keep the index in step with created, updated and deleted documents."""
        for document in documents:
            if document.id in self._documents:
                self._index_document(document)
            else:
                self.index.pop(document.id, None)

    async def import_document(self, document: Document, user: User, **options: Any) -> Optional[Document]:
        """Copy a document into this pack, stripping world-local identity."""
        self.assert_user_can_modify(user)
        data = document.to_compendium(self)
        context = self._hook_context(user, options)
        with LoggingContext(pack=self.collection, user_id=user.id):
            result = await self._trigger_pack_event(
                HookEvent.ON_COMPENDIUM_BEFORE_IMPORT, context, source=document, data=[data]
            )
            if result is not None:
                if result.aborted or not result.success:
                    logger.info("Compendium import vetoed", source=document.uuid)
                    return None
                proposed = (result.data or {}).get("data") or []
                if not proposed:
                    return None
                data = proposed[0]

            created = await self.create_documents([data], user, **options)
            if not created:
                return None
            logger.info("Document imported into compendium", source=document.uuid, document_id=created[0].id)
            await self._trigger_pack_event(
                HookEvent.ON_COMPENDIUM_AFTER_IMPORT,
                context,
                source=document,
                ids=[created[0].id],
                documents=created,
            )
            return created[0]

    async def import_all(
        self,
        user: User,
        folder_id: Optional[str] = None,
        folder_name: Optional[str] = None,
        **options: Any,
    ) -> list[Document]:
        """Create world copies of every document in this pack, optionally filed in a folder."""
        self.assert_user_can_modify(user)
        registry = self._require_registry()
        world = registry.world(self.document_name)

        with LoggingContext(pack=self.collection, user_id=user.id):
            documents = await self.get_documents()
            folder = None
            if folder_id:
                folder = registry.world("Folder").get(folder_id, strict=True)
            elif folder_name:
                folder = await registry.world("Folder").create_document(
                    {"name": folder_name, "type": self.document_name}, user
                )

            data = []
            for document in documents:
                entry = world.from_compendium(document)
                if folder is not None:
                    entry["folder"] = folder.id
                data.append(entry)
            created = await world.create_documents(data, user, **options)
            logger.info("Compendium imported into world", count=len(created), folder=folder.id if folder else None)
            return created

    async def migrate(self, user: User, options: Optional[dict[str, Any]] = None) -> "CompendiumCollection":
        """Run a backend migration of this pack, then flush the cache and reload the index."""
        self.assert_user_can_modify(user)
        options = dict(options or {})
        context = self._hook_context(user, options)
        result = await self._trigger_pack_event(
            HookEvent.ON_COMPENDIUM_BEFORE_MIGRATE, context, options=options
        )
        if result is not None and (result.aborted or not result.success):
            logger.info("Compendium migration vetoed", collection=self.collection)
            return self

        logger.info("Compendium migration started", collection=self.collection, user_id=user.id)
        with self._backend_errors("migrate_pack"):
            await self.backend.migrate_pack(self.document_name, self.collection, options)
        self.flush()
        await self.get_index()
        logger.info("Compendium migration completed", collection=self.collection)

        await self._trigger_pack_event(HookEvent.ON_COMPENDIUM_AFTER_MIGRATE, context, options=options)
        self.render()
        return self

    async def duplicate_compendium(self, user: User, label: Optional[str] = None) -> "CompendiumCollection":
        """Copy every record of this pack into a new world-package pack."""
        registry = self._require_registry()
        label = label or f"{self.title} (Copy)"
        name = re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-") or "pack"
        metadata = CompendiumMetadata(
            name=name,
            package=self._settings.world_package,
            document_name=self.document_name,
            label=label,
            ownership=dict(self.metadata.ownership),
        )
        duplicate = await registry.create_compendium(metadata, user)
        documents = await self.get_documents()
        await duplicate.create_documents([d.to_object() for d in documents], user, keep_id=True)
        logger.info("Compendium duplicated", source=self.collection, target=duplicate.collection)
        return duplicate

    async def delete_compendium(self, user: User) -> None:
        """Delete this pack and all its records."""
        await self._require_registry().delete_compendium(self, user)

    async def _trigger_pack_event(
        self, event: str, context: HookContext, **payload: Any
    ) -> Optional[HookResult]:
        if self.hooks is None:
            return None
        return await self.hooks.trigger(
            event,
            data={"document_type": self.document_name, "collection": self.collection, **payload},
            context=context,
            filters={"document_type": self.document_name},
        )

    def _require_registry(self) -> "CollectionRegistry":
        registry = self.registry
        if registry is None:
            raise DocumentStateError(f"{self.collection} is not attached to a registry")
        return registry
