"""Collection registry.

Holds every collection of one running world: world DocumentCollections
keyed by document name, CompendiumCollections keyed by collection name,
the registered document classes and the known users. It owns the hook
registry and passes it, with the backend, to every collection it creates.
"""

import asyncio
import time
from typing import Callable, Optional

from compendia.application.services.compendium_collection import CompendiumCollection
from compendia.application.services.document_collection import DocumentCollection
from compendia.core.config import Settings, get_settings
from compendia.core.exceptions import DocumentPermissionError, DocumentStateError
from compendia.core.hooks.hook_registry import HookRegistry
from compendia.core.logging import get_logger
from compendia.domain.entities.compendium import CompendiumMetadata
from compendia.domain.entities.document import Document
from compendia.domain.entities.folder import Folder
from compendia.domain.entities.user import User
from compendia.infrastructure.persistence.backend import DocumentBackend
from compendia.infrastructure.persistence.settings_store import SettingsStore

logger = get_logger(__name__)


class CollectionRegistry:
    """Explicit registry of the collections, document classes and users of a world.

    Example:
        registry = CollectionRegistry(InMemoryBackend(), InMemorySettingsStore())
        registry.register_document_class(Actor)
        pack = await registry.add_pack(
            CompendiumMetadata(name="monsters", package="srd", document_name="Actor")
        )
        goblin = await pack.get_document("goblinAAAAAAAAAA")
        ...
        await registry.close()
    """

    def __init__(
        self,
        backend: DocumentBackend,
        settings_store: SettingsStore,
        *,
        hooks: Optional[HookRegistry] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.settings_store = settings_store
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.settings = settings or get_settings()
        self.clock = clock
        self._document_classes: dict[str, type[Document]] = {}
        self._world: dict[str, DocumentCollection] = {}
        self._packs: dict[str, CompendiumCollection] = {}
        self._users: dict[str, User] = {}
        self.register_document_class(Folder)

    # ------------------------------------------------------------------
    # Document classes and users
    # ------------------------------------------------------------------

    def register_document_class(self, document_class: type[Document]) -> None:
        self._document_classes[document_class.document_name] = document_class
        for spec in document_class.embedded.values():
            self._document_classes.setdefault(spec.document_class.document_name, spec.document_class)

    def document_class(self, document_name: str) -> type[Document]:
        try:
            return self._document_classes[document_name]
        except KeyError:
            raise KeyError(f"No document class registered for {document_name}") from None

    def register_user(self, user: User) -> None:
        self._users[user.id] = user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    @property
    def users(self) -> list[User]:
        return list(self._users.values())

    # ------------------------------------------------------------------
    # World collections
    # ------------------------------------------------------------------

    def world(self, document_name: str) -> DocumentCollection:
        """The world collection of a document type, created on first use."""
        collection = self._world.get(document_name)
        if collection is None:
            collection = DocumentCollection(
                self.document_class(document_name),
                self.backend,
                hooks=self.hooks,
                registry=self,
            )
            self._world[document_name] = collection
        return collection

    def world_or_none(self, document_name: str) -> Optional[DocumentCollection]:
        if document_name not in self._world and document_name not in self._document_classes:
            return None
        return self.world(document_name)

    # ------------------------------------------------------------------
    # Compendium packs
    # ------------------------------------------------------------------

    def pack(self, collection: str) -> CompendiumCollection:
        try:
            return self._packs[collection]
        except KeyError:
            raise KeyError(f"No compendium pack {collection}") from None

    @property
    def packs(self) -> list[CompendiumCollection]:
        return list(self._packs.values())

    async def add_pack(
        self, metadata: CompendiumMetadata, lifetime: Optional[float] = None
    ) -> CompendiumCollection:
        """Register an existing pack and load its configuration."""
        if metadata.collection in self._packs:
            raise ValueError(f"Compendium pack {metadata.collection} is already registered")
        pack = CompendiumCollection(
            metadata,
            self.document_class(metadata.document_name),
            self.backend,
            self.settings_store,
            hooks=self.hooks,
            registry=self,
            settings=self.settings,
            clock=self.clock,
            lifetime=lifetime,
        )
        await pack.refresh_configuration()
        self._packs[metadata.collection] = pack
        logger.debug("Compendium pack registered", collection=metadata.collection, locked=pack.locked)
        return pack

    async def create_compendium(self, metadata: CompendiumMetadata, user: User) -> CompendiumCollection:
        """Create a new, empty pack in the world package."""
        self._require_gamemaster(user, "create compendium packs")
        if metadata.package != self.settings.world_package:
            raise ValueError(
                f"New compendium packs belong to the {self.settings.world_package} package, "
                f"not {metadata.package}"
            )
        pack = await self.add_pack(metadata)
        logger.info("Compendium pack created", collection=metadata.collection, user_id=user.id)
        return pack

    async def delete_compendium(self, pack: CompendiumCollection, user: User) -> None:
        """Delete a world-package pack, its records and its configuration entry."""
        self._require_gamemaster(user, "delete compendium packs")
        if pack.metadata.package != self.settings.world_package:
            raise ValueError(f"Only {self.settings.world_package} packs can be deleted")
        if self._packs.get(pack.collection) is not pack:
            raise DocumentStateError(f"{pack.collection} is not registered")

        await pack.stop_sweeper()
        with pack._backend_errors("delete_pack"):
            await self.backend.delete_pack(pack.document_name, pack.collection)

        key = self.settings.compendium_config_setting
        stored = await self.settings_store.get(key) or {}
        if stored.pop(pack.collection, None) is not None:
            await self.settings_store.set(key, stored)

        pack.flush()
        del self._packs[pack.collection]
        logger.info("Compendium pack deleted", collection=pack.collection, user_id=user.id)

    def _require_gamemaster(self, user: Optional[User], action: str) -> None:
        if user is None or not user.is_gamemaster:
            user_id = user.id if user is not None else None
            logger.warning("Permission denied", user_id=user_id, action=action)
            raise DocumentPermissionError(f"User {user_id} cannot {action}", user_id=user_id)

    # ------------------------------------------------------------------
    # Lookup and teardown
    # ------------------------------------------------------------------

    async def resolve_uuid(self, uuid: str) -> Document:
        """Resolve a document uuid such as ``Actor.abc`` or ``Compendium.srd.monsters.abc.Item.def``."""
        parts = uuid.split(".")
        compendium = parts[0] == "Compendium"
        head = 4 if compendium else 2
        if len(parts) < head or (len(parts) - head) % 2:
            raise ValueError(f"Malformed uuid {uuid}")

        if compendium:
            document = await self.pack(f"{parts[1]}.{parts[2]}").get_document(parts[3])
        else:
            document = self.world(parts[0]).get(parts[1], strict=True)
        rest = parts[head:]
        for embedded_name, document_id in zip(rest[::2], rest[1::2]):
            document = document.get_embedded_document(embedded_name, document_id, strict=True)
        return document

    def start_sweepers(self, interval: Optional[float] = None) -> None:
        for pack in self._packs.values():
            pack.start_sweeper(interval)

    async def close(self) -> None:
        """Stop every pack sweeper and drop all cached state."""
        await asyncio.gather(*(pack.stop_sweeper() for pack in self._packs.values()))
        for pack in self._packs.values():
            pack.flush()
        self._packs.clear()
        self._world.clear()
        logger.debug("Collection registry closed")
