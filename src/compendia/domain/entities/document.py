"""Client document entity.

A Document combines persisted source data, derived state, a weak link to
its parent or owning collection, embedded child documents, and a set of
weakly-held observers. Subtypes specialise behaviour by declaring class
attributes (``document_name``, ``schema``, ``embedded``, ``index_fields``)
and by overriding the preparation and lifecycle methods.
"""

import asyncio
import copy
import weakref
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

from pydantic import BaseModel, ConfigDict, Field, field_validator

from compendia.core.exceptions import (
    DocumentNotFoundError,
    DocumentStateError,
    DocumentValidationError,
    FieldError,
)
from compendia.core.logging import get_logger
from compendia.domain.entities.permission import PermissionLevel
from compendia.domain.entities.user import User
from compendia.domain.services.data_preparation import (
    DataPreparationPipeline,
    PreparationContext,
    default_pipeline,
    validate_source,
)
from compendia.domain.services.data_utils import diff_object, expand_object, merge_object
from compendia.domain.services.id_generator import generate_id, is_valid_id
from compendia.domain.services.permission_resolver import PermissionResolver

if TYPE_CHECKING:
    from compendia.application.services.document_collection import DocumentCollection

logger = get_logger(__name__)

_PERMISSION_VALUES = {level.value for level in PermissionLevel}


class DocumentSchema(BaseModel):
    """Base source-data schema shared by every document type.

    Unknown keys are allowed and carried through to derived data.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    name: Optional[str] = None
    permission: dict[str, int] = Field(default_factory=dict)
    folder: Optional[str] = None
    sort: int = 0
    flags: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_id(v):
            raise ValueError("must be an alphanumeric id")
        return v

    @field_validator("permission")
    @classmethod
    def validate_permission(cls, v: dict[str, int]) -> dict[str, int]:
        for key, level in v.items():
            if level not in _PERMISSION_VALUES:
                raise ValueError(f"invalid permission level {level!r} for {key!r}")
        return v


@dataclass(frozen=True)
class EmbeddedSpec:
    """Declares an embedded collection: child class and its source key."""

    document_class: type["Document"]
    key: str


@runtime_checkable
class Renderable(Protocol):
    """An observer that can be re-rendered after its document changes."""

    def render(self, force: bool = False, **options: Any) -> Any: ...


@runtime_checkable
class ClientDocument(Protocol):
    """Capability interface: preparation, rendering hooks, permission accessors."""

    document_name: ClassVar[str]

    @property
    def id(self) -> Optional[str]: ...

    @property
    def uuid(self) -> str: ...

    @property
    def source_data(self) -> dict[str, Any]: ...

    @property
    def derived_data(self) -> dict[str, Any]: ...

    def prepare_data(self) -> dict[str, Any]: ...

    def render(self, force: bool = False, **options: Any) -> None: ...

    def permission_level(self, user: Optional[User]) -> PermissionLevel: ...


class Document:
    """A persisted, permissioned, hierarchically-embedded record."""

    document_name: ClassVar[str] = "Document"
    schema: ClassVar[type[DocumentSchema]] = DocumentSchema
    embedded: ClassVar[dict[str, EmbeddedSpec]] = {}
    index_fields: ClassVar[tuple[str, ...]] = ()
    pipeline: ClassVar[DataPreparationPipeline] = default_pipeline
    resolver: ClassVar[PermissionResolver] = PermissionResolver()

    def __init__(
        self,
        data: Optional[Mapping[str, Any]] = None,
        *,
        parent: Optional["Document"] = None,
        collection: Optional["DocumentCollection"] = None,
    ) -> None:
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._collection_ref = weakref.ref(collection) if collection is not None else None
        self._derived: Optional[dict[str, Any]] = None
        self._observers: "weakref.WeakValueDictionary[Any, Renderable]" = (
            weakref.WeakValueDictionary()
        )
        self._lock = asyncio.Lock()
        self._notifying = False
        self._embedded: dict[str, dict[str, Document]] = {}
        self._source: dict[str, Any] = {}
        self._replace_source(data or {})

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.document_name}.{self.id} name={self.name!r}>"

    # ------------------------------------------------------------------
    # Identity and relationships
    # ------------------------------------------------------------------

    @property
    def id(self) -> Optional[str]:
        return self._source.get("_id")

    @property
    def name(self) -> Optional[str]:
        return self._source.get("name")

    @property
    def source_data(self) -> dict[str, Any]:
        """Copy of the last-persisted snapshot, without embedded arrays."""
        return copy.deepcopy(self._source)

    @property
    def derived_data(self) -> dict[str, Any]:
        """Derived state of the last successful preparation pass."""
        if self._derived is None:
            raise DocumentStateError(
                f"{self.document_name} {self.id} has not been prepared yet"
            )
        return self._derived

    @property
    def is_prepared(self) -> bool:
        return self._derived is not None

    @property
    def permission_map(self) -> Mapping[str, int]:
        return self._source.get("permission") or {}

    @property
    def parent(self) -> Optional["Document"]:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def is_embedded(self) -> bool:
        return self._parent_ref is not None

    @property
    def collection(self) -> Optional["DocumentCollection"]:
        """The collection containing this document, resolved through the parent chain."""
        parent = self.parent
        if parent is not None:
            return parent.collection
        return self._collection_ref() if self._collection_ref is not None else None

    @property
    def compendium(self) -> Optional["DocumentCollection"]:
        """The compendium pack containing this document, if any."""
        collection = self.collection
        if collection is not None and collection.is_compendium:
            return collection
        return None

    @property
    def pack(self) -> Optional[str]:
        compendium = self.compendium
        return compendium.collection if compendium is not None else None

    @property
    def uuid(self) -> str:
        parent = self.parent
        if parent is not None:
            return f"{parent.uuid}.{parent._embedded_name_of(self)}.{self.id}"
        compendium = self.compendium
        if compendium is not None:
            return f"Compendium.{compendium.collection}.{self.id}"
        return f"{self.document_name}.{self.id}"

    @property
    def link(self) -> str:
        """Content link markup referencing this document."""
        return f"@UUID[{self.uuid}]{{{self.name}}}"

    @property
    def folder(self) -> Optional["Document"]:
        """The Folder this document is filed under, if it can be resolved."""
        folder_id = self._source.get("folder")
        collection = self.collection
        if not folder_id or collection is None or collection.registry is None:
            return None
        folders = collection.registry.world_or_none("Folder")
        return folders.get(folder_id) if folders is not None else None

    # ------------------------------------------------------------------
    # Embedded collections
    # ------------------------------------------------------------------

    @classmethod
    def embedded_spec(cls, embedded_name: str) -> EmbeddedSpec:
        try:
            return cls.embedded[embedded_name]
        except KeyError:
            raise ValueError(
                f"{cls.document_name} has no embedded {embedded_name} collection"
            ) from None

    def get_embedded_collection(self, embedded_name: str) -> list["Document"]:
        """Children of one embedded type, in insertion order."""
        self.embedded_spec(embedded_name)
        return list(self._embedded.get(embedded_name, {}).values())

    def get_embedded_document(
        self, embedded_name: str, document_id: str, strict: bool = False
    ) -> Optional["Document"]:
        self.embedded_spec(embedded_name)
        child = self._embedded.get(embedded_name, {}).get(document_id)
        if child is None and strict:
            raise DocumentNotFoundError(embedded_name, document_id)
        return child

    def _attach_embedded(self, embedded_name: str, child: "Document") -> None:
        if child.parent is not self:
            raise DocumentStateError(f"{child!r} is not a child of {self!r}")
        self._embedded.setdefault(embedded_name, {})[child.id] = child

    def _remove_embedded(self, embedded_name: str, document_id: str) -> Optional["Document"]:
        return self._embedded.get(embedded_name, {}).pop(document_id, None)

    def _clear_parent(self) -> None:
        self._parent_ref = None

    def _bind_collection(self, collection: "DocumentCollection") -> None:
        current = self._collection_ref() if self._collection_ref is not None else None
        if current is not None and current is not collection:
            raise DocumentStateError(f"{self!r} already belongs to {current!r}")
        self._collection_ref = weakref.ref(collection)

    def _unbind_collection(self) -> None:
        self._collection_ref = None

    # ------------------------------------------------------------------
    # Source data
    # ------------------------------------------------------------------

    def _replace_source(self, data: Mapping[str, Any]) -> None:
        source = copy.deepcopy(dict(data))
        if self.id is not None and source.get("_id", self.id) != self.id:
            raise DocumentStateError(
                f"Cannot replace {self.document_name} {self.id} with data of {source.get('_id')}"
            )
        if self.id is not None:
            source.setdefault("_id", self.id)

        for embedded_name, spec in self.embedded.items():
            existing = self._embedded.get(embedded_name, {})
            rebuilt: dict[str, Document] = {}
            for child_data in source.pop(spec.key, None) or []:
                child = existing.get(child_data.get("_id"))
                if child is None:
                    child = spec.document_class(child_data, parent=self)
                    if child.id is None:
                        child._source["_id"] = generate_id()
                else:
                    child._replace_source(child_data)
                if child.id in rebuilt:
                    raise DocumentValidationError(
                        f"Duplicate {embedded_name} id {child.id} in {self.document_name}",
                        [FieldError(field=spec.key, message="duplicate id", code="duplicate_id")],
                    )
                rebuilt[child.id] = child
            for removed_id in existing.keys() - rebuilt.keys():
                existing[removed_id]._clear_parent()
            self._embedded[embedded_name] = rebuilt
        self._source = source

    def _diff(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Incremental changes that actually differ from current source."""
        expanded = expand_object(changes)
        expanded.pop("_id", None)
        embedded_keys = {spec.key for spec in self.embedded.values()} & expanded.keys()
        if embedded_keys:
            raise DocumentValidationError(
                f"Embedded collections of {self.document_name} are modified through embedded operations",
                [
                    FieldError(field=key, message="use embedded operations", code="embedded_key")
                    for key in sorted(embedded_keys)
                ],
            )
        return diff_object(self._source, expanded)

    def _candidate_source(self, diff: Mapping[str, Any]) -> dict[str, Any]:
        return merge_object(copy.deepcopy(self._source), diff)

    def _apply_changes(self, diff: Mapping[str, Any]) -> None:
        merge_object(self._source, diff)

    def to_object(self) -> dict[str, Any]:
        """The full persisted record, embedded arrays included."""
        data = copy.deepcopy(self._source)
        for embedded_name, spec in self.embedded.items():
            data[spec.key] = [
                child.to_object() for child in self._embedded.get(embedded_name, {}).values()
            ]
        return data

    def to_compendium(self, pack: Any = None) -> dict[str, Any]:
        """Record data with world-specific identity removed, ready for a pack."""
        data = self.to_object()
        for key in ("_id", "folder", "permission"):
            data.pop(key, None)
        core_flags = data.get("flags", {}).get("core")
        if isinstance(core_flags, dict):
            core_flags.pop("sourceId", None)
        return data

    @classmethod
    def validate_source(cls, data: Mapping[str, Any]) -> dict[str, Any]:
        """Validate a full record, embedded children included, without instantiating it."""
        source = dict(data)
        for spec in cls.embedded.values():
            for child_data in source.pop(spec.key, None) or []:
                spec.document_class.validate_source(child_data)
        return validate_source(cls.schema, cls.document_name, source)

    @classmethod
    def assign_embedded_ids(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Assign ids to embedded children lacking one, recursively, in place."""
        for spec in cls.embedded.values():
            for child_data in data.get(spec.key) or []:
                if not child_data.get("_id"):
                    child_data["_id"] = generate_id()
                spec.document_class.assign_embedded_ids(child_data)
        return data

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare_data(self) -> dict[str, Any]:
        """Run the preparation pipeline and return the published derived data."""
        return self.pipeline.prepare(self)

    def prepare_base_data(self, context: PreparationContext) -> None:
        """Add base computations from this document's own data only."""

    def prepare_derived_data(self, context: PreparationContext) -> None:
        """Add computations depending on prepared children and ancestors."""

    def reset(self, data: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """Reset to a persisted snapshot (or the current one) and re-prepare."""
        if data is not None:
            self._replace_source(data)
        return self.prepare_data()

    def _publish_derived_data(self, data: Optional[dict[str, Any]]) -> None:
        self._derived = data

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def permission_level(self, user: Optional[User]) -> PermissionLevel:
        return self.resolver.permission_level(user, self)

    def is_owner(self, user: Optional[User]) -> bool:
        return self.resolver.is_owner(user, self)

    def limited(self, user: Optional[User]) -> bool:
        return self.resolver.is_limited(user, self)

    def visible(self, user: Optional[User]) -> bool:
        return self.resolver.is_visible(user, self)

    def has_player_owner(self, users: Iterable[User]) -> bool:
        return self.resolver.has_player_owner(self, users)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def observers(self) -> list[Renderable]:
        return list(self._observers.values())

    @property
    def is_notifying(self) -> bool:
        return self._notifying

    def register_observer(self, observer: Renderable) -> Any:
        """Register an observer; it is held weakly. Returns its registration key."""
        key = getattr(observer, "app_id", None) or id(observer)
        self._observers[key] = observer
        return key

    def unregister_observer(self, observer: Any) -> bool:
        """Unregister an observer by instance or by registration key."""
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
        """Call ``render`` on every live observer."""
        self._notifying = True
        try:
            for observer in list(self._observers.values()):
                try:
                    observer.render(force, **options)
                except Exception as e:
                    logger.error(
                        "Observer render failed",
                        document=self.document_name,
                        document_id=self.id,
                        observer=type(observer).__name__,
                        error=str(e),
                    )
        finally:
            self._notifying = False

    def _release_observers(self) -> None:
        self._observers.clear()

    def _warn_if_notifying(self, action: str) -> None:
        """Log a contract violation when a mutation starts inside observer notification."""
        node: Optional[Document] = self
        while node is not None:
            if node._notifying:
                logger.warning(
                    "Mutation requested during observer notification",
                    document=self.document_name,
                    document_id=self.id,
                    notifying=node.uuid,
                    action=action,
                )
                return
            node = node.parent

    # ------------------------------------------------------------------
    # Lifecycle callbacks
    # ------------------------------------------------------------------

    def _on_create(self, data: dict[str, Any], options: dict[str, Any], user_id: str) -> None:
        """Called once after this document is created and prepared."""

    def _on_update(self, changes: dict[str, Any], options: dict[str, Any], user_id: str) -> None:
        """Called once after an update to this document is applied."""

    def _on_delete(self, options: dict[str, Any], user_id: str) -> None:
        """Called once after this document is deleted and detached."""

    def _pre_create_embedded_documents(
        self, embedded_name: str, result: list[dict[str, Any]], options: dict[str, Any], user_id: str
    ) -> Optional[bool]:
        """Before embedded children are created. Mutate ``result`` in place or return False to veto."""

    def _on_create_embedded_documents(
        self,
        embedded_name: str,
        documents: list["Document"],
        result: list[dict[str, Any]],
        options: dict[str, Any],
        user_id: str,
    ) -> None:
        """After embedded children are created and this document re-prepared."""

    def _pre_update_embedded_documents(
        self, embedded_name: str, result: list[dict[str, Any]], options: dict[str, Any], user_id: str
    ) -> Optional[bool]:
        """Before embedded children are updated. ``result`` holds incremental payloads."""

    def _on_update_embedded_documents(
        self,
        embedded_name: str,
        documents: list["Document"],
        result: list[dict[str, Any]],
        options: dict[str, Any],
        user_id: str,
    ) -> None:
        """After embedded children are updated and this document re-prepared."""

    def _pre_delete_embedded_documents(
        self, embedded_name: str, result: list[str], options: dict[str, Any], user_id: str
    ) -> Optional[bool]:
        """Before embedded children are deleted. ``result`` holds their ids."""

    def _on_delete_embedded_documents(
        self,
        embedded_name: str,
        documents: list["Document"],
        result: list[str],
        options: dict[str, Any],
        user_id: str,
    ) -> None:
        """After embedded children are deleted and this document re-prepared."""

    # ------------------------------------------------------------------
    # Persistence shortcuts
    # ------------------------------------------------------------------

    def _embedded_name_of(self, child: "Document") -> str:
        for embedded_name, children in self._embedded.items():
            if children.get(child.id) is child:
                return embedded_name
        raise DocumentStateError(f"{child!r} is not embedded in {self!r}")

    def _require_collection(self) -> "DocumentCollection":
        collection = self.collection
        if collection is None:
            raise DocumentStateError(f"{self!r} does not belong to a collection")
        return collection

    async def update(
        self, changes: Mapping[str, Any], user: User, **options: Any
    ) -> Optional["Document"]:
        """Persist an update to this document. Returns None if nothing changed or it was vetoed."""
        payload = {**changes, "_id": self.id}
        parent = self.parent
        if parent is not None:
            updated = await parent.update_embedded_documents(
                parent._embedded_name_of(self), [payload], user, **options
            )
        else:
            updated = await self._require_collection().update_documents([payload], user, **options)
        return updated[0] if updated else None

    async def delete(self, user: User, **options: Any) -> Optional["Document"]:
        """Delete this document. Returns None if the deletion was vetoed."""
        parent = self.parent
        if parent is not None:
            deleted = await parent.delete_embedded_documents(
                parent._embedded_name_of(self), [self.id], user, **options
            )
        else:
            deleted = await self._require_collection().delete_documents([self.id], user, **options)
        return deleted[0] if deleted else None

    async def create_embedded_documents(
        self, embedded_name: str, data: list[Mapping[str, Any]], user: User, **options: Any
    ) -> list["Document"]:
        from compendia.domain.services.embedded_manager import EmbeddedCollectionManager

        return await EmbeddedCollectionManager(self).create_embedded_documents(
            embedded_name, data, user, **options
        )

    async def update_embedded_documents(
        self, embedded_name: str, updates: list[Mapping[str, Any]], user: User, **options: Any
    ) -> list["Document"]:
        from compendia.domain.services.embedded_manager import EmbeddedCollectionManager

        return await EmbeddedCollectionManager(self).update_embedded_documents(
            embedded_name, updates, user, **options
        )

    async def delete_embedded_documents(
        self, embedded_name: str, ids: list[str], user: User, **options: Any
    ) -> list["Document"]:
        from compendia.domain.services.embedded_manager import EmbeddedCollectionManager

        return await EmbeddedCollectionManager(self).delete_embedded_documents(
            embedded_name, ids, user, **options
        )

    async def sort_relative(
        self,
        user: User,
        target: Optional["Document"] = None,
        siblings: Iterable["Document"] = (),
        sort_key: str = "sort",
        sort_before: bool = True,
        update_data: Optional[Mapping[str, Any]] = None,
    ) -> "Document":
        """Re-sort this document relative to a target sibling and persist the new order."""
        from compendia.domain.services.sorting import perform_integer_sort

        sort_updates = perform_integer_sort(
            self, target=target, siblings=list(siblings), sort_key=sort_key, sort_before=sort_before
        )
        payload = []
        for document, change in sort_updates:
            update = dict(update_data or {}) if document is self else {}
            update.update(change)
            update["_id"] = document.id
            payload.append(update)

        parent = self.parent
        if parent is not None:
            await parent.update_embedded_documents(
                parent._embedded_name_of(self), payload, user
            )
        else:
            await self._require_collection().update_documents(payload, user)
        return self
