"""Persistence backend contract.

The backend is the sole source of truth for document records. It is an
opaque asynchronous service: it accepts a document type, an optional pack
and an equality query, and returns plain record dictionaries. Records are
stored whole, embedded arrays included; embedded mutations locate their
target list through a ParentRef.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from compendia.core.exceptions import BackendError, DocumentNotFoundError
from compendia.core.logging import get_logger
from compendia.domain.services.data_utils import (
    expand_object,
    matches_query,
    merge_object,
    project,
)
from compendia.domain.services.id_generator import generate_id

logger = get_logger(__name__)

WORLD_PACK = ""


@dataclass(frozen=True)
class ParentRef:
    """Locates an embedded list inside a stored top-level record.

    Attributes:
        document_type: Document type of the top-level record.
        document_id: Id of the top-level record.
        path: (embedded key, id) steps from the top-level record down to
            the direct parent of the embedded list.
        embedded_key: Key of the embedded list within that parent.
    """

    document_type: str
    document_id: str
    path: tuple[tuple[str, str], ...] = ()
    embedded_key: str = ""


class DocumentBackend(ABC):
    """Abstract base class for document persistence backends."""

    @abstractmethod
    async def get_documents(
        self,
        document_type: str,
        query: Optional[Mapping[str, Any]] = None,
        *,
        pack: Optional[str] = None,
        index_fields: Optional[list[str]] = None,
    ) -> list[dict[str, Any]]:
        """Fetch records matching ``query``; project onto ``index_fields`` when given."""
        ...

    @abstractmethod
    async def create_documents(
        self,
        document_type: str,
        data: list[dict[str, Any]],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Create records, assigning ids where absent. Returns the stored records."""
        ...

    @abstractmethod
    async def update_documents(
        self,
        document_type: str,
        updates: list[dict[str, Any]],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Apply incremental updates keyed by ``_id``. Returns the applied updates."""
        ...

    @abstractmethod
    async def delete_documents(
        self,
        document_type: str,
        ids: list[str],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        """Delete records by id. Returns the deleted ids."""
        ...

    @abstractmethod
    async def migrate_pack(
        self,
        document_type: str,
        pack: str,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        """Migrate every record of a pack. Either all records are rewritten or none."""
        ...

    @abstractmethod
    async def delete_pack(self, document_type: str, pack: str) -> None:
        """Remove every record of a pack."""
        ...


def resolve_embedded_list(root: dict[str, Any], parent: ParentRef) -> list[dict[str, Any]]:
    """Walk ``parent.path`` from a top-level record to the embedded list it names."""
    node = root
    for key, document_id in parent.path:
        node = next(
            (item for item in node.get(key) or [] if item.get("_id") == document_id),
            None,
        )
        if node is None:
            raise DocumentNotFoundError(key, document_id)
    return node.setdefault(parent.embedded_key, [])


def create_in_list(
    items: list[dict[str, Any]], data: list[dict[str, Any]], document_type: str
) -> list[dict[str, Any]]:
    """Append new records to ``items``; all-or-nothing on duplicate ids."""
    existing = {item.get("_id") for item in items}
    created = []
    for entry in data:
        record = copy.deepcopy(entry)
        if not record.get("_id"):
            record["_id"] = generate_id()
        if record["_id"] in existing:
            raise BackendError(f"{document_type} {record['_id']} already exists")
        existing.add(record["_id"])
        created.append(record)
    items.extend(copy.deepcopy(created))
    return created


def update_in_list(
    items: list[dict[str, Any]], updates: list[dict[str, Any]], document_type: str
) -> list[dict[str, Any]]:
    """Merge incremental updates into ``items``; all-or-nothing on unknown ids."""
    by_id = {item.get("_id"): item for item in items}
    for update in updates:
        if update.get("_id") not in by_id:
            raise DocumentNotFoundError(document_type, update.get("_id"))
    applied = []
    for update in updates:
        changes = expand_object({k: v for k, v in update.items() if k != "_id"})
        merge_object(by_id[update["_id"]], changes)
        applied.append(copy.deepcopy(update))
    return applied


def delete_from_list(
    items: list[dict[str, Any]], ids: list[str], document_type: str
) -> list[str]:
    """Remove records by id from ``items``; all-or-nothing on unknown ids."""
    present = {item.get("_id") for item in items}
    for document_id in ids:
        if document_id not in present:
            raise DocumentNotFoundError(document_type, document_id)
    doomed = set(ids)
    items[:] = [item for item in items if item.get("_id") not in doomed]
    return list(ids)


def select_records(
    records: list[dict[str, Any]],
    query: Optional[Mapping[str, Any]],
    index_fields: Optional[list[str]],
) -> list[dict[str, Any]]:
    """Filter by equality query and optionally project; results are copies."""
    selected = [r for r in records if matches_query(r, query or {})]
    if index_fields:
        fields = ["_id", *[f for f in index_fields if f != "_id"]]
        return [project(r, fields) for r in selected]
    return copy.deepcopy(selected)


def migrate_records(
    records: list[dict[str, Any]], options: Optional[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Run the optional ``transform`` option over copies of ``records``."""
    transform = (options or {}).get("transform")
    migrated = []
    for record in records:
        candidate = copy.deepcopy(record)
        if transform is not None:
            candidate = transform(candidate) or candidate
        if candidate.get("_id") != record.get("_id"):
            raise BackendError(f"Migration may not change record id {record.get('_id')}")
        migrated.append(candidate)
    return migrated


class InMemoryBackend(DocumentBackend):
    """Process-local backend keeping records in insertion-ordered lists.

    Every call yields to the event loop once so callers observe the same
    suspension points they would against a remote service.
    """

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, Optional[str]]] = []

    def _records(self, document_type: str, pack: Optional[str]) -> list[dict[str, Any]]:
        return self._store.setdefault((document_type, pack or WORLD_PACK), [])

    def _embedded_list(self, parent: ParentRef, pack: Optional[str]) -> list[dict[str, Any]]:
        for record in self._records(parent.document_type, pack):
            if record.get("_id") == parent.document_id:
                return resolve_embedded_list(record, parent)
        raise DocumentNotFoundError(parent.document_type, parent.document_id)

    def _target(
        self, document_type: str, pack: Optional[str], parent: Optional[ParentRef]
    ) -> list[dict[str, Any]]:
        if parent is not None:
            return self._embedded_list(parent, pack)
        return self._records(document_type, pack)

    async def get_documents(
        self,
        document_type: str,
        query: Optional[Mapping[str, Any]] = None,
        *,
        pack: Optional[str] = None,
        index_fields: Optional[list[str]] = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("get", document_type, pack))
        await asyncio.sleep(0)
        return select_records(self._records(document_type, pack), query, index_fields)

    async def create_documents(
        self,
        document_type: str,
        data: list[dict[str, Any]],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("create", document_type, pack))
        await asyncio.sleep(0)
        created = create_in_list(self._target(document_type, pack, parent), data, document_type)
        logger.debug("Records created", document_type=document_type, pack=pack, count=len(created))
        return created

    async def update_documents(
        self,
        document_type: str,
        updates: list[dict[str, Any]],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("update", document_type, pack))
        await asyncio.sleep(0)
        return update_in_list(self._target(document_type, pack, parent), updates, document_type)

    async def delete_documents(
        self,
        document_type: str,
        ids: list[str],
        *,
        pack: Optional[str] = None,
        parent: Optional[ParentRef] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        self.calls.append(("delete", document_type, pack))
        await asyncio.sleep(0)
        return delete_from_list(self._target(document_type, pack, parent), ids, document_type)

    async def migrate_pack(
        self,
        document_type: str,
        pack: str,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        self.calls.append(("migrate", document_type, pack))
        await asyncio.sleep(0)
        records = self._records(document_type, pack)
        records[:] = migrate_records(records, options)
        logger.info("Pack migrated", document_type=document_type, pack=pack, count=len(records))

    async def delete_pack(self, document_type: str, pack: str) -> None:
        self.calls.append(("delete_pack", document_type, pack))
        await asyncio.sleep(0)
        self._store.pop((document_type, pack), None)
