# store.py

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from Lexicarium import models
from Lexicarium.db import session_scope
from Lexicarium.errors import StoreUnavailable
from Lexicarium.metrics import inc_counter

log = structlog.get_logger()

_UNAVAILABLE = (OperationalError, InterfaceError, OSError, TimeoutError)

# Key of the query filter that targets the indexed owner column
OWNER_FILTER = "owner"


@dataclass(frozen=True)
class StoredDocument:
    collection: str
    id: str
    owner: str | None
    data: dict[str, Any]


class DocumentStore(Protocol):
    """Narrow store interface consumed by the import/export engine."""

    async def exists(self, collection: str, doc_id: str) -> StoredDocument | None: ...

    async def query(
        self, collection: str, filter: Mapping[str, Any]
    ) -> list[StoredDocument]: ...

    async def put(self, collection: str, doc_id: str, record: Mapping[str, Any]) -> None: ...


def get_path(data: Mapping[str, Any], path: str) -> Any:
    """Return the value at a dotted path, or None when any segment is missing."""
    cur: Any = data
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            return None
        cur = cur[part]
    return cur


def owner_of(
    data: Mapping[str, Any],
    owner_fields: tuple[str, ...] = ("userId",),
    metadata_field: str = "firestoreMetadata",
) -> str | None:
    """Find the tenant a record belongs to.

    Metadata owner wins over the top-level one; words, performance and
    statistics keep their canonical owner under the metadata object.
    """
    meta = data.get(metadata_field)
    if isinstance(meta, Mapping):
        for name in owner_fields:
            value = meta.get(name)
            if value:
                return str(value)
    for name in owner_fields:
        value = data.get(name)
        if value:
            return str(value)
    return None


class SqlDocumentStore:
    """DocumentStore backed by the ``documents`` table.

    Every call runs in its own session so each ``put`` commits on its own;
    an abandoned import keeps the writes already made.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] = session_scope,
        owner_fields: tuple[str, ...] | list[str] = ("userId",),
        metadata_field: str = "firestoreMetadata",
    ) -> None:
        self._session_factory = session_factory
        self._owner_fields = tuple(owner_fields)
        self._metadata_field = metadata_field

    def _to_document(self, row: models.Document) -> StoredDocument:
        return StoredDocument(
            collection=row.collection,
            id=row.doc_id,
            owner=row.owner,
            data=copy.deepcopy(row.body or {}),
        )

    async def exists(self, collection: str, doc_id: str) -> StoredDocument | None:
        try:
            async with self._session_factory() as s:
                row = await s.get(models.Document, (collection, doc_id))
                return self._to_document(row) if row is not None else None
        except _UNAVAILABLE as exc:
            inc_counter("store.unavailable")
            raise StoreUnavailable(f"exists({collection}, {doc_id}) failed: {exc}") from exc

    async def query(
        self, collection: str, filter: Mapping[str, Any]
    ) -> list[StoredDocument]:
        conditions = dict(filter)
        stmt = select(models.Document).where(models.Document.collection == collection)
        if OWNER_FILTER in conditions:
            stmt = stmt.where(models.Document.owner == conditions.pop(OWNER_FILTER))
        stmt = stmt.order_by(models.Document.doc_id)
        try:
            async with self._session_factory() as s:
                rows = (await s.execute(stmt)).scalars().all()
                docs = [self._to_document(r) for r in rows]
        except _UNAVAILABLE as exc:
            inc_counter("store.unavailable")
            raise StoreUnavailable(f"query({collection}) failed: {exc}") from exc
        # Remaining conditions are dotted paths into the JSON body
        return [
            d
            for d in docs
            if all(get_path(d.data, path) == expected for path, expected in conditions.items())
        ]

    async def put(self, collection: str, doc_id: str, record: Mapping[str, Any]) -> None:
        body = copy.deepcopy(dict(record))
        owner = owner_of(body, self._owner_fields, self._metadata_field)
        try:
            async with self._session_factory() as s:
                row = await s.get(models.Document, (collection, doc_id))
                if row is None:
                    s.add(
                        models.Document(
                            collection=collection, doc_id=doc_id, owner=owner, body=body
                        )
                    )
                else:
                    row.owner = owner
                    row.body = body
                await s.flush()
        except _UNAVAILABLE as exc:
            inc_counter("store.unavailable")
            raise StoreUnavailable(f"put({collection}, {doc_id}) failed: {exc}") from exc
        log.debug("store.put", collection=collection, doc_id=doc_id, owner=owner)
