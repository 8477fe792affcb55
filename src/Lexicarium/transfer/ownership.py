"""Overwrite-or-remap decision for incoming records."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from Lexicarium.errors import RecordRejected
from Lexicarium.metrics import inc_counter
from Lexicarium.store import DocumentStore
from Lexicarium.tools.ids import remap_id
from Lexicarium.transfer.scopes import Scope

log = structlog.get_logger()


@dataclass(frozen=True)
class Resolution:
    target_id: str
    remapped: bool
    # Owner of the document found at the declared id, if any
    previous_owner: str | None = None
    exists: bool = False


class OwnershipResolver:
    """Decide where an incoming record may be written for ``tenant``.

    A document at the declared id that belongs to another tenant is never
    overwritten; the record moves to an id derived from (collection, tenant,
    declared id) instead, so repeating the import lands on the same document.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def resolve(self, scope: Scope, record_id: str, tenant: str) -> Resolution:
        collection = scope.layout.collection
        existing = await self._store.exists(collection, record_id)
        if existing is None:
            return Resolution(target_id=record_id, remapped=False)
        if existing.owner is None or existing.owner == tenant:
            return Resolution(
                target_id=record_id, remapped=False, previous_owner=existing.owner, exists=True
            )

        target_id = remap_id(collection, tenant, record_id)
        clash = await self._store.exists(collection, target_id)
        if clash is not None and clash.owner not in (None, tenant):
            raise RecordRejected(
                f"remap target {target_id} in {collection} belongs to another tenant"
            )
        inc_counter("transfer.ownership.conflict")
        log.info(
            "transfer.ownership.conflict",
            collection=collection,
            original_id=record_id,
            target_id=target_id,
            previous_owner=existing.owner,
        )
        return Resolution(
            target_id=target_id, remapped=True, previous_owner=existing.owner, exists=True
        )
