"""Per-tenant lookup from natural key to document id."""

from __future__ import annotations

import structlog

from Lexicarium.store import OWNER_FILTER, DocumentStore
from Lexicarium.transfer.scopes import Scope, normalize_key

log = structlog.get_logger()


class NaturalKeyIndex:
    """Map of lower-cased natural key -> document id for one tenant's collection.

    The map reflects the store when ``build`` ran plus whatever the running
    batch registered since; it is never refreshed from the store mid-batch.
    Collections without a natural key (test sessions) are keyed by document id.
    """

    def __init__(self, scope: Scope, tenant: str) -> None:
        self.scope = scope
        self.tenant = tenant
        # key -> ids carrying it, earliest first; the head is the lookup answer
        self._by_key: dict[str, list[str]] = {}
        self._key_of: dict[str, str] = {}
        self._ids: set[str] = set()

    @classmethod
    async def build(cls, store: DocumentStore, scope: Scope, tenant: str) -> NaturalKeyIndex:
        index = cls(scope, tenant)
        docs = await store.query(scope.layout.collection, {OWNER_FILTER: tenant})
        field = scope.layout.natural_key_field
        collisions = 0
        for doc in docs:
            key = normalize_key(doc.data.get(field)) if field else doc.id
            index._ids.add(doc.id)
            if key is None:
                continue
            ids = index._by_key.setdefault(key, [])
            if ids:
                # Earliest id wins; later duplicates take over if it is rekeyed
                collisions += 1
            ids.append(doc.id)
            index._key_of[doc.id] = key
        log.info(
            "transfer.index.built",
            collection=scope.layout.collection,
            tenant=tenant,
            keys=len(index._by_key),
            documents=len(index._ids),
            collisions=collisions,
        )
        return index

    def lookup(self, key: str | None) -> str | None:
        if self.scope.layout.natural_key_field is not None:
            key = normalize_key(key)
        if not key:
            return None
        ids = self._by_key.get(key)
        return ids[0] if ids else None

    def contains_id(self, doc_id: str | None) -> bool:
        return bool(doc_id) and doc_id in self._ids

    def register(self, key: str | None, doc_id: str) -> None:
        """Make a document committed earlier in this batch visible to later records.

        A document written under a new key no longer answers for its old one.
        """
        self._ids.add(doc_id)
        if self.scope.layout.natural_key_field is not None:
            key = normalize_key(key)
        old = self._key_of.get(doc_id)
        if old is not None and old != key:
            self._discard(old, doc_id)
        if not key:
            return
        ids = self._by_key.setdefault(key, [])
        if doc_id in ids:
            ids.remove(doc_id)
        ids.insert(0, doc_id)
        self._key_of[doc_id] = key

    def _discard(self, key: str, doc_id: str) -> None:
        del self._key_of[doc_id]
        ids = self._by_key.get(key, [])
        if doc_id in ids:
            ids.remove(doc_id)
        if not ids:
            self._by_key.pop(key, None)

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.lookup(key) is not None
